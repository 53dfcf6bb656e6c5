"""
Synthetic-image (AI-generated / deepfake) detectors.

The signal is advisory: `score()` never raises and never retries. Anything
that goes wrong (network, timeout, HTTP error, malformed body, missing field)
yields 0, i.e. "not flagged".
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable

import httpx
from huggingface_hub import AsyncInferenceClient

from .base_analyzer import DEFAULT_CALL_TIMEOUT_S
from .verdict import clamp_score


logger = logging.getLogger(__name__)

SIGHTENGINE_URL = "https://api.sightengine.com/1.0/check.json"
DEFAULT_SYNTHETIC_LABELS = ("artificial", "ai", "ai_generated", "fake", "synthetic")


class SyntheticImageDetector(ABC):
    """
    Abstract "can classify an image" capability. Subclasses implement
    `_classify` returning a probability in [0, 1].
    """

    name = "synthetic"

    async def score(self, image_url: str) -> int:
        """Probability (0-100) that the image at `image_url` is AI-generated."""
        if not image_url:
            return 0
        try:
            probability = await self._classify(image_url)
        except Exception as exc:
            logger.warning("%s detector failed, treating as not flagged: %s", self.name, exc)
            return 0
        if isinstance(probability, bool) or not isinstance(probability, (int, float)):
            logger.warning("%s detector returned no numeric score: %r", self.name, probability)
            return 0
        return clamp_score(probability * 100)

    @abstractmethod
    async def _classify(self, image_url: str) -> float | None:
        ...

    async def aclose(self) -> None:
        """Release provider resources; shared httpx clients are closed by their owner."""


class SightengineDetector(SyntheticImageDetector):
    """Sightengine `genai` model; accepts the image by URL."""

    name = "sightengine"

    def __init__(
        self,
        api_user: str,
        api_secret: str,
        client: httpx.AsyncClient,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        endpoint: str = SIGHTENGINE_URL,
    ):
        self.api_user = api_user
        self.api_secret = api_secret
        self.client = client
        self.timeout_s = timeout_s
        self.endpoint = endpoint

    async def _classify(self, image_url: str) -> float | None:
        response = await self.client.post(
            self.endpoint,
            data={
                "api_user": self.api_user,
                "api_secret": self.api_secret,
                "url": image_url,
                "models": "genai",
            },
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            return None

        kind = body.get("type")
        if isinstance(kind, dict) and "ai_generated" in kind:
            return kind["ai_generated"]
        legacy = body.get("ai_generated")
        if isinstance(legacy, dict):
            return legacy.get("score")
        return None


class HuggingFaceSyntheticDetector(SyntheticImageDetector):
    """Image-classification model on Hugging Face Inference Providers."""

    name = "hf-synthetic"

    def __init__(
        self,
        model_id: str,
        token: str | None = None,
        synthetic_labels: Iterable[str] = DEFAULT_SYNTHETIC_LABELS,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        client: AsyncInferenceClient | None = None,
    ):
        self.model_id = model_id
        self.synthetic_labels = tuple(label.lower() for label in synthetic_labels)
        self.timeout_s = timeout_s
        self._owns_client = client is None
        self._client = client or AsyncInferenceClient(api_key=token, timeout=timeout_s)

    async def _classify(self, image_url: str) -> float | None:
        # An injected client may have no timeout of its own.
        outputs = await asyncio.wait_for(
            self._client.image_classification(image_url, model=self.model_id),
            timeout=self.timeout_s,
        )
        scores = {str(o.label).strip().lower(): o.score for o in outputs}
        for label in self.synthetic_labels:
            if label in scores:
                return scores[label]
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
