"""
GeminiVisionBackend: vision inference through the Gemini `generateContent`
REST endpoint.

Plain REST (httpx) rather than an SDK: the request body is small, and JSON
mode is just `responseMimeType: application/json` in the generation config.
"""

from __future__ import annotations

import httpx

from .base_analyzer import BackendError, DEFAULT_CALL_TIMEOUT_S, ImagePayload, VisionBackend


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_SAFETY_OFF = [
    {"category": category, "threshold": "BLOCK_NONE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


class GeminiVisionBackend(VisionBackend):
    """Backed by gemini-2.5-flash by default."""

    name = "gemini"
    MODEL_ID = "gemini-2.5-flash"

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        model_id: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 800,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        base_url: str = GEMINI_BASE_URL,
    ):
        super().__init__(timeout_s=timeout_s)
        self.api_key = api_key
        self.client = client
        self.model_id = model_id or self.MODEL_ID
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.base_url = base_url.rstrip("/")

    def build_body(self, prompt: str, image: ImagePayload | None, json_mode: bool) -> dict:
        parts: list[dict] = [{"text": prompt}]
        if image is not None:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.to_base64()}})

        generation_config = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        return {
            "contents": [{"role": "user", "parts": parts}],
            "safetySettings": _SAFETY_OFF,
            "generationConfig": generation_config,
        }

    async def _call_api(self, prompt: str, image: ImagePayload | None, json_mode: bool) -> str:
        response = await self.client.post(
            f"{self.base_url}/{self.model_id}:generateContent",
            params={"key": self.api_key},
            json=self.build_body(prompt, image, json_mode),
            timeout=self.timeout_s,
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise BackendError(f"Gemini {response.status_code}: {message or response.text[:200]}")

        candidate = (body.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or [{}]
        text = parts[0].get("text")
        if text is None:
            reason = candidate.get("finishReason") or "Unknown"
            raise BackendError(f"Gemini returned no text. Finish reason: {reason}")
        return text
