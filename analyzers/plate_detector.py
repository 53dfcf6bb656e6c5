"""
PlateDetector: extracts a licence-plate string from the evidence image.

A missing plate is an acceptable outcome, so unlike the violation analyzer
there is no recovery ladder: one JSON-mode request, one strict parse, and any
failure degrades to None.
"""

from __future__ import annotations

import logging
import re

from .base_analyzer import ImagePayload, VisionBackend, parse_json_object
from .prompts import PLATE_PROMPT


logger = logging.getLogger(__name__)

MIN_PLATE_LENGTH = 4

# Placeholder answers models give instead of null, after normalization.
JUNK_PLATES = {"NONE", "NULL", "NA", "NIL", "NOPLATE", "UNKNOWN", "PENDING", "REVIEWREQUIRED"}

_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")


def normalize_plate(raw: object, min_length: int = MIN_PLATE_LENGTH) -> str | None:
    """
    Canonical plate form: uppercase, alphanumerics only.

    Returns None for missing values, junk sentinels and anything shorter
    than `min_length`.
    """
    if raw is None or isinstance(raw, bool):
        return None
    plate = _NON_ALNUM_RE.sub("", str(raw).upper())
    if len(plate) < min_length or plate in JUNK_PLATES:
        return None
    return plate


class PlateDetector:
    """Vision-model plate reader."""

    def __init__(self, backend: VisionBackend, min_length: int = MIN_PLATE_LENGTH):
        self.backend = backend
        self.min_length = min_length

    async def detect(self, image: ImagePayload | None) -> str | None:
        if image is None:
            return None

        try:
            raw = await self.backend.generate(PLATE_PROMPT, image, json_mode=True)
        except Exception as exc:
            logger.warning("Plate request failed: %s", exc)
            return None

        try:
            data = parse_json_object(raw.strip())
        except ValueError as exc:
            logger.warning("Plate response is not a JSON object (%s): %.120s", exc, raw)
            return None

        plate = normalize_plate(data.get("detected_plate"), self.min_length)
        logger.info("Plate detector result: %s", plate or "none")
        return plate
