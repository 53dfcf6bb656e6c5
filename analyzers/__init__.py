from __future__ import annotations

import os

import httpx

from .base_analyzer import BackendError, ImagePayload, VisionBackend
from .gemini_backend import GeminiVisionBackend
from .hf_backend import HuggingFaceVisionBackend
from .plate_detector import PlateDetector, normalize_plate
from .synthetic_detector import (
    HuggingFaceSyntheticDetector,
    SightengineDetector,
    SyntheticImageDetector,
)
from .verdict import CertaintyBands, Verdict
from .violation_analyzer import AnalysisError, ViolationAnalyzer, ViolationAssessment


class ConfigError(RuntimeError):
    """Raised for invalid configuration or missing credentials."""


def require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"Missing {name} environment variable.")
    return value


def build_vision_backend(vision_cfg, client: httpx.AsyncClient, timeout_s: float) -> VisionBackend:
    """Instantiate the vision backend named by the `vision` config section."""
    provider = str(vision_cfg.provider).strip().lower()
    common = dict(
        model_id=vision_cfg.model or None,
        temperature=float(vision_cfg.temperature),
        max_tokens=int(vision_cfg.max_tokens),
        timeout_s=timeout_s,
    )
    if provider == "huggingface":
        return HuggingFaceVisionBackend(
            token=require_env("HF_TOKEN"),
            hf_provider=vision_cfg.hf_provider or None,
            **common,
        )
    if provider == "gemini":
        return GeminiVisionBackend(api_key=require_env("GEMINI_API_KEY"), client=client, **common)
    raise ConfigError(f"Unsupported vision provider in config: {vision_cfg.provider}")


def build_synthetic_detector(
    synthetic_cfg, client: httpx.AsyncClient, timeout_s: float
) -> SyntheticImageDetector:
    """Instantiate the synthetic-image detector named by the `synthetic` config section."""
    provider = str(synthetic_cfg.provider).strip().lower()
    if provider == "sightengine":
        return SightengineDetector(
            api_user=require_env("SIGHTENGINE_API_USER"),
            api_secret=require_env("SIGHTENGINE_API_SECRET"),
            client=client,
            timeout_s=timeout_s,
        )
    if provider == "huggingface":
        if not synthetic_cfg.model:
            raise ConfigError("synthetic.model is required for the huggingface provider.")
        return HuggingFaceSyntheticDetector(
            model_id=synthetic_cfg.model,
            token=require_env("HF_TOKEN"),
            synthetic_labels=synthetic_cfg.labels,
            timeout_s=timeout_s,
        )
    raise ConfigError(f"Unsupported synthetic provider in config: {synthetic_cfg.provider}")


__all__ = [
    "AnalysisError",
    "BackendError",
    "CertaintyBands",
    "ConfigError",
    "GeminiVisionBackend",
    "HuggingFaceSyntheticDetector",
    "HuggingFaceVisionBackend",
    "ImagePayload",
    "PlateDetector",
    "SightengineDetector",
    "SyntheticImageDetector",
    "Verdict",
    "ViolationAnalyzer",
    "ViolationAssessment",
    "VisionBackend",
    "build_synthetic_detector",
    "build_vision_backend",
    "normalize_plate",
    "require_env",
]
