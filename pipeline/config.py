"""
Pipeline configuration.

Non-secret settings come from `configs/pipeline.yaml`; credentials only from
environment variables (HF_TOKEN, GEMINI_API_KEY, SIGHTENGINE_API_USER,
SIGHTENGINE_API_SECRET, SUPABASE_URL, SUPABASE_KEY, REGISTRY_SUPABASE_URL,
REGISTRY_SUPABASE_KEY). Every key is optional; missing keys fall back to the
dataclass defaults below.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from analyzers import ConfigError
from analyzers.base_analyzer import DEFAULT_CALL_TIMEOUT_S
from analyzers.synthetic_detector import DEFAULT_SYNTHETIC_LABELS
from analyzers.verdict import CertaintyBands


CONFIG_PATH = Path(__file__).parent.parent / "configs" / "pipeline.yaml"


@dataclass
class VisionConfig:
    provider: str = "huggingface"           # huggingface | gemini
    model: str = ""                         # empty -> backend default
    temperature: float = 0.1
    max_tokens: int = 800
    hf_provider: str = ""


@dataclass
class SyntheticConfig:
    provider: str = "sightengine"           # sightengine | huggingface
    model: str = ""
    labels: list[str] = field(default_factory=lambda: list(DEFAULT_SYNTHETIC_LABELS))


@dataclass
class TimeoutConfig:
    image_fetch_s: float = DEFAULT_CALL_TIMEOUT_S
    call_s: float = DEFAULT_CALL_TIMEOUT_S
    branch_s: float = 25.0


@dataclass
class ImageConfig:
    max_dimension: int = 1024
    jpeg_quality: int = 85


@dataclass
class PlateConfig:
    min_length: int = 4


@dataclass
class CertaintyConfig:
    very_sure: int = 75
    research_more: int = 45

    def to_bands(self) -> CertaintyBands:
        try:
            return CertaintyBands(very_sure=int(self.very_sure), research_more=int(self.research_more))
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc


@dataclass
class StoreConfig:
    backend: str = "memory"                 # memory | file | supabase
    path: str = "outputs/store"             # file backend root
    analysis_table: str = "ai_analysis"
    reports_table: str = "reports"


@dataclass
class RegistryConfig:
    backend: str = "none"                   # none | memory | supabase
    table: str = "vehicles"


@dataclass
class PipelineConfig:
    vision: VisionConfig = field(default_factory=VisionConfig)
    synthetic: SyntheticConfig = field(default_factory=SyntheticConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    plate: PlateConfig = field(default_factory=PlateConfig)
    certainty: CertaintyConfig = field(default_factory=CertaintyConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    @classmethod
    def from_dict(cls, cfg: dict[str, Any] | None) -> "PipelineConfig":
        cfg = cfg or {}
        if not isinstance(cfg, dict):
            raise ConfigError("Pipeline config must be a mapping at the top level.")
        sections = {}
        for f in fields(cls):
            section_cls = f.default_factory  # type: ignore[misc]
            sections[f.name] = _build_section(section_cls, cfg.get(f.name), f.name)
        config = cls(**sections)
        config.certainty.to_bands()
        return config


def _build_section(section_cls, raw: Any, name: str):
    if raw is None:
        return section_cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in config section '{name}': {', '.join(unknown)}")
    return section_cls(**raw)


def load_config(config_path: str | Path | None = CONFIG_PATH) -> PipelineConfig:
    """Load the YAML config; a missing file yields the defaults."""
    if config_path is None:
        return PipelineConfig()
    cfg_path = Path(config_path)
    if not cfg_path.is_file():
        return PipelineConfig()
    with open(cfg_path, encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {cfg_path}: {exc}") from exc
    return PipelineConfig.from_dict(cfg)
