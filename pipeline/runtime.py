"""Wires a VerdictCompiler from a PipelineConfig and one shared httpx client."""

from __future__ import annotations

import logging

import httpx

from analyzers import (
    ConfigError,
    PlateDetector,
    ViolationAnalyzer,
    build_synthetic_detector,
    build_vision_backend,
    require_env,
)

from .compiler import VerdictCompiler
from .config import PipelineConfig, RegistryConfig, StoreConfig
from .image_loader import ImageLoader
from .registry import InMemoryVehicleRegistry, SupabaseVehicleRegistry, VehicleRegistry
from .store import (
    InMemoryReportStore,
    JsonFileReportStore,
    ReportStore,
    SupabaseReportStore,
    SupabaseRest,
)


logger = logging.getLogger(__name__)


def build_store(store_cfg: StoreConfig, client: httpx.AsyncClient, timeout_s: float) -> ReportStore:
    backend = str(store_cfg.backend).strip().lower()
    if backend == "memory":
        return InMemoryReportStore()
    if backend == "file":
        return JsonFileReportStore(
            store_cfg.path,
            analysis_table=store_cfg.analysis_table,
            reports_table=store_cfg.reports_table,
        )
    if backend == "supabase":
        rest = SupabaseRest(
            require_env("SUPABASE_URL"), require_env("SUPABASE_KEY"), client, timeout_s
        )
        return SupabaseReportStore(
            rest,
            analysis_table=store_cfg.analysis_table,
            reports_table=store_cfg.reports_table,
        )
    raise ConfigError(f"Unsupported store backend in config: {store_cfg.backend}")


def build_registry(
    registry_cfg: RegistryConfig, client: httpx.AsyncClient, timeout_s: float
) -> VehicleRegistry | None:
    backend = str(registry_cfg.backend).strip().lower()
    if backend in ("none", ""):
        return None
    if backend == "memory":
        return InMemoryVehicleRegistry()
    if backend == "supabase":
        rest = SupabaseRest(
            require_env("REGISTRY_SUPABASE_URL"),
            require_env("REGISTRY_SUPABASE_KEY"),
            client,
            timeout_s,
        )
        return SupabaseVehicleRegistry(rest, table=registry_cfg.table)
    raise ConfigError(f"Unsupported registry backend in config: {registry_cfg.backend}")


def build_compiler(
    cfg: PipelineConfig,
    client: httpx.AsyncClient,
    store: ReportStore | None = None,
) -> VerdictCompiler:
    """
    Build every collaborator named by `cfg`.

    Raises ConfigError for unknown providers or missing credentials, before
    any report is touched.
    """
    bands = cfg.certainty.to_bands()
    call_s = float(cfg.timeouts.call_s)

    backend = build_vision_backend(cfg.vision, client, call_s)
    compiler = VerdictCompiler(
        loader=ImageLoader(
            client,
            timeout_s=float(cfg.timeouts.image_fetch_s),
            max_dimension=int(cfg.image.max_dimension),
            jpeg_quality=int(cfg.image.jpeg_quality),
        ),
        plate_detector=PlateDetector(backend, min_length=int(cfg.plate.min_length)),
        violation_analyzer=ViolationAnalyzer(backend, bands=bands),
        synthetic_detector=build_synthetic_detector(cfg.synthetic, client, call_s),
        store=store if store is not None else build_store(cfg.store, client, call_s),
        registry=build_registry(cfg.registry, client, call_s),
        branch_timeout_s=float(cfg.timeouts.branch_s),
        bands=bands,
    )
    logger.info(
        "Pipeline ready: vision=%s synthetic=%s store=%s registry=%s",
        backend.name, cfg.synthetic.provider, cfg.store.backend, cfg.registry.backend,
    )
    return compiler
