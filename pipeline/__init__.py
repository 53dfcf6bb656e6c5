from .compiler import AnalysisRecord, VerdictCompiler
from .config import PipelineConfig, load_config
from .image_loader import ImageLoader
from .registry import InMemoryVehicleRegistry, SupabaseVehicleRegistry, VehicleRegistry
from .reports import Report, ReportStatus, ViolationCategory, next_report_id
from .runtime import build_compiler
from .store import (
    InMemoryReportStore,
    JsonFileReportStore,
    PersistenceError,
    ReportStore,
    SupabaseReportStore,
)

__all__ = [
    "AnalysisRecord",
    "VerdictCompiler",
    "PipelineConfig",
    "load_config",
    "ImageLoader",
    "VehicleRegistry",
    "InMemoryVehicleRegistry",
    "SupabaseVehicleRegistry",
    "Report",
    "ReportStatus",
    "ViolationCategory",
    "next_report_id",
    "build_compiler",
    "ReportStore",
    "InMemoryReportStore",
    "JsonFileReportStore",
    "SupabaseReportStore",
    "PersistenceError",
]
