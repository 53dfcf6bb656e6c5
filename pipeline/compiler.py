"""
VerdictCompiler: runs the three analyzers for one report and persists a
single AnalysisRecord.

=== Flow ===

  1. Load the primary image once (shared by every analyzer).
  2. Run PlateDetector, ViolationAnalyzer and SyntheticImageDetector
     concurrently. Each branch is bounded by `branch_timeout_s` and joined
     with gather(return_exceptions=True): one branch failing never cancels or
     corrupts the others.
  3. Compile, substituting defaults for failed branches:
        confidence     -> 0
        verdict        -> INSUFFICIENT_EVIDENCE
        justification  -> "AI Error: ..." + low-certainty phrase
        plate          -> "REVIEW REQUIRED"
        synthetic_risk -> 0
  4. Registry lookup for a real plate.
  5. Upsert the record, then set the report status to AI Processed.

Anything unexpected before step 5 still yields a minimal record. Only
PersistenceError escapes to the caller: losing a computed verdict silently is
worse than a visible failure.

Concurrent runs for the same report are not serialised; the last upsert wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from analyzers.base_analyzer import ImagePayload
from analyzers.plate_detector import PlateDetector
from analyzers.synthetic_detector import SyntheticImageDetector
from analyzers.verdict import CertaintyBands, Verdict
from analyzers.violation_analyzer import ViolationAnalyzer, ViolationAssessment

from .image_loader import ImageLoader
from .registry import VehicleRegistry
from .reports import Report, ReportStatus, ViolationCategory
from .store import PersistenceError, ReportStore


logger = logging.getLogger(__name__)

REVIEW_REQUIRED = "REVIEW REQUIRED"
DEFAULT_BRANCH_TIMEOUT_S = 25.0
ERROR_EXCERPT_CHARS = 200

REGISTRY_MATCHED = "MATCHED"
REGISTRY_NOT_FOUND = "NOT_FOUND"
REGISTRY_UNAVAILABLE = "UNAVAILABLE"
REGISTRY_SKIPPED = "SKIPPED"
NOT_IN_REGISTRY_TEXT = "not found in registry"


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

@dataclass
class AnalysisRecord:
    """The persisted verdict for one report."""

    report_id: str
    confidence_score: int = 0               # [0, 100]
    verdict: Verdict = Verdict.INSUFFICIENT_EVIDENCE
    justification: str = ""
    detected_plate: str = REVIEW_REQUIRED
    synthetic_risk: int = 0                 # [0, 100]
    registry_match: dict[str, Any] | None = None
    registry_status: str = REGISTRY_SKIPPED
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # branch name -> error text, for logs and debugging only
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return f"[{self.verdict.value}] {self.justification}"

    def to_row(self) -> dict[str, Any]:
        """Column layout of the ai_analysis table."""
        if self.registry_match is not None:
            registry_col = json.dumps(self.registry_match, ensure_ascii=False, default=str)
        elif self.registry_status == REGISTRY_NOT_FOUND:
            registry_col = NOT_IN_REGISTRY_TEXT
        else:
            registry_col = None
        return {
            "report_id": self.report_id,
            "ai_summary": self.summary,
            "confidence_score": self.confidence_score,
            "detected_vehicle_number": self.detected_plate,
            "ai_generated_score": self.synthetic_risk,
            "vahaan_status": registry_col,
        }

    def to_dict(self) -> dict:
        return {
            "report_id": self.report_id,
            "confidence_score": self.confidence_score,
            "verdict": self.verdict.value,
            "justification": self.justification,
            "detected_plate": self.detected_plate,
            "synthetic_risk": self.synthetic_risk,
            "registry_status": self.registry_status,
            "registry_match": self.registry_match,
            "analyzed_at": self.analyzed_at.isoformat(),
            "failures": self.failures,
        }


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------

class VerdictCompiler:
    """Entry point and sole orchestrator of the verification pipeline."""

    def __init__(
        self,
        loader: ImageLoader,
        plate_detector: PlateDetector,
        violation_analyzer: ViolationAnalyzer,
        synthetic_detector: SyntheticImageDetector,
        store: ReportStore,
        registry: VehicleRegistry | None = None,
        branch_timeout_s: float = DEFAULT_BRANCH_TIMEOUT_S,
        bands: CertaintyBands | None = None,
    ):
        self.loader = loader
        self.plate_detector = plate_detector
        self.violation_analyzer = violation_analyzer
        self.synthetic_detector = synthetic_detector
        self.store = store
        self.registry = registry
        self.branch_timeout_s = branch_timeout_s
        self.bands = bands or getattr(violation_analyzer, "bands", None) or CertaintyBands()
        # Strong references for fire-and-forget tasks until they finish.
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def process_report(
        self,
        report_id: str,
        image_url: str | None,
        category: ViolationCategory | str,
        remarks: str | None = None,
    ) -> AnalysisRecord | None:
        """
        Analyse one report and persist the result.

        Returns None without touching the store when there is no image: the
        pipeline only runs for reports with at least one evidence image.
        Raises PersistenceError if the record or status cannot be saved.
        """
        if not image_url:
            logger.info("[%s] No media attached, skipping analysis", report_id)
            return None

        if isinstance(category, ViolationCategory):
            category_label = category.value
        else:
            category_label = str(category or "").strip() or "Unknown Violation"
        logger.info("[%s] Analysis started (%s)", report_id, category_label)

        try:
            record = await self._analyse(report_id, image_url, category_label, remarks or "")
        except Exception as exc:
            logger.exception("[%s] Pipeline failed, saving minimal record", report_id)
            record = self._minimal_record(report_id, exc)

        logger.info(
            "[%s] plate=%s conf=%d%% synthetic=%d%% verdict=%s",
            report_id, record.detected_plate, record.confidence_score,
            record.synthetic_risk, record.verdict.value,
        )
        await self._persist(record)
        return record

    async def process(self, report: Report) -> AnalysisRecord | None:
        return await self.process_report(
            report.report_id, report.primary_image, report.category, report.remarks
        )

    async def rerun(self, report_id: str) -> AnalysisRecord | None:
        """Re-analyse a stored report from its first media URL, overwriting the record."""
        report = await self.store.fetch_report(report_id)
        if report is None:
            raise LookupError(f"Report {report_id} not found.")
        if not report.primary_image:
            raise LookupError(f"No media on report {report_id}.")
        return await self.process(report)

    def schedule(
        self,
        report_id: str,
        image_url: str | None,
        category: ViolationCategory | str,
        remarks: str | None = None,
    ) -> asyncio.Task:
        """Fire-and-forget variant for the submission flow; errors are logged."""
        task = asyncio.create_task(
            self.process_report(report_id, image_url, category, remarks),
            name=f"verify-{report_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._log_task_outcome)
        return task

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _analyse(
        self, report_id: str, image_url: str, category: str, remarks: str
    ) -> AnalysisRecord:
        image = await self.loader.load(image_url)

        plate_res, analysis_res, synthetic_res = await asyncio.gather(
            self._bounded(self.plate_detector.detect(image)),
            self._bounded(self.violation_analyzer.analyze(image, category, remarks)),
            self._bounded(self.synthetic_detector.score(image_url)),
            return_exceptions=True,
        )

        record = self.compile_record(report_id, plate_res, analysis_res, synthetic_res, image)
        await self._attach_registry(record)
        return record

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.branch_timeout_s)

    def compile_record(
        self,
        report_id: str,
        plate_res: str | None | BaseException,
        analysis_res: ViolationAssessment | BaseException,
        synthetic_res: int | BaseException,
        image: ImagePayload | None = None,
    ) -> AnalysisRecord:
        """Merge settled branch results into one record with defaults for failures."""
        record = AnalysisRecord(report_id=report_id)
        if image is None:
            record.failures["image"] = "Image unavailable; analysed in text-only mode"

        if isinstance(plate_res, BaseException):
            record.failures["plate"] = _describe(plate_res)
        elif plate_res:
            record.detected_plate = plate_res

        if isinstance(synthetic_res, BaseException):
            record.failures["synthetic"] = _describe(synthetic_res)
        elif isinstance(synthetic_res, int):
            record.synthetic_risk = max(0, min(100, synthetic_res))

        if isinstance(analysis_res, ViolationAssessment):
            record.confidence_score = analysis_res.confidence_score
            record.verdict = analysis_res.verdict
            record.justification = self.bands.enforce(
                analysis_res.justification, analysis_res.confidence_score
            )
            if analysis_res.parse_error:
                record.failures["analysis"] = analysis_res.parse_error
        else:
            message = _describe(analysis_res) if isinstance(analysis_res, BaseException) else "no result"
            logger.error("[%s] Analysis error: %s", report_id, message)
            record.failures["analysis"] = message
            record.justification = self.bands.enforce(
                f"AI Error: {message[:ERROR_EXCERPT_CHARS]}", 0
            )
        return record

    async def _attach_registry(self, record: AnalysisRecord) -> None:
        if self.registry is None or record.detected_plate == REVIEW_REQUIRED:
            record.registry_status = REGISTRY_SKIPPED
            return
        try:
            match = await asyncio.wait_for(
                self.registry.lookup(record.detected_plate), timeout=self.branch_timeout_s
            )
        except Exception as exc:
            logger.warning("[%s] Registry lookup failed: %s", record.report_id, exc)
            record.failures["registry"] = _describe(exc)
            record.registry_status = REGISTRY_UNAVAILABLE
            return
        record.registry_match = match or None
        record.registry_status = REGISTRY_MATCHED if match else REGISTRY_NOT_FOUND

    def _minimal_record(self, report_id: str, exc: BaseException) -> AnalysisRecord:
        message = _describe(exc)
        return AnalysisRecord(
            report_id=report_id,
            justification=self.bands.enforce(
                f"Analysis could not complete ({message[:ERROR_EXCERPT_CHARS]}). Manual review required.", 0
            ),
            failures={"pipeline": message},
        )

    async def _persist(self, record: AnalysisRecord) -> None:
        try:
            await self.store.upsert_analysis(record.report_id, record.to_row())
            await self.store.update_report_status(record.report_id, ReportStatus.AI_PROCESSED)
        except PersistenceError:
            logger.error("[%s] Save failed", record.report_id)
            raise
        except Exception as exc:
            logger.error("[%s] Save failed: %s", record.report_id, exc)
            raise PersistenceError(f"Saving analysis for {record.report_id} failed: {exc}") from exc
        logger.info("[%s] Saved", record.report_id)

    async def drain(self) -> None:
        """Wait for every scheduled verification task to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Close provider clients owned by the analyzers (each backend once)."""
        await self.drain()
        backends = {id(b): b for b in (self.plate_detector.backend, self.violation_analyzer.backend)}
        for backend in backends.values():
            await backend.aclose()
        await self.synthetic_detector.aclose()

    def _log_task_outcome(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Verification task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Verification task %s failed: %s", task.get_name(), exc)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Timed out waiting for the analyzer"
    return str(exc) or type(exc).__name__
