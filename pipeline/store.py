"""
ReportStore: persistence of analysis records and report status.

Two logical tables, both keyed by report id:
  - ai_analysis - one row per report (upsert: update, insert if missing)
  - reports     - the report rows; the pipeline only writes `status`

Implementations:
  - InMemoryReportStore - dict-backed, used by tests and notebooks.
  - JsonFileReportStore - one JSON file per row, the local CLI default.
  - SupabaseReportStore - PostgREST over httpx.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx

from analyzers.base_analyzer import DEFAULT_CALL_TIMEOUT_S

from .reports import Report, ReportStatus


logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when the datastore rejects or cannot complete a write."""


class ReportStore(ABC):
    """Abstract "can persist" capability."""

    @abstractmethod
    async def upsert_analysis(self, report_id: str, row: dict[str, Any]) -> None:
        """Replace the analysis row for `report_id`, inserting it if absent."""

    @abstractmethod
    async def update_report_status(self, report_id: str, status: ReportStatus) -> None:
        ...

    @abstractmethod
    async def fetch_analysis(self, report_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def fetch_report(self, report_id: str) -> Report | None:
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryReportStore(ReportStore):

    def __init__(self, reports: list[Report] | None = None):
        self.reports: dict[str, Report] = {r.report_id: r for r in reports or []}
        self.analyses: dict[str, dict[str, Any]] = {}

    def add_report(self, report: Report) -> None:
        self.reports[report.report_id] = report

    async def upsert_analysis(self, report_id: str, row: dict[str, Any]) -> None:
        self.analyses[report_id] = {**copy.deepcopy(row), "report_id": report_id}

    async def update_report_status(self, report_id: str, status: ReportStatus) -> None:
        report = self.reports.get(report_id)
        if report is None:
            # Same as an UPDATE that matches no rows.
            logger.warning("Status update for unknown report %s ignored", report_id)
            return
        report.status = status

    async def fetch_analysis(self, report_id: str) -> dict[str, Any] | None:
        row = self.analyses.get(report_id)
        return copy.deepcopy(row) if row is not None else None

    async def fetch_report(self, report_id: str) -> Report | None:
        return self.reports.get(report_id)


# ---------------------------------------------------------------------------
# JSON files
# ---------------------------------------------------------------------------

_UNSAFE_ID_RE = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileReportStore(ReportStore):
    """
    `<root>/<table>/<report_id>.json`, one file per row. Survives between
    CLI invocations without a database.
    """

    def __init__(
        self,
        root: str | Path,
        analysis_table: str = "ai_analysis",
        reports_table: str = "reports",
    ):
        self.root = Path(root)
        self.analysis_dir = self.root / analysis_table
        self.reports_dir = self.root / reports_table

    def add_report(self, report: Report) -> None:
        self._write(self.reports_dir, report.report_id, report.to_row())

    async def upsert_analysis(self, report_id: str, row: dict[str, Any]) -> None:
        await self._run(self._write, self.analysis_dir, report_id, {**row, "report_id": report_id})

    async def update_report_status(self, report_id: str, status: ReportStatus) -> None:
        row = await self._run(self._read, self.reports_dir, report_id)
        if row is None:
            logger.warning("Status update for unknown report %s ignored", report_id)
            return
        row["status"] = status.value
        await self._run(self._write, self.reports_dir, report_id, row)

    async def fetch_analysis(self, report_id: str) -> dict[str, Any] | None:
        return await self._run(self._read, self.analysis_dir, report_id)

    async def fetch_report(self, report_id: str) -> Report | None:
        row = await self._run(self._read, self.reports_dir, report_id)
        return Report.from_row(row) if row is not None else None

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Local store at {self.root} failed: {exc}") from exc

    @staticmethod
    def _path(directory: Path, report_id: str) -> Path:
        return directory / f"{_UNSAFE_ID_RE.sub('_', report_id)}.json"

    def _write(self, directory: Path, report_id: str, row: dict[str, Any]) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        path = self._path(directory, report_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(row, f, indent=2, ensure_ascii=False, default=str)
        tmp.replace(path)

    def _read(self, directory: Path, report_id: str) -> dict[str, Any] | None:
        path = self._path(directory, report_id)
        if not path.is_file():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)


# ---------------------------------------------------------------------------
# Supabase (PostgREST)
# ---------------------------------------------------------------------------

class SupabaseRest:
    """Minimal PostgREST helper shared by the store and the vehicle registry."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
    ):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.client = client
        self.timeout_s = timeout_s
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        response = await self.client.request(
            method,
            f"{self.base_url}/{table}",
            params=params,
            json=json,
            headers=headers,
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        if not response.content:
            return []
        body = response.json()
        return body if isinstance(body, list) else [body]


class SupabaseReportStore(ReportStore):

    def __init__(
        self,
        rest: SupabaseRest,
        analysis_table: str = "ai_analysis",
        reports_table: str = "reports",
    ):
        self.rest = rest
        self.analysis_table = analysis_table
        self.reports_table = reports_table

    async def upsert_analysis(self, report_id: str, row: dict[str, Any]) -> None:
        payload = {k: v for k, v in row.items() if k != "report_id"}
        key = {"report_id": f"eq.{report_id}"}
        try:
            updated = await self.rest.request(
                "PATCH",
                self.analysis_table,
                params={**key, "select": "report_id"},
                json=payload,
                prefer="return=representation",
            )
            if not updated:
                await self.rest.request(
                    "POST",
                    self.analysis_table,
                    json={"report_id": report_id, **payload},
                    prefer="return=minimal",
                )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Saving analysis for {report_id} failed: {exc}") from exc

    async def update_report_status(self, report_id: str, status: ReportStatus) -> None:
        try:
            await self.rest.request(
                "PATCH",
                self.reports_table,
                params={"report_id": f"eq.{report_id}"},
                json={"status": status.value},
                prefer="return=minimal",
            )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Updating status of {report_id} failed: {exc}") from exc

    async def fetch_analysis(self, report_id: str) -> dict[str, Any] | None:
        rows = await self._select(self.analysis_table, report_id)
        return rows[0] if rows else None

    async def fetch_report(self, report_id: str) -> Report | None:
        rows = await self._select(self.reports_table, report_id)
        return Report.from_row(rows[0]) if rows else None

    async def _select(self, table: str, report_id: str) -> list[dict[str, Any]]:
        try:
            return await self.rest.request(
                "GET", table, params={"report_id": f"eq.{report_id}", "select": "*"}
            )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Reading {table} for {report_id} failed: {exc}") from exc
