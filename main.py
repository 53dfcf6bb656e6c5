"""High-level API + CLI for the traffic-violation report verifier."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import httpx

from analyzers import ConfigError
from pipeline import (
    InMemoryReportStore,
    JsonFileReportStore,
    PersistenceError,
    PipelineConfig,
    Report,
    ReportStore,
    VerdictCompiler,
    ViolationCategory,
    build_compiler,
    load_config,
)
from pipeline.config import CONFIG_PATH
from pipeline.runtime import build_store


logger = logging.getLogger(__name__)


class ReportVerifierAPI:
    """High-level orchestration API usable from CLI or notebooks."""

    def __init__(self, config_path: Path | str | None = CONFIG_PATH, store: ReportStore | None = None):
        self.config_path = config_path
        self.cfg: PipelineConfig = load_config(config_path)
        self._store = store

    def _ensure_runtime(self, client: httpx.AsyncClient) -> VerdictCompiler:
        # Provider clients are bound to one event loop, so the compiler is
        # rebuilt per call; the store is kept so a memory store survives.
        compiler = build_compiler(self.cfg, client, store=self._store)
        self._store = compiler.store
        return compiler

    def _require_persistent_store(self, command: str) -> None:
        if self._store is None and str(self.cfg.store.backend).strip().lower() == "memory":
            raise ConfigError(
                f"'{command}' needs stored reports, but store.backend is 'memory' and "
                "nothing was analysed in this process. Use store.backend 'file' or 'supabase'."
            )

    async def _run(self, step):
        async with httpx.AsyncClient() as client:
            compiler = self._ensure_runtime(client)
            try:
                return await step(compiler)
            finally:
                await compiler.aclose()

    def analyze(
        self,
        report_id: str,
        image_url: str,
        category: str = ViolationCategory.OTHER.value,
        remarks: str = "",
    ) -> dict[str, Any] | None:
        async def step(compiler: VerdictCompiler):
            if isinstance(compiler.store, (InMemoryReportStore, JsonFileReportStore)):
                compiler.store.add_report(
                    Report(
                        report_id=report_id,
                        category=ViolationCategory.parse(category),
                        media_urls=(image_url,),
                        remarks=remarks,
                    )
                )
            return await compiler.process_report(report_id, image_url, category, remarks)

        record = asyncio.run(self._run(step))
        return record.to_dict() if record is not None else None

    def rerun(self, report_id: str) -> dict[str, Any] | None:
        self._require_persistent_store("rerun")

        async def step(compiler: VerdictCompiler):
            return await compiler.rerun(report_id)

        record = asyncio.run(self._run(step))
        return record.to_dict() if record is not None else None

    def show(self, report_id: str) -> dict[str, Any]:
        self._require_persistent_store("show")

        async def run():
            async with httpx.AsyncClient() as client:
                store = self._store
                if store is None:
                    store = build_store(self.cfg.store, client, float(self.cfg.timeouts.call_s))
                return await store.fetch_report(report_id), await store.fetch_analysis(report_id)

        report, analysis = asyncio.run(run())
        if report is None and analysis is None:
            raise LookupError(f"Report {report_id} not found.")
        return {
            "report": report.to_row() if report is not None else None,
            "analysis": analysis,
        }


# -------------------- CLI commands --------------------

def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_analyze(args: argparse.Namespace) -> None:
    api = ReportVerifierAPI(args.config)
    out = api.analyze(args.report_id, args.image_url, category=args.category, remarks=args.remarks)
    if out is None:
        print(f"[analyze] No media for {args.report_id}; nothing to do.")
        return
    _print(out)


def cmd_rerun(args: argparse.Namespace) -> None:
    api = ReportVerifierAPI(args.config)
    _print(api.rerun(args.report_id))


def cmd_show(args: argparse.Namespace) -> None:
    api = ReportVerifierAPI(args.config)
    _print(api.show(args.report_id))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Traffic-violation report verifier")
    parser.add_argument("--config", default=str(CONFIG_PATH), help="Pipeline YAML config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze_p = sub.add_parser("analyze", help="Verify one report and store the verdict")
    analyze_p.add_argument("report_id", help="Report id, e.g. RPT-1700000000001")
    analyze_p.add_argument("image_url", help="Evidence image URL, data: URI or local path")
    analyze_p.add_argument(
        "--category",
        default=ViolationCategory.OTHER.value,
        help="Claimed violation, e.g. 'No Helmet'",
    )
    analyze_p.add_argument("--remarks", default="", help="Reporter's free-text remarks")

    rerun_p = sub.add_parser("rerun", help="Re-analyse a stored report from its first media URL")
    rerun_p.add_argument("report_id")

    show_p = sub.add_parser("show", help="Print a stored report and its analysis")
    show_p.add_argument("report_id")

    return parser


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    commands = {
        "analyze": cmd_analyze,
        "rerun": cmd_rerun,
        "show": cmd_show,
    }
    try:
        commands[args.command](args)
    except (ConfigError, LookupError, PersistenceError) as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
