"""
Reconciler Command Line

    reconciler init-db
    reconciler reconcile "Trabuxu Bistro" "Tortuga" --mode photos
    reconciler reconcile --file bars.txt --mode menus --resume --report
    reconciler dedupe [--apply] [--report]

Ctrl+C during `reconcile` stops the run before the next name; the names
left are reported as cancelled and a later `--resume` picks them up.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

import uvicorn

from reconciler.core.config import RetryBackoff, get_settings, setup_logging
from reconciler.core.exceptions import PersistenceError
from reconciler.database import dispose_engine, get_session_maker, init_db
from reconciler.pipeline.bootstrap import build_runner
from reconciler.pipeline.duplicates import DuplicateDetector
from reconciler.pipeline.types import RunConfig, RunMode, RunReport, RunStatus
from reconciler.services.persistence import PersistenceGateway
from reconciler.services.report_exporter import RunReportExporter

logger = logging.getLogger(__name__)


def read_names(names: list[str], file: Optional[str]) -> list[str]:
    """Names from the command line, then from the file (one per line, # comments)."""
    collected = [n.strip() for n in names if n.strip()]
    if file:
        for line in Path(file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                collected.append(line)
    return collected


def print_report(report: RunReport) -> None:
    summary = report.summary
    print("=" * 60)
    print("📊 RECONCILIATION REPORT")
    print("=" * 60)
    print(f"🆔 Run: {report.run_id}")
    print(f"⏰ Finished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📌 Status: {summary.status.value}")
    print("-" * 60)
    for outcome in report.outcomes:
        line = f"  {outcome.status.value:<17} {outcome.input}"
        if outcome.items_written:
            line += f"  ({outcome.items_written} items)"
        if outcome.error:
            line += f"  - {outcome.error}"
        print(line)
    print("-" * 60)
    print(f"  Matched:          {summary.matched}")
    print(f"  Not found:        {summary.not_found}")
    print(f"  Extraction empty: {summary.extraction_empty}")
    print(f"  Persist errors:   {summary.persist_errors}")
    print(f"  Failed:           {summary.failed}")
    print(f"  Skipped (resume): {summary.skipped}")
    print(f"  Items written:    {summary.items_written}")
    print("=" * 60)


# =============================================================================
# COMMANDS
# =============================================================================

async def cmd_init_db(args: argparse.Namespace) -> int:
    try:
        await init_db()
    finally:
        await dispose_engine()
    return 0


async def cmd_reconcile(args: argparse.Namespace) -> int:
    names = read_names(args.names, args.file)
    if not names:
        print("❌ No names given (pass them as arguments or with --file)")
        return 2

    config = RunConfig.from_settings(
        get_settings(),
        mode=args.mode,
        batch_size=args.batch_size,
        batch_pause_seconds=args.batch_pause,
        similarity_threshold=args.threshold,
        max_retries=args.max_retries,
        retry_delay_seconds=args.retry_delay,
        retry_backoff=args.backoff,
        inter_request_delay_seconds=args.request_delay,
        max_items_per_record=args.max_items,
        search_suffix=args.search_suffix,
        resume=args.resume or None,
    )

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    try:
        await init_db()
        runner = build_runner(config)
        report = await runner.run(names, cancel_event=cancel_event)
    finally:
        await dispose_engine()

    print_report(report)

    if args.report:
        result = RunReportExporter().export_run(report, config.mode)
        print(f"📄 Report: {result['file']} ({result['message']})")

    return 1 if failed else 0 if report.summary.status == RunStatus.COMPLETED else 1


async def cmd_dedupe(args: argparse.Namespace) -> int:
    try:
        await init_db()
        gateway = PersistenceGateway(get_session_maker())
        establishments = await gateway.load_establishments()
        groups = DuplicateDetector.from_settings(get_settings()).find_duplicates(establishments)

        names = {e.id: e.name for e in establishments}
        print("=" * 60)
        print(f"🔍 DUPLICATE SCAN: {len(establishments)} establishments, {len(groups)} groups")
        print("=" * 60)
        for group in groups:
            print(f"  #{group.canonical_id} {names.get(group.canonical_id)}")
            for member_id in group.member_ids:
                print(f"    └─ #{member_id} {names.get(member_id)} ({group.member_reasons[member_id]})")

        failed = 0
        if args.apply:
            for group in groups:
                try:
                    result = await gateway.merge_duplicate_group(group)
                except PersistenceError as e:
                    failed += 1
                    print(f"  ❌ merge into #{group.canonical_id} failed: {e}")
                    continue
                print(f"  🔗 merged {result['deleted_ids']} into #{result['canonical_id']}")
            print(f"  ✅ {len(groups) - failed}/{len(groups)} groups merged")
    finally:
        await dispose_engine()

    if args.report:
        result = RunReportExporter().export_duplicates(
            str(uuid.uuid4()), groups, establishments, applied=args.apply
        )
        print(f"📄 Report: {result['file']} ({result['message']})")

    return 1 if failed else 0


def cmd_serve(args: argparse.Namespace) -> int:
    settings = get_settings()
    uvicorn.run(
        "reconciler.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
    )
    return 0


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reconciler",
        description="Venue reconciliation: resolve names, extract menus/photos, dedupe",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default: API_HOST)")
    serve.add_argument("--port", type=int, help="Port (default: API_PORT)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    reconcile = commands.add_parser("reconcile", help="Reconcile a list of venue names")
    reconcile.add_argument("names", nargs="*", help="Venue names")
    reconcile.add_argument("--file", help="File with one venue name per line")
    reconcile.add_argument(
        "--mode",
        choices=[m.value for m in RunMode],
        default=RunMode.PHOTOS.value,
        help="photos: place search + photos, menus: menu catalog + menu lines",
    )
    reconcile.add_argument("--batch-size", type=int, help="Names per batch")
    reconcile.add_argument("--batch-pause", type=float, help="Seconds between batches")
    reconcile.add_argument("--threshold", type=float, help="Fuzzy match threshold (0-1)")
    reconcile.add_argument("--max-retries", type=int, help="Attempts per transient failure")
    reconcile.add_argument("--retry-delay", type=float, help="Seconds between attempts")
    reconcile.add_argument(
        "--backoff",
        choices=[b.value for b in RetryBackoff],
        help="Delay policy between attempts",
    )
    reconcile.add_argument("--request-delay", type=float, help="Seconds before every request (>= 0.15)")
    reconcile.add_argument("--max-items", type=int, help="Items stored per establishment")
    reconcile.add_argument("--search-suffix", help="Appended to place search queries")
    reconcile.add_argument("--resume", action="store_true", help="Skip names already reconciled")
    reconcile.add_argument("--report", action="store_true", help="Append outcomes to the Excel report")

    dedupe = commands.add_parser("dedupe", help="Find (and optionally merge) duplicate establishments")
    dedupe.add_argument("--apply", action="store_true", help="Merge every group into its canonical")
    dedupe.add_argument("--report", action="store_true", help="Append groups to the Excel report")

    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "reconcile": cmd_reconcile,
    "dedupe": cmd_dedupe,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    if args.command == "serve":
        return cmd_serve(args)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except ValueError as e:
        print(f"❌ {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
