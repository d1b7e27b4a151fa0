"""
Celery Tasks
Background reconciliation runs, one task per run.

Independent runs may execute in parallel worker processes; they only share
the database, where every write is an idempotent upsert.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from reconciler.celery_worker import celery_app
from reconciler.core.config import get_settings
from reconciler.core.exceptions import PersistenceError
from reconciler.database import dispose_engine
from reconciler.pipeline.bootstrap import build_runner
from reconciler.pipeline.types import RunConfig, RunReport
from reconciler.services.report_exporter import RunReportExporter

logger = logging.getLogger(__name__)


async def run_reconciliation(
    names: list[str],
    config: RunConfig,
    run_id: Optional[str] = None,
    export_report: bool = False,
) -> RunReport:
    """Run one reconciliation with the application's providers and database."""
    try:
        runner = build_runner(config)
        report = await runner.run(names, run_id=run_id)
    finally:
        # Each task gets its own event loop; pooled connections cannot outlive it
        await dispose_engine()

    if export_report:
        RunReportExporter().export_run(report, config.mode)
    return report


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(PersistenceError,),
    retry_backoff=True,
)
def reconcile_names(
    self,
    names: list[str],
    mode: str = "photos",
    overrides: Optional[dict] = None,
    run_id: Optional[str] = None,
    export_report: bool = False,
) -> dict:
    """
    Reconcile a list of venue names.

    A retried task resumes: inputs already reconciled by the failed attempt
    are skipped.

    Args:
        names: Venue names to reconcile
        mode: "photos" or "menus"
        overrides: Per-run RunConfig overrides
        run_id: Run identifier chosen by the caller
        export_report: Append the outcomes to the Excel run report

    Returns:
        dict: RunReport as a dictionary
    """
    task_id = self.request.id
    overrides = dict(overrides or {})
    if self.request.retries:
        overrides["resume"] = True

    config = RunConfig.from_settings(get_settings(), mode=mode, **overrides)

    logger.info(f"📋 Task {task_id}: reconciling {len(names)} names ({mode})")
    start_time = time.time()

    try:
        report = asyncio.run(run_reconciliation(names, config, run_id, export_report))
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: run failed after {elapsed}s - {e}")
        # Celery will auto-retry persistence failures
        raise

    elapsed = round(time.time() - start_time, 3)
    logger.info(
        f"✅ Task {task_id}: run {report.run_id} {report.summary.status.value} in {elapsed}s"
    )

    result = report.to_dict()
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now().isoformat(),
    }
