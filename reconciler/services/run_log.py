"""
Run Log Store

Durable record of reconciliation runs: one header row per run and one
append-only outcome row per processed input. The latest outcome of an
input, per run mode, is what `--resume` consults.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reconciler.core.exceptions import PersistenceError
from reconciler.models import ReconciliationRun, RunOutcomeRecord
from reconciler.pipeline.types import (
    OutcomeStatus,
    RunConfig,
    RunMode,
    RunOutcome,
    RunStatus,
    RunSummary,
)

logger = logging.getLogger(__name__)


def _outcome_to_dict(row: RunOutcomeRecord) -> dict:
    return {
        "input": row.input_name,
        "status": row.status.value,
        "items_written": row.items_written,
        "error": row.error,
        "external_id": row.external_id,
        "match_type": row.match_type.value if row.match_type else None,
        "score": row.score,
        "establishment_id": row.establishment_id,
    }


def _run_to_dict(row: ReconciliationRun) -> dict:
    return {
        "run_id": row.run_id,
        "mode": row.mode.value,
        "status": row.status.value,
        "total_inputs": row.total_inputs,
        "config": json.loads(row.config) if row.config else None,
        "summary": json.loads(row.summary) if row.summary else None,
        "started_at": row.started_at.isoformat() if row.started_at else None,
        "finished_at": row.finished_at.isoformat() if row.finished_at else None,
    }


class RunLogStore:
    """Writer and reader of run headers and per-input outcomes."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def start_run(self, run_id: str, config: RunConfig, total_inputs: int) -> None:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    session.add(ReconciliationRun(
                        run_id=run_id,
                        mode=config.mode,
                        status=RunStatus.RUNNING,
                        total_inputs=total_inputs,
                        config=json.dumps(config.to_dict()),
                    ))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record start of run {run_id}: {e}") from e

    async def append(self, run_id: str, mode: RunMode, outcome: RunOutcome) -> None:
        """Append one outcome; called as soon as an input completes."""
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    session.add(RunOutcomeRecord(
                        run_id=run_id,
                        mode=mode,
                        input_name=outcome.input,
                        status=outcome.status,
                        items_written=outcome.items_written,
                        error=outcome.error,
                        external_id=outcome.external_id,
                        match_type=outcome.match_type,
                        score=outcome.score,
                        establishment_id=outcome.establishment_id,
                    ))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to log outcome of '{outcome.input}': {e}") from e

    async def finish_run(self, run_id: str, summary: RunSummary) -> None:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    row = (await session.execute(
                        select(ReconciliationRun).where(ReconciliationRun.run_id == run_id)
                    )).scalar_one_or_none()
                    if row is None:
                        logger.warning(f"Run {run_id} has no header row, summary not stored")
                        return
                    row.status = summary.status
                    row.summary = json.dumps(summary.to_dict())
                    row.finished_at = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record end of run {run_id}: {e}") from e

    async def latest_outcomes(
        self,
        names: Iterable[str],
        mode: RunMode,
    ) -> dict[str, OutcomeStatus]:
        """
        Most recent logged status per input name, for one run mode.

        Names never processed are absent from the result.
        """
        wanted = set(names)
        if not wanted:
            return {}

        try:
            async with self._session_maker() as session:
                rows = (await session.execute(
                    select(RunOutcomeRecord.input_name, RunOutcomeRecord.status)
                    .where(
                        RunOutcomeRecord.mode == mode,
                        RunOutcomeRecord.input_name.in_(wanted),
                    )
                    .order_by(RunOutcomeRecord.id.desc())
                )).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read outcome log: {e}") from e

        latest: dict[str, OutcomeStatus] = {}
        for input_name, status in rows:
            latest.setdefault(input_name, status)
        return latest

    async def get_run(self, run_id: str) -> Optional[dict]:
        """Run header plus every outcome, in processing order."""
        try:
            async with self._session_maker() as session:
                run = (await session.execute(
                    select(ReconciliationRun).where(ReconciliationRun.run_id == run_id)
                )).scalar_one_or_none()
                if run is None:
                    return None
                outcomes = (await session.execute(
                    select(RunOutcomeRecord)
                    .where(RunOutcomeRecord.run_id == run_id)
                    .order_by(RunOutcomeRecord.id)
                )).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read run {run_id}: {e}") from e

        result = _run_to_dict(run)
        result["outcomes"] = [_outcome_to_dict(o) for o in outcomes]
        return result

    async def list_runs(self, limit: int = 50) -> list[dict]:
        """Most recent runs first."""
        try:
            async with self._session_maker() as session:
                rows = (await session.execute(
                    select(ReconciliationRun)
                    .order_by(ReconciliationRun.id.desc())
                    .limit(limit)
                )).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list runs: {e}") from e
        return [_run_to_dict(row) for row in rows]
