"""
Excel Run Reports with Concurrency Control

Process-safe Excel exports for:
- Per-input outcomes of reconciliation runs
- Duplicate groups found by a dedupe scan

Several Celery workers can finish runs at the same time, so every
read-modify-write of a workbook happens under a FileLock.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd
from filelock import FileLock, Timeout

from reconciler.core.config import get_settings
from reconciler.pipeline.types import DuplicateGroup, RunMode, RunReport, StoredEstablishment

logger = logging.getLogger(__name__)

RUNS_FILENAME = "reconciliation_runs.xlsx"
DUPLICATES_FILENAME = "duplicate_groups.xlsx"


class RunReportExporter:
    """Appends run and dedupe results to Excel workbooks."""

    RUN_COLUMNS = [
        "run_id",
        "mode",
        "run_status",
        "input",
        "status",
        "match_type",
        "score",
        "external_id",
        "establishment_id",
        "items_written",
        "error",
        "exported_at",
    ]

    DUPLICATE_COLUMNS = [
        "scan_id",
        "canonical_id",
        "canonical_name",
        "member_id",
        "member_name",
        "reason",
        "applied",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.lock_timeout = settings.report_lock_timeout if lock_timeout is None else lock_timeout
        self.runs_file = self.data_dir / RUNS_FILENAME
        self.duplicates_file = self.data_dir / DUPLICATES_FILENAME

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self, file_path: Path, columns: list) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except (OSError, ValueError) as e:
                logger.warning(f"Error reading {file_path}: {e}")
        return pd.DataFrame(columns=columns)

    def _append_rows(
        self,
        file_path: Path,
        columns: list,
        rows: list[dict[str, Any]],
        label: str,
    ) -> dict[str, Any]:
        self._ensure_data_dir()

        result = {
            "success": False,
            "message": "",
            "rows": 0,
            "file": str(file_path),
            "exported_at": None,
        }

        try:
            lock = FileLock(f"{file_path}.lock", timeout=self.lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for {label}")

                df = self._load_or_create_df(file_path, columns)
                if rows:
                    new_rows = pd.DataFrame(rows, columns=columns)
                    df = new_rows if df.empty else pd.concat([df, new_rows], ignore_index=True)
                df.to_excel(str(file_path), index=False, engine="openpyxl")

                logger.info(f"{label}: {len(rows)} rows exported to {file_path.name}")

                result["success"] = True
                result["rows"] = len(rows)
                result["message"] = f"{label} exported"
                result["exported_at"] = rows[0]["exported_at"] if rows else None

            logger.debug(f"Lock released for {label}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for {label}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting {label}")

        return result

    def export_run(self, report: RunReport, mode: RunMode) -> dict[str, Any]:
        """Append one row per outcome of a run."""
        export_time = datetime.now().isoformat()
        rows = [
            {
                "run_id": report.run_id,
                "mode": mode.value,
                "run_status": report.summary.status.value,
                "input": outcome.input,
                "status": outcome.status.value,
                "match_type": outcome.match_type.value if outcome.match_type else None,
                "score": round(outcome.score, 4) if outcome.score is not None else None,
                "external_id": outcome.external_id,
                "establishment_id": outcome.establishment_id,
                "items_written": outcome.items_written,
                "error": outcome.error,
                "exported_at": export_time,
            }
            for outcome in report.outcomes
        ]
        return self._append_rows(self.runs_file, self.RUN_COLUMNS, rows, f"Run {report.run_id}")

    def export_duplicates(
        self,
        scan_id: str,
        groups: Iterable[DuplicateGroup],
        establishments: Iterable[StoredEstablishment],
        applied: bool = False,
    ) -> dict[str, Any]:
        """Append one row per duplicate member of a scan."""
        names = {e.id: e.name for e in establishments}
        export_time = datetime.now().isoformat()
        rows = [
            {
                "scan_id": scan_id,
                "canonical_id": group.canonical_id,
                "canonical_name": names.get(group.canonical_id),
                "member_id": member_id,
                "member_name": names.get(member_id),
                "reason": group.member_reasons.get(member_id, group.reason),
                "applied": applied,
                "exported_at": export_time,
            }
            for group in groups
            for member_id in group.member_ids
        ]
        return self._append_rows(
            self.duplicates_file, self.DUPLICATE_COLUMNS, rows, f"Dedupe scan {scan_id}"
        )

    def _read_all(self, file_path: Path) -> list[dict[str, Any]]:
        if not file_path.exists():
            return []
        try:
            df = pd.read_excel(file_path, engine="openpyxl")
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {file_path}: {e}")
            return []
        return df.to_dict("records")

    def get_run_rows(self) -> list[dict[str, Any]]:
        """Get every exported run outcome."""
        return self._read_all(self.runs_file)

    def get_duplicate_rows(self) -> list[dict[str, Any]]:
        """Get every exported duplicate row."""
        return self._read_all(self.duplicates_file)
