"""
Import run control: cooperative cancellation, best-effort progress
reporting, and the per-batch migration log writer.
"""
from __future__ import annotations

import threading
from datetime import date
from typing import Callable, Optional

from loguru import logger

from tally_migration.core.errors import ImportCancelled
from tally_migration.models import MigrationLog
from tally_migration.repositories import MigrationLogRepository
from tally_migration.schemas.responses import ImportProgress

ProgressCallback = Callable[[ImportProgress], None]


class CancellationToken:
    """Set from another thread; checked by importers at every record boundary."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelled()


def report_progress(callback: Optional[ProgressCallback], progress: ImportProgress) -> None:
    """Push progress to the caller's sink. A failing sink never fails the import."""
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as exc:
        logger.debug(f"Progress callback failed for batch {progress.batch_id}: {exc}")


class MigrationLogWriter:
    """
    Writes one MigrationLog row per processed record with a batch-wide,
    monotonically increasing processing order. Rollback replays the
    success rows in reverse of that order.
    """

    def __init__(self, logs: MigrationLogRepository, batch_id: int):
        self.logs = logs
        self.batch_id = batch_id
        self._order = logs.max_processing_order(batch_id)

    def write(
        self,
        record_type: str,
        status: str,
        *,
        tally_guid: Optional[str] = None,
        tally_name: Optional[str] = None,
        tally_date: Optional[date] = None,
        tally_amount: Optional[float] = None,
        error_message: Optional[str] = None,
        target_id: Optional[int] = None,
        target_entity: Optional[str] = None,
    ) -> MigrationLog:
        self._order += 1
        return self.logs.add(MigrationLog(
            batch_id=self.batch_id,
            record_type=record_type,
            tally_guid=tally_guid or None,
            tally_name=tally_name,
            tally_date=tally_date,
            tally_amount=tally_amount,
            status=status,
            error_message=error_message,
            target_id=target_id,
            target_entity=target_entity,
            processing_order=self._order,
        ))
