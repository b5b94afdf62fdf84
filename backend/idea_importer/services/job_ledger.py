"""Thread-safe mutable state for one import job."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from idea_importer.api.schemas.idea import IdeaReference
from idea_importer.api.schemas.job import (
    TERMINAL_STATUSES,
    ImportJobView,
    JobStatusValue,
    RowError,
    RowResult,
    SourceMeta,
    StopReason,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"processing", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


class JobStateError(RuntimeError):
    """An operation was attempted that the job's status does not allow."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_message(message: str, limit: int) -> str:
    if len(message) <= limit:
        return message
    return message[: max(limit - 3, 0)] + "..."


class JobLedger:
    """Counters, status and bounded logs for one job.

    Every mutation goes through a method on this class and happens under
    ``self._lock``, so ``successful_rows + failed_rows == processed_rows``
    holds for every snapshot.
    """

    def __init__(
        self,
        job_id: str,
        total_rows: int,
        *,
        source_meta: SourceMeta | None = None,
        max_stored_errors: int = 200,
        max_stored_results: int = 1000,
        max_error_length: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if total_rows < 0:
            raise ValueError("total_rows must be >= 0")
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._clock = clock

        self.id = job_id
        self.total_rows = total_rows
        self.source_meta = source_meta or SourceMeta()
        self.max_stored_errors = max_stored_errors
        self.max_stored_results = max_stored_results
        self.max_error_length = max_error_length

        self._status: JobStatusValue = "queued"
        self._processed = 0
        self._successful = 0
        self._failed = 0
        self._errors: list[RowError] = []
        self._results: list[RowResult] = []
        self._error: str | None = None
        self._stop_reason: StopReason | None = None

        now = clock()
        self.created_at = now
        self._updated_at = now
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None

    # -- read side -------------------------------------------------------

    @property
    def status(self) -> JobStatusValue:
        with self._lock:
            return self._status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def processed_rows(self) -> int:
        with self._lock:
            return self._processed

    @property
    def finished_at(self) -> datetime | None:
        with self._lock:
            return self._finished_at

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def snapshot(self) -> ImportJobView:
        """Consistent copy of every field, safe to serialise without the lock."""
        with self._lock:
            progress = (
                self._processed / self.total_rows if self.total_rows else
                (1.0 if self._status == "completed" else 0.0)
            )
            return ImportJobView(
                id=self.id,
                status=self._status,
                total_rows=self.total_rows,
                processed_rows=self._processed,
                successful_rows=self._successful,
                failed_rows=self._failed,
                progress=progress,
                errors=list(self._errors),
                results=list(self._results),
                error=self._error,
                stop_reason=self._stop_reason,
                cancel_requested=self._cancel.is_set(),
                source_meta=self.source_meta,
                created_at=self.created_at,
                updated_at=self._updated_at,
                started_at=self._started_at,
                finished_at=self._finished_at,
            )

    # -- write side ------------------------------------------------------

    def mark_processing(self) -> None:
        with self._lock:
            self._transition("processing")
            self._started_at = self._updated_at

    def record_success(self, row: int, reference: IdeaReference) -> None:
        with self._lock:
            self._check_can_record(row)
            self._processed += 1
            self._successful += 1
            if len(self._results) < self.max_stored_results:
                self._results.append(
                    RowResult(row=row, id=reference.id, slug=reference.slug)
                )
            self._touch()

    def record_failure(self, row: int, message: str) -> None:
        with self._lock:
            self._check_can_record(row)
            self._processed += 1
            self._failed += 1
            if len(self._errors) < self.max_stored_errors:
                self._errors.append(
                    RowError(row=row, error=truncate_message(message, self.max_error_length))
                )
            self._touch()

    def request_cancel(self) -> bool:
        """Set the kill switch; returns False when the job already finished."""
        with self._lock:
            if self._status in TERMINAL_STATUSES:
                return False
            self._cancel.set()
            self._touch()
        logger.info(f"Cancellation requested for import job {self.id}")
        return True

    def finalize(self, stop_reason: StopReason | None = None) -> None:
        """Complete the job; rows may be missing only when it was stopped early."""
        with self._lock:
            if stop_reason is None and self._processed != self.total_rows:
                raise JobStateError(
                    f"Job {self.id} cannot complete with "
                    f"{self._processed}/{self.total_rows} rows processed"
                )
            self._transition("completed")
            self._stop_reason = stop_reason
            self._finished_at = self._updated_at

    def fail(self, reason: str) -> None:
        with self._lock:
            self._transition("failed")
            self._error = truncate_message(reason, self.max_error_length)
            self._finished_at = self._updated_at

    # -- helpers (caller holds the lock) ---------------------------------

    def _transition(self, new_status: JobStatusValue) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self._status]:
            raise JobStateError(
                f"Job {self.id} cannot move from {self._status} to {new_status}"
            )
        logger.debug(f"Import job {self.id}: {self._status} -> {new_status}")
        self._status = new_status
        self._touch()

    def _check_can_record(self, row: int) -> None:
        if self._status != "processing":
            raise JobStateError(
                f"Job {self.id} is {self._status}; cannot record row {row}"
            )
        if self._processed >= self.total_rows:
            raise JobStateError(f"Job {self.id} already accounted for every row")

    def _touch(self) -> None:
        now = self._clock()
        # updated_at never moves backwards even if the clock does
        self._updated_at = now if now > self._updated_at else self._updated_at
