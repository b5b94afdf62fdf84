"""Orchestrate import jobs: parse, register, dispatch, finish."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import timedelta
from typing import Sequence

from idea_importer.api.schemas.job import ImportJobView, JobStatusValue, SourceMeta
from idea_importer.core.config import Settings, get_settings
from idea_importer.services.job_ledger import JobLedger
from idea_importer.services.job_registry import JobRegistry
from idea_importer.services.progress_tracker import ProgressTracker
from idea_importer.services.record_sink import RecordSink
from idea_importer.services.spreadsheet_parser import (
    RawRow,
    SpreadsheetParseError,
    detect_format,
    parse_spreadsheet,
)
from idea_importer.services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class ImportRejected(ValueError):
    """The upload could not be parsed; the job was registered as failed."""

    def __init__(self, message: str, job_id: str) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class ImportCoordinator:
    """Own the lifecycle of every import job in this process.

    ``submit`` does the cheap, fail-fast part (parsing and registration) on
    the caller's thread and hands row processing to a detached thread, so
    the caller never waits on the record sink.
    """

    def __init__(
        self,
        sink: RecordSink,
        *,
        settings: Settings | None = None,
        registry: JobRegistry | None = None,
        progress: ProgressTracker | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.sink = sink
        self.registry = registry or JobRegistry(
            retention=timedelta(seconds=self.settings.job_retention_seconds)
        )
        self.progress = progress or ProgressTracker(None)
        self._runners: dict[str, threading.Thread] = {}
        self._runners_lock = threading.Lock()
        self._publish_locks: dict[str, threading.Lock] = {}

    # -- public API ------------------------------------------------------

    def submit(self, content: bytes, filename: str | None) -> str:
        """Parse ``content`` and start an import; returns the job id.

        Raises:
            ImportRejected: the file could not be parsed or has no rows.
        """
        self._evict_expired()
        job_id = str(uuid.uuid4())

        try:
            sheet = parse_spreadsheet(
                content,
                filename,
                max_rows=self.settings.max_rows,
                max_bytes=self.settings.max_upload_bytes,
            )
        except SpreadsheetParseError as exc:
            ledger = self._new_ledger(
                job_id,
                0,
                SourceMeta(filename=filename, format=detect_format(content or b"", filename)),
            )
            ledger.fail(str(exc))
            self.registry.add(ledger)
            self._publish(ledger)
            logger.warning(f"Rejected import {job_id} ({filename}): {exc}")
            raise ImportRejected(str(exc), job_id) from exc

        ledger = self._new_ledger(
            job_id,
            sheet.row_count,
            SourceMeta(
                filename=filename,
                format=sheet.format,
                row_count=sheet.row_count,
                column_count=sheet.column_count,
                headers=sheet.headers,
            ),
        )
        self.registry.add(ledger)
        self._publish(ledger)

        runner = threading.Thread(
            target=self._run_job,
            args=(ledger, sheet.rows),
            name=f"import-{job_id[:8]}",
            daemon=True,
        )
        with self._runners_lock:
            self._runners[job_id] = runner
        try:
            runner.start()
        except RuntimeError as exc:
            with self._runners_lock:
                self._runners.pop(job_id, None)
            logger.error(f"Could not start import job {job_id}: {exc}", exc_info=True)
            ledger.fail(f"Failed to start import: {exc}")
            self._publish(ledger)
            return job_id

        logger.info(
            f"Queued import job {job_id} for {filename}: "
            f"{sheet.row_count} rows, {sheet.column_count} columns ({sheet.format})"
        )
        return job_id

    def status(self, job_id: str) -> ImportJobView | None:
        """Latest snapshot, or None when the job is unknown or evicted."""
        ledger = self.registry.get(job_id)
        if ledger is not None:
            return ledger.snapshot()
        return self.progress.fetch(job_id)

    def cancel(self, job_id: str) -> ImportJobView | None:
        """Ask the job's workers to stop after their current row."""
        ledger = self.registry.get(job_id)
        if ledger is None:
            return None
        ledger.request_cancel()
        return ledger.snapshot()

    def list_jobs(
        self, *, status: JobStatusValue | None = None, limit: int = 50
    ) -> list[ImportJobView]:
        views = [ledger.snapshot() for ledger in self.registry.list_jobs()]
        if status is not None:
            views = [view for view in views if view.status == status]
        return views[:limit]

    def wait(self, job_id: str, timeout: float | None = None) -> ImportJobView | None:
        """Block until the job's runner exits (or ``timeout`` passes)."""
        with self._runners_lock:
            runner = self._runners.get(job_id)
        if runner is not None:
            runner.join(timeout)
        return self.status(job_id)

    # -- job execution ---------------------------------------------------

    def _run_job(self, ledger: JobLedger, rows: Sequence[RawRow]) -> None:
        started = time.monotonic()
        deadline = (
            started + self.settings.job_timeout_seconds
            if self.settings.job_timeout_seconds
            else None
        )
        pool = WorkerPool(
            self.sink,
            concurrency=self.settings.import_concurrency,
            on_row_done=self._publish_periodically if self.progress.enabled else None,
        )
        try:
            ledger.mark_processing()
            self._publish(ledger)
            outcome = pool.run(ledger, rows, deadline=deadline)
            ledger.finalize(outcome.stop_reason)
        except Exception as exc:
            logger.error(f"Import job {ledger.id} crashed: {exc}", exc_info=True)
            if not ledger.is_terminal:
                ledger.fail(f"Internal error: {exc}")
        finally:
            with self._runners_lock:
                self._runners.pop(ledger.id, None)

        view = self._publish(ledger)
        logger.info(
            f"Import job {ledger.id} {view.status} in {time.monotonic() - started:.1f}s: "
            f"{view.successful_rows} created, {view.failed_rows} failed, "
            f"{view.processed_rows}/{view.total_rows} processed"
            + (f" (stopped: {view.stop_reason})" if view.stop_reason else "")
        )

    def _publish(self, ledger: JobLedger) -> ImportJobView:
        # Mirrored snapshots must land in the order they were taken
        with self._publish_locks.setdefault(ledger.id, threading.Lock()):
            view = ledger.snapshot()
            self.progress.publish(view)
        return view

    def _publish_periodically(self, ledger: JobLedger) -> None:
        if ledger.processed_rows % self.settings.progress_publish_interval == 0:
            self._publish(ledger)

    def _new_ledger(self, job_id: str, total_rows: int, meta: SourceMeta) -> JobLedger:
        return JobLedger(
            job_id,
            total_rows,
            source_meta=meta,
            max_stored_errors=self.settings.max_stored_errors,
            max_stored_results=self.settings.max_stored_results,
            max_error_length=self.settings.max_error_length,
        )

    def _evict_expired(self) -> None:
        for job_id in self.registry.evict_expired():
            with self._runners_lock:
                self._runners.pop(job_id, None)
            self._publish_locks.pop(job_id, None)
