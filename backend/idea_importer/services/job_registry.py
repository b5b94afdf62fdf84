"""Process-wide registry of import job ledgers."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from idea_importer.services.job_ledger import JobLedger, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)


class JobRegistry:
    """Map job id -> ledger with retention-based eviction.

    The lock guards only the dictionary; ledgers carry their own locks, so
    workers updating one job never wait on lookups for another. Finished
    jobs stay visible for ``retention`` after they finish; jobs that are
    still queued or processing are never evicted.
    """

    def __init__(self, retention: timedelta = DEFAULT_RETENTION) -> None:
        self.retention = retention
        self._lock = threading.Lock()
        self._jobs: dict[str, JobLedger] = {}

    def add(self, ledger: JobLedger) -> None:
        with self._lock:
            if ledger.id in self._jobs:
                raise KeyError(f"Import job {ledger.id} is already registered")
            self._jobs[ledger.id] = ledger

    def get(self, job_id: str, *, now: datetime | None = None) -> JobLedger | None:
        """Look up a job; expired jobs read as missing even before eviction."""
        with self._lock:
            ledger = self._jobs.get(job_id)
        if ledger is None or self._is_expired(ledger, now or utcnow()):
            return None
        return ledger

    def list_jobs(self, *, now: datetime | None = None) -> list[JobLedger]:
        """Live (non-expired) jobs, newest first."""
        current = now or utcnow()
        with self._lock:
            ledgers = list(self._jobs.values())
        live = [ledger for ledger in ledgers if not self._is_expired(ledger, current)]
        return sorted(live, key=lambda ledger: ledger.created_at, reverse=True)

    def evict_expired(self, *, now: datetime | None = None) -> list[str]:
        """Drop finished jobs past the retention window; returns evicted ids."""
        current = now or utcnow()
        with self._lock:
            expired = [
                job_id
                for job_id, ledger in self._jobs.items()
                if self._is_expired(ledger, current)
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired import job(s)")
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def _is_expired(self, ledger: JobLedger, now: datetime) -> bool:
        finished_at = ledger.finished_at
        return finished_at is not None and now - finished_at >= self.retention
