"""Bounded-concurrency row processing for one import job."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from idea_importer.api.schemas.idea import IdeaCreate
from idea_importer.api.schemas.job import StopReason
from idea_importer.services.job_ledger import JobLedger
from idea_importer.services.record_sink import RecordSink, SinkError
from idea_importer.services.row_transformer import RowValidationError, transform_row
from idea_importer.services.spreadsheet_parser import RawRow

logger = logging.getLogger(__name__)

Transformer = Callable[[Mapping[str, Any], int], IdeaCreate]


@dataclass(frozen=True)
class PoolOutcome:
    stop_reason: StopReason | None = None


class WorkerPool:
    """Run every row through transformer -> sink -> ledger with ``concurrency`` threads.

    Workers pull from one shared queue, so a slow row only ever holds up the
    worker processing it. Before taking its next row each worker checks the
    ledger's kill switch and the job deadline; rows already in flight are
    always allowed to finish.
    """

    def __init__(
        self,
        sink: RecordSink,
        *,
        concurrency: int = 8,
        transformer: Transformer = transform_row,
        on_row_done: Callable[[JobLedger], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.sink = sink
        self.concurrency = concurrency
        self.transformer = transformer
        self.on_row_done = on_row_done

    def run(
        self,
        ledger: JobLedger,
        rows: Sequence[RawRow],
        *,
        deadline: float | None = None,
    ) -> PoolOutcome:
        """Process ``rows`` and block until every worker has exited.

        Args:
            ledger: job state receiving one outcome per processed row.
            rows: parsed rows, each processed at most once.
            deadline: ``time.monotonic()`` value after which no new row starts.
        """
        work: queue.Queue[RawRow] = queue.Queue()
        for row in rows:
            work.put(row)

        timed_out = threading.Event()
        worker_count = min(self.concurrency, len(rows))
        threads = [
            threading.Thread(
                target=self._worker_loop,
                args=(ledger, work, deadline, timed_out),
                name=f"import-{ledger.id[:8]}-w{idx}",
                daemon=True,
            )
            for idx in range(worker_count)
        ]
        logger.info(
            f"Import job {ledger.id}: processing {len(rows)} rows with {worker_count} workers"
        )
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if ledger.cancel_requested and not work.empty():
            return PoolOutcome(stop_reason="cancelled")
        if timed_out.is_set() and not work.empty():
            return PoolOutcome(stop_reason="timeout")
        return PoolOutcome()

    def _worker_loop(
        self,
        ledger: JobLedger,
        work: queue.Queue[RawRow],
        deadline: float | None,
        timed_out: threading.Event,
    ) -> None:
        while True:
            if ledger.cancel_requested:
                return
            if deadline is not None and time.monotonic() >= deadline:
                timed_out.set()
                return
            try:
                row = work.get_nowait()
            except queue.Empty:
                return
            try:
                self.process_row(ledger, row)
            finally:
                work.task_done()
            if self.on_row_done is not None:
                try:
                    self.on_row_done(ledger)
                except Exception as e:
                    logger.warning(f"Progress callback failed for job {ledger.id}: {e}")

    def process_row(self, ledger: JobLedger, row: RawRow) -> None:
        """Transform and persist one row, reporting exactly one outcome."""
        try:
            command = self.transformer(row.values, row.number)
        except RowValidationError as e:
            ledger.record_failure(row.number, e.message)
            return
        except Exception as e:
            logger.error(
                f"Import job {ledger.id}: unexpected error transforming row {row.number}: {e}",
                exc_info=True,
            )
            ledger.record_failure(row.number, f"Unexpected error: {e}")
            return

        try:
            reference = self.sink.create(command)
        except SinkError as e:
            logger.debug(f"Import job {ledger.id}: row {row.number} rejected: {e}")
            ledger.record_failure(row.number, str(e))
            return
        except Exception as e:
            logger.error(
                f"Import job {ledger.id}: unexpected error saving row {row.number}: {e}",
                exc_info=True,
            )
            ledger.record_failure(row.number, f"Unexpected error: {e}")
            return

        ledger.record_success(row.number, reference)
