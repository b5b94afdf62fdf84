"""Tests for bounded-concurrency row processing."""

import threading
import time

import pytest

from idea_importer.services.job_ledger import JobLedger
from idea_importer.services.row_transformer import transform_row
from idea_importer.services.spreadsheet_parser import RawRow
from idea_importer.services.worker_pool import WorkerPool

from conftest import FakeSink


def raw_rows(count: int, *, blank_every: int = 0):
    rows = []
    for n in range(1, count + 1):
        title = "" if blank_every and n % blank_every == 0 else f"Idea {n}"
        rows.append(RawRow(number=n, values={"title": title, "description": f"About {n}"}))
    return rows


def run_pool(sink, rows, *, concurrency=8, **kwargs):
    ledger = JobLedger("job-1", len(rows), max_stored_errors=10_000, max_stored_results=10_000)
    ledger.mark_processing()
    outcome = WorkerPool(sink, concurrency=concurrency, **kwargs).run(ledger, rows)
    return ledger, outcome


class TestWorkerPool:
    def test_every_row_gets_exactly_one_outcome(self):
        sink = FakeSink(fail_slugs={"idea-3", "idea-4"})
        ledger, outcome = run_pool(sink, raw_rows(20, blank_every=5))
        view = ledger.snapshot()

        assert outcome.stop_reason is None
        assert view.processed_rows == 20
        assert view.failed_rows == 6
        assert view.successful_rows == 14
        failed_rows = sorted(e.row for e in view.errors)
        assert failed_rows == [3, 4, 5, 10, 15, 20]
        assert sorted(r.row for r in view.results) == sorted(
            set(range(1, 21)) - set(failed_rows)
        )

    @pytest.mark.parametrize("concurrency", [1, 50])
    def test_aggregates_do_not_depend_on_concurrency(self, concurrency):
        sink = FakeSink(fail_slugs={f"idea-{n}" for n in range(7, 500, 7)})
        ledger, _ = run_pool(sink, raw_rows(500, blank_every=11), concurrency=concurrency)
        view = ledger.snapshot()

        assert view.processed_rows == 500
        assert view.successful_rows + view.failed_rows == 500
        assert view.failed_rows == len(
            {n for n in range(1, 501) if n % 7 == 0 or n % 11 == 0}
        )
        assert len(sink.created) == view.successful_rows

    def test_concurrency_is_bounded(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        class CountingSink(FakeSink):
            def create(self, command):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                try:
                    time.sleep(0.01)
                    return super().create(command)
                finally:
                    with lock:
                        active -= 1

        ledger, _ = run_pool(CountingSink(), raw_rows(40), concurrency=4)

        assert ledger.processed_rows == 40
        assert 1 <= peak <= 4

    def test_unexpected_transformer_error_fails_only_that_row(self):
        def transformer(values, row_number):
            if row_number == 2:
                raise KeyError("boom")
            return transform_row(values, row_number)

        ledger, _ = run_pool(FakeSink(), raw_rows(3), transformer=transformer)
        view = ledger.snapshot()

        assert view.successful_rows == 2
        assert view.errors[0].row == 2
        assert view.errors[0].error.startswith("Unexpected error:")

    def test_unexpected_sink_error_fails_only_that_row(self):
        class FlakySink(FakeSink):
            def create(self, command):
                if command.slug == "idea-1":
                    raise RuntimeError("disk on fire")
                return super().create(command)

        ledger, _ = run_pool(FlakySink(), raw_rows(2))
        view = ledger.snapshot()

        assert view.failed_rows == 1
        assert view.errors[0].error == "Unexpected error: disk on fire"

    def test_cancel_stops_new_rows(self):
        rows = raw_rows(200)
        ledger = JobLedger("job-1", len(rows))
        ledger.mark_processing()

        def cancel_after_five(current):
            if current.processed_rows >= 5:
                current.request_cancel()

        pool = WorkerPool(FakeSink(delay=0.001), concurrency=2, on_row_done=cancel_after_five)
        outcome = pool.run(ledger, rows)

        assert outcome.stop_reason == "cancelled"
        assert 5 <= ledger.processed_rows < 200

    def test_expired_deadline_processes_nothing(self):
        rows = raw_rows(10)
        ledger = JobLedger("job-1", len(rows))
        ledger.mark_processing()

        outcome = WorkerPool(FakeSink(), concurrency=3).run(
            ledger, rows, deadline=time.monotonic() - 1
        )

        assert outcome.stop_reason == "timeout"
        assert ledger.processed_rows == 0

    def test_callback_errors_do_not_break_processing(self):
        def broken_callback(ledger):
            raise RuntimeError("mirror down")

        ledger, outcome = run_pool(FakeSink(), raw_rows(5), on_row_done=broken_callback)

        assert outcome.stop_reason is None
        assert ledger.processed_rows == 5

    def test_no_rows_starts_no_workers(self):
        ledger, outcome = run_pool(FakeSink(), [])
        assert outcome.stop_reason is None
        assert ledger.processed_rows == 0

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkerPool(FakeSink(), concurrency=0)
