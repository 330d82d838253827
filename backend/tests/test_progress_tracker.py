import pytest

from app.core.errors import JobCanceledError
from app.services.progress_tracker import ProgressReporter
from conftest import RecordingPublisher


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RecordingStore:
    def __init__(self, cancel=False):
        self.writes = []
        self.cancel = cancel

    def record_progress(self, job_id, advanced_count, total_count):
        self.writes.append((advanced_count, total_count))

    def is_cancel_requested(self, job_id):
        return self.cancel


def _reporter(store, clock, publisher, flush_every=100, flush_interval=5.0):
    return ProgressReporter(
        "batch_1",
        1,
        store,
        flush_every=flush_every,
        flush_interval=flush_interval,
        publisher=publisher,
        clock=clock,
    )


def test_store_writes_are_throttled_by_count():
    store, clock, publisher = RecordingStore(), FakeClock(), RecordingPublisher()
    reporter = _reporter(store, clock, publisher)
    reporter.set_total(1000)

    for _ in range(25):
        reporter.advance(10)

    # set_total plus one flush per 100 records
    assert store.writes == [(0, 1000), (100, 1000), (200, 1000)]
    assert len(publisher.calls) == 25
    assert publisher.calls[-1]["advanced_count"] == 250
    assert {call["status"] for call in publisher.calls} == {"processing"}


def test_store_writes_are_throttled_by_time():
    store, clock, publisher = RecordingStore(), FakeClock(), RecordingPublisher()
    reporter = _reporter(store, clock, publisher, flush_every=10_000, flush_interval=5.0)
    reporter.set_total(None)

    reporter.advance(1)
    clock.now = 4.9
    reporter.advance(1)
    clock.now = 5.0
    reporter.advance(1)
    clock.now = 6.0
    reporter.advance(1)

    assert store.writes == [(0, None), (3, None)]
    assert [call["advanced_count"] for call in publisher.calls] == [1, 2, 3, 4]


def test_explicit_flush_writes_latest_count():
    store, clock, publisher = RecordingStore(), FakeClock(), RecordingPublisher()
    reporter = _reporter(store, clock, publisher)
    reporter.advance(7)

    reporter.flush()

    assert store.writes == [(7, None)]


def test_check_canceled():
    clock, publisher = FakeClock(), RecordingPublisher()
    _reporter(RecordingStore(cancel=False), clock, publisher).check_canceled()

    with pytest.raises(JobCanceledError):
        _reporter(RecordingStore(cancel=True), clock, publisher).check_canceled()
