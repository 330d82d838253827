import pytest
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import JobConflictError, NotFoundError
from app.db.models.batch_job import BatchJob


@pytest.fixture
def job(store):
    return store.create("product-export", {"filterable_fields": {"title": "X"}}, "admin")


class TestCreateAndRead:
    def test_create_starts_in_created(self, store, job):
        assert job.id.startswith("batch_")
        assert job.status == "created"
        assert job.result is None and job.error is None
        assert job.created_by == "admin"
        assert job.version == 1
        assert store.get(job.id).status == "created"

    def test_ids_are_unique(self, store):
        ids = {store.create("product-export", {}, None).id for _ in range(20)}
        assert len(ids) == 20

    def test_get_unknown_raises(self, store):
        with pytest.raises(NotFoundError):
            store.get("batch_missing")

    def test_list_newest_first_with_filters(self, store):
        first = store.create("product-export", {}, None)
        second = store.create("other", {}, None)
        store.mark_processing(second.id)

        jobs, count = store.list_jobs()
        assert count == 2
        assert {j.id for j in jobs} == {first.id, second.id}

        jobs, count = store.list_jobs(status="processing")
        assert [j.id for j in jobs] == [second.id]
        assert count == 1

        jobs, count = store.list_jobs(job_type="product-export")
        assert [j.id for j in jobs] == [first.id]


class TestTransitions:
    def test_processing_counts_attempts(self, store, job):
        started = store.mark_processing(job.id)
        again = store.mark_processing(job.id)

        assert started.status == "processing"
        assert started.attempts == 1
        assert again.attempts == 2
        assert again.started_at is not None

    def test_complete_sets_result_and_is_sticky(self, store, job):
        store.mark_processing(job.id)
        done = store.complete(job.id, {"file_key": "exports/a.csv", "record_count": 4})

        assert done.status == "completed"
        assert done.result["file_key"] == "exports/a.csv"
        assert done.error is None
        assert done.progress.advanced_count == 4
        assert done.progress.percent == 100.0
        assert store.fail(job.id, {"code": "permanent"}) is None
        assert store.mark_processing(job.id) is None
        assert store.get(job.id).status == "completed"

    def test_complete_requires_processing(self, store, job):
        assert store.complete(job.id, {"file_key": "k"}) is None

    def test_complete_rejects_stale_attempt(self, store, job):
        store.mark_processing(job.id)
        store.mark_processing(job.id)

        assert store.complete(job.id, {"file_key": "k"}, attempt=1) is None
        assert store.complete(job.id, {"file_key": "k"}, attempt=2).status == "completed"

    def test_fail_sets_error_only(self, store, job):
        store.mark_processing(job.id)
        failed = store.fail(job.id, {"code": "permanent", "message": "bad"})

        assert failed.status == "failed"
        assert failed.result is None
        assert failed.error["code"] == "permanent"
        assert failed.finished_at is not None

    def test_retry_keeps_error_off_the_job(self, store, job):
        store.mark_processing(job.id)
        retrying = store.schedule_retry(job.id, {"code": "transient", "message": "timeout"})

        assert retrying.status == "processing"
        assert retrying.error is None
        with store._session_factory() as session:
            assert session.get(BatchJob, job.id).last_error["code"] == "transient"

    def test_progress_only_while_processing(self, store, job):
        assert store.record_progress(job.id, 5, 10) is None

        store.mark_processing(job.id)
        progressed = store.record_progress(job.id, 5, 10)

        assert progressed.progress.advanced_count == 5
        assert progressed.progress.total_count == 10
        assert progressed.progress.percent == 50.0

    def test_unknown_job_transition_raises(self, store):
        with pytest.raises(NotFoundError):
            store.mark_processing("batch_missing")


class TestCancel:
    def test_cancel_created_is_immediate(self, store, job):
        canceled = store.request_cancel(job.id)

        assert canceled.status == "canceled"
        assert canceled.result is None and canceled.error is None

    def test_cancel_processing_sets_flag(self, store, job):
        store.mark_processing(job.id)
        flagged = store.request_cancel(job.id)

        assert flagged.status == "processing"
        assert flagged.cancel_requested is True
        assert store.is_cancel_requested(job.id) is True

    def test_cancel_terminal_is_noop(self, store, job):
        store.mark_processing(job.id)
        store.complete(job.id, {"file_key": "k"})

        unchanged = store.request_cancel(job.id)

        assert unchanged.status == "completed"
        assert unchanged.cancel_requested is False


class TestConcurrency:
    def test_version_column_rejects_stale_write(self, session_factory, job):
        with session_factory() as first, session_factory() as second:
            a = first.get(BatchJob, job.id)
            b = second.get(BatchJob, job.id)
            b.status = "failed"
            second.commit()

            a.status = "completed"
            with pytest.raises(StaleDataError):
                first.commit()

    def test_losing_writer_becomes_noop(self, store, job):
        store.mark_processing(job.id)
        raced = []

        def mutate(row):
            if not raced:
                raced.append(True)
                # A second worker finishes first, between our read and our write.
                store.fail(job.id, {"code": "permanent"})
            row.status = "completed"

        assert store._transition(job.id, ("processing",), mutate) is None
        final = store.get(job.id)
        assert final.status == "failed"
        assert final.error == {"code": "permanent"}

    def test_persistent_conflicts_raise_instead_of_noop(self, store, job, monkeypatch):
        commits = []

        def always_stale(session):
            commits.append(session)
            raise StaleDataError("UPDATE batch_jobs matched 0 rows")

        monkeypatch.setattr(Session, "commit", always_stale)

        with pytest.raises(JobConflictError):
            store.mark_processing(job.id)

        monkeypatch.undo()
        assert len(commits) == 3
        assert store.get(job.id).status == "created"
