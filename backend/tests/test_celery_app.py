from app.workers.celery_app import celery_app


def test_redelivery_settings():
    conf = celery_app.conf

    assert conf.task_acks_late is True
    assert conf.task_reject_on_worker_lost is True
    assert conf.worker_prefetch_multiplier == 1
    assert conf.task_default_queue == "batch-jobs"


def test_no_per_child_memory_recycling_under_solo_pool():
    # The solo pool has no child processes to recycle.
    assert celery_app.conf.worker_max_memory_per_child is None
