"""Celery application factory for batch job processing."""

import ssl

from celery import Celery

from app.core.config import get_settings
from app.utils.redis_client import is_tls_url, normalize_redis_url

settings = get_settings()

broker_url = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = is_tls_url(broker_url) or is_tls_url(backend_url)

# The Redis result backend reads ssl_cert_reqs from the URL during init,
# before conf.update() runs.
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "catalog_batch_jobs",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    # At-least-once: ack after the task body returns, requeue if the worker dies
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,
    "task_time_limit": 3600,
    "task_soft_time_limit": 3300,
    # Redelivery window for unacked messages on the Redis transport
    "broker_transport_options": {
        "visibility_timeout": int(settings.queue_visibility_timeout_seconds)
    },
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": settings.batch_jobs_queue,
    "task_routes": {
        "app.workers.tasks.run_batch_job": {"queue": settings.batch_jobs_queue},
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = {
        **celery_config["broker_transport_options"],
        **ssl_dict,
    }
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Tasks use @celery_app.task, importing registers them
from app.workers.tasks import run_batch_job  # noqa: E402,F401
