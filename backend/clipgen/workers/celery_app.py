"""
Celery application configuration.
Sets up Celery with Redis broker and the beat schedule for maintenance tasks.
"""
import logging
from celery import Celery
from celery.signals import task_failure, task_postrun, worker_init
from prometheus_client import start_http_server

from clipgen.config import settings
from clipgen.utils.metrics import maintenance_tasks_total
from clipgen.utils.logging import configure_logging

logger = logging.getLogger(__name__)

WORKER_METRICS_PORT = 9090

# Create Celery app
celery_app = Celery(
    "clipgen",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "clipgen.tasks.maintenance",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_concurrency=1,  # Sweeps touch the same directory; run them one at a time
    beat_schedule={
        "sweep-prepared-media": {
            "task": "sweep_prepared_media",
            "schedule": float(settings.prepared_sweep_interval_seconds),
        },
    },
)

# Configure structured JSON logging
configure_logging('clipgen-worker', settings.log_level)


@worker_init.connect
def start_metrics_server(**kwargs):
    """Expose worker metrics to Prometheus once the worker boots."""
    try:
        start_http_server(WORKER_METRICS_PORT)
        logger.info(f"Metrics server started on port {WORKER_METRICS_PORT}")
    except OSError as e:
        logger.warning(f"Failed to start metrics server: {e}")


# Celery signal handlers for metrics
@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    """Track task completion."""
    task_name = task.name if task else "unknown"
    maintenance_tasks_total.labels(task=task_name, status=state or "unknown").inc()


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    """Log task failures with the task name."""
    task_name = sender.name if sender else "unknown"
    logger.error(f"Maintenance task {task_name} failed: {exception}")
