"""
Celery application configuration.

Redis is both the message broker and the result backend. Workers consume
workflow run ids and execute them with the WorkflowEngine.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from app.core.config import settings
from app.core.logging_config import setup_logging

celery_app = Celery(
    "cv_pipeline_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_acks_late=True,  # Redeliver a run if the worker dies mid-way; checkpoints make it resumable
    task_reject_on_worker_lost=True,
    task_time_limit=900,
    task_soft_time_limit=840,

    # Result backend
    result_expires=3600,

    # Worker behavior
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the application's logging setup instead of Celery's."""
    setup_logging(settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)


celery_app.autodiscover_tasks(['app'])
