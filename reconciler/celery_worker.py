"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Start a worker with:
    celery -A reconciler.celery_worker worker --loglevel=info
"""

from celery import Celery

from reconciler.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "reconciler_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["reconciler.tasks"],  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # A run is long and rate limited; one at a time per worker process
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    # Run reports stay fetchable for a day
    result_expires=86400,

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
