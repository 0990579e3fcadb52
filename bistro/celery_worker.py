"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Run a worker with:
    celery -A bistro.celery_worker.celery_app worker --loglevel=info
"""

from celery import Celery

from bistro.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'bistro_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['bistro.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # A request must never stall on an unreachable broker
    task_publish_retry=False,
    broker_connection_timeout=2,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Webhooks are at-most-once; do not redeliver on worker loss
    task_acks_late=False,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
