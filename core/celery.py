from celery import Celery
from core.config import settings

# Redis is both broker and result backend
celery_app = Celery(
    "storefront_orders",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tasks.email_tasks"],
)

# Order emails are small and fire-and-forget: short limits, results kept for an hour
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=60 * 60,
    timezone="UTC",
    enable_utc=True,
    task_routes={"tasks.email_tasks.*": {"queue": "emails"}},
    task_default_queue="emails",
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    broker_connection_retry_on_startup=True,
    task_always_eager=settings.TESTING,
)
