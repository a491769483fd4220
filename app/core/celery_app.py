"""
Celery application: broker and result backend from settings (Redis by default).
Tasks are in app.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url or settings.redis_url,
    backend=settings.celery_result_backend or settings.redis_url,
    include=[
        "app.workers.tasks.reconcile_payments",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=900,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-payments": {
            "task": "app.workers.tasks.reconcile_payments.reconcile_pending_payments",
            "schedule": crontab(minute="*/10"),
        },
    },
)
