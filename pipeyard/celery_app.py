"""Celery application configuration."""

from datetime import timedelta

from celery import Celery

from pipeyard.config import settings

# Create Celery app
celery_app = Celery(
    "pipeyard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "pipeyard.tasks.reconciliation",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Beat schedule for periodic tasks
    beat_schedule={
        "check-rack-reconciliation": {
            "task": "pipeyard.tasks.reconciliation.check_reconciliation",
            # Compare rack occupancy with stored inventory and open holds
            "schedule": timedelta(minutes=settings.reconciliation_schedule_minutes),
            "options": {"queue": "default"},
        },
    },
)
