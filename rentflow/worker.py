"""Celery worker configuration.

This module sets up Celery for the engine's background sweeps:
- Deposit hold expiry
- Dispute SLA escalation
- Stale booking request expiry
- Scheduled and stalled payouts
- Notification outbox dispatch
"""

from celery import Celery
from celery.schedules import crontab

from rentflow.config import settings
from rentflow.core.logging import setup_logging

setup_logging()

# Create Celery app
celery_app = Celery(
    "rentflow_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["rentflow.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes max
    task_soft_time_limit=240,  # Soft limit at 4 minutes

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Expire lapsed deposit holds hourly
        "expire-deposit-holds": {
            "task": "rentflow.tasks.expire_deposit_holds",
            "schedule": crontab(minute=5),
        },
        # Escalate disputes past their SLA every 15 minutes
        "escalate-overdue-disputes": {
            "task": "rentflow.tasks.escalate_overdue_disputes",
            "schedule": crontab(minute="*/15"),
        },
        # Cancel unpaid booking requests hourly
        "expire-stale-booking-requests": {
            "task": "rentflow.tasks.expire_stale_booking_requests",
            "schedule": crontab(minute=20),
        },
        # Process payouts daily
        "process-daily-payouts": {
            "task": "rentflow.tasks.process_daily_payouts",
            "schedule": crontab(hour=settings.payout_time_hour, minute=0),
        },
        # Retry stalled payouts hourly
        "retry-stalled-payouts": {
            "task": "rentflow.tasks.retry_stalled_payouts",
            "schedule": crontab(minute=35),
        },
        # Deliver notification events every minute
        "dispatch-notifications": {
            "task": "rentflow.tasks.dispatch_notifications",
            "schedule": crontab(),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
