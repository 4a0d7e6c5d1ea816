"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "stoodioz",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
        "tasks.wallet_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Reliability: acknowledge task AFTER execution, not before
    # This prevents task loss if worker dies mid-execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Result expiry: keep task results for 1 hour
    result_expires=3600,

    # Retry: max 3 retries with exponential backoff
    task_max_retries=3,

    # Rate limits (per worker per second)
    task_annotations={
        "tasks.notification_tasks.send_notification_email": {"rate_limit": "20/s"},
    },

    # Routing: separate queues for different priority levels
    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.wallet_tasks.*": {"queue": "wallet"},
    },

    # Worker prefetch: 1 task at a time for long-running tasks
    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Settle PENDING payouts/withdrawals whose countdown task was lost
    "settle-pending-transactions": {
        "task": "tasks.wallet_tasks.settle_pending_transactions",
        "schedule": 300,  # every 5 minutes
    },

    # Compare cached wallet balances with the ledger sum
    "audit-wallet-balances": {
        "task": "tasks.wallet_tasks.audit_wallet_balances",
        "schedule": crontab(hour=3, minute=0),  # nightly, 03:00 UTC
    },

    # Remind participants of sessions starting in BOOKING_REMINDER_HOURS
    "send-booking-reminders": {
        "task": "tasks.notification_tasks.send_booking_reminders",
        "schedule": crontab(minute=0),  # top of every hour
    },
}
