"""Celery background tasks.

Every task runs its sweep inside one unit of work and is safe to run
again: each sweep only selects rows that still need the action.
"""

import asyncio
import logging

from celery import shared_task

from rentflow.database import get_db_context
from rentflow.gateways import get_gateway
from rentflow.services.booking_service import booking_service
from rentflow.services.deposit_service import deposit_service
from rentflow.services.dispute_service import dispute_service
from rentflow.services.notification_service import notification_service
from rentflow.services.payout_service import payout_service

logger = logging.getLogger(__name__)

_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro):
    """Run async function in sync context.

    The worker keeps one loop so pooled database connections stay usable
    across tasks.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


# ==================== DEPOSIT TASKS ====================


@shared_task(bind=True, max_retries=3)
def expire_deposit_holds(self):
    """Mark authorized holds past their expiry as EXPIRED."""
    try:
        count = run_async(_expire_deposit_holds())
        return {"status": "success", "expired": count}
    except Exception as exc:
        logger.exception("Deposit hold expiry sweep failed")
        raise self.retry(exc=exc, countdown=120)


async def _expire_deposit_holds() -> int:
    async with get_db_context() as db:
        return await deposit_service.expire_stale_holds(db)


# ==================== DISPUTE TASKS ====================


@shared_task(bind=True, max_retries=3)
def escalate_overdue_disputes(self):
    """Raise the priority of disputes past their SLA deadline."""
    try:
        count = run_async(_escalate_overdue_disputes())
        return {"status": "success", "escalated": count}
    except Exception as exc:
        logger.exception("Dispute escalation sweep failed")
        raise self.retry(exc=exc, countdown=120)


async def _escalate_overdue_disputes() -> int:
    async with get_db_context() as db:
        return await dispute_service.escalate_overdue(db)


# ==================== BOOKING TASKS ====================


@shared_task(bind=True, max_retries=3)
def expire_stale_booking_requests(self):
    """Cancel booking requests that were never paid."""
    try:
        count = run_async(_expire_stale_booking_requests())
        return {"status": "success", "cancelled": count}
    except Exception as exc:
        logger.exception("Stale booking request sweep failed")
        raise self.retry(exc=exc, countdown=300)


async def _expire_stale_booking_requests() -> int:
    async with get_db_context() as db:
        return await booking_service.expire_stale_requests(db, get_gateway())


# ==================== PAYOUT TASKS ====================


@shared_task(bind=True, max_retries=3)
def process_daily_payouts(self):
    """Roll settled owner earnings into payouts.

    Runs daily at the configured payout hour.
    """
    try:
        payouts = run_async(_process_daily_payouts())
        return {"status": "success", "payouts": payouts}
    except Exception as exc:
        logger.exception("Daily payout run failed")
        raise self.retry(exc=exc, countdown=300)


async def _process_daily_payouts() -> list[str]:
    async with get_db_context() as db:
        payouts = await payout_service.run_scheduled_payouts(db, get_gateway())
        return [payout.reference for payout in payouts]


@shared_task(bind=True, max_retries=3)
def retry_stalled_payouts(self):
    """Re-run transfers for payouts stuck before confirmation."""
    try:
        count = run_async(_retry_stalled_payouts())
        return {"status": "success", "retried": count}
    except Exception as exc:
        logger.exception("Stalled payout retry failed")
        raise self.retry(exc=exc, countdown=300)


async def _retry_stalled_payouts() -> int:
    async with get_db_context() as db:
        return await payout_service.retry_stalled_payouts(db, get_gateway())


# ==================== NOTIFICATION TASKS ====================


@shared_task
def dispatch_notifications():
    """Deliver pending outbox events to the notification service."""
    delivered = run_async(_dispatch_notifications())
    return {"status": "success", "delivered": delivered}


async def _dispatch_notifications() -> int:
    async with get_db_context() as db:
        return await notification_service.dispatch_pending(db)
