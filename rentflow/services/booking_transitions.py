"""Booking row access, state transitions and calendar claims.

Every status change goes through ``transition_booking`` so the transition
table is checked in one place and every change leaves a history row.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.exceptions import ConflictError, NotFoundError
from rentflow.database import flush_changes
from rentflow.domain.booking_state import RELEASED_STATUSES, BookingStatus, assert_booking_transition
from rentflow.models.booking import Booking, BookingStateHistory
from rentflow.models.listing import BookedDay

logger = logging.getLogger(__name__)

# Bookings that hold the listing calendar.
ACTIVE_CALENDAR_STATUSES = [s.value for s in BookingStatus if s not in RELEASED_STATUSES]


async def get_booking(db: AsyncSession, booking_id: UUID, for_update: bool = False) -> Booking:
    """Load a booking, optionally taking its row lock."""
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking", str(booking_id))
    return booking


async def _next_sequence(db: AsyncSession, booking_id: UUID) -> int:
    result = await db.execute(
        select(func.count(BookingStateHistory.id)).where(BookingStateHistory.booking_id == booking_id)
    )
    return (result.scalar() or 0) + 1


async def record_history(
    db: AsyncSession,
    booking: Booking,
    from_status: str | None,
    to_status: str,
    changed_by: UUID | None = None,
    reason: str | None = None,
    details: dict[str, Any] | None = None,
) -> BookingStateHistory:
    """Append one audit row for ``booking``."""
    entry = BookingStateHistory(
        booking_id=booking.id,
        sequence=await _next_sequence(db, booking.id),
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        changed_by=changed_by,
        details=details,
    )
    db.add(entry)
    return entry


async def transition_booking(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    changed_by: UUID | None = None,
    reason: str | None = None,
    details: dict[str, Any] | None = None,
) -> Booking:
    """Move ``booking`` to ``target``.

    Raises:
        InvalidTransitionError: If the edge is not in the transition table;
            the booking is left untouched
        ConflictError: If the row was changed by a concurrent writer
    """
    current = booking.status
    assert_booking_transition(current, target.value)

    booking.status = target.value
    await record_history(db, booking, current, target.value, changed_by, reason, details)

    if target in RELEASED_STATUSES:
        await release_calendar(db, booking)

    await flush_changes(db)
    logger.info(
        f"Booking {booking.booking_number} ({booking.id}): {current} -> {target.value} by {changed_by or 'system'}"
    )
    return booking


async def booking_history(db: AsyncSession, booking_id: UUID) -> list[BookingStateHistory]:
    result = await db.execute(
        select(BookingStateHistory)
        .where(BookingStateHistory.booking_id == booking_id)
        .order_by(BookingStateHistory.sequence)
    )
    return list(result.scalars().all())


def calendar_days(start: datetime, end: datetime) -> list[date]:
    """Calendar days occupied by a rental over [start, end).

    A rental that ends on the day it starts still occupies that day.
    """
    first, last = start.date(), end.date()
    if last <= first:
        return [first]
    return [first + timedelta(days=offset) for offset in range((last - first).days)]


async def find_overlapping_booking(
    db: AsyncSession,
    listing_id: UUID,
    start: datetime,
    end: datetime,
    exclude_booking_id: UUID | None = None,
) -> Booking | None:
    """Return an active booking on ``listing_id`` whose window intersects [start, end)."""
    query = select(Booking).where(
        Booking.listing_id == listing_id,
        Booking.status.in_(ACTIVE_CALENDAR_STATUSES),
        Booking.start_date < end,
        Booking.end_date > start,
    )
    if exclude_booking_id:
        query = query.where(Booking.id != exclude_booking_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def claim_calendar(db: AsyncSession, booking: Booking) -> list[BookedDay]:
    """Claim the listing calendar for ``booking``.

    Must run while the listing row is locked. The unique (listing, day)
    constraint backs the explicit checks if two writers still race.

    Raises:
        ConflictError: If any day is already claimed
    """
    overlapping = await find_overlapping_booking(
        db, booking.listing_id, booking.start_date, booking.end_date, exclude_booking_id=booking.id
    )
    if overlapping:
        raise ConflictError(
            f"Listing is already booked between {overlapping.start_date.isoformat()}"
            f" and {overlapping.end_date.isoformat()}"
        )

    days = calendar_days(booking.start_date, booking.end_date)
    result = await db.execute(
        select(BookedDay.day).where(BookedDay.listing_id == booking.listing_id, BookedDay.day.in_(days))
    )
    taken = sorted(result.scalars().all())
    if taken:
        raise ConflictError(f"Listing is not available on {taken[0].isoformat()}")

    claims = [BookedDay(listing_id=booking.listing_id, day=day, booking_id=booking.id) for day in days]
    db.add_all(claims)
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning(f"Calendar claim race on listing {booking.listing_id}: {exc.orig}")
        raise ConflictError("Listing was booked concurrently for these dates") from exc
    return claims


async def release_calendar(db: AsyncSession, booking: Booking) -> None:
    await db.execute(delete(BookedDay).where(BookedDay.booking_id == booking.id))
