# File: crud/booking_crud.py

import logging
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from exceptions import ConflictError, StoreUnavailableError
from models import BookingRequest, BookingRequestStatus, ACTIVE_REQUEST_STATUSES, Trip, utcnow

logger = logging.getLogger(__name__)

async def get_request_by_id(
    session: AsyncSession,
    request_id: UUID,
    with_trip: bool = False,
) -> Optional[BookingRequest]:
    try:
        query = select(BookingRequest).where(BookingRequest.id == request_id)
        if with_trip:
            query = query.options(selectinload(BookingRequest.trip).selectinload(Trip.driver))
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching booking request {request_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching the booking request.") from e

async def get_active_request(
    session: AsyncSession,
    trip_id: UUID,
    passenger_id: UUID,
) -> Optional[BookingRequest]:
    try:
        result = await session.execute(
            select(BookingRequest).where(
                BookingRequest.trip_id == trip_id,
                BookingRequest.passenger_id == passenger_id,
                BookingRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
        )
        return result.scalars().first()
    except SQLAlchemyError as e:
        logger.error(f"Database error checking active request on trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while checking existing requests.") from e

async def create_pending_request(
    session: AsyncSession,
    trip_id: UUID,
    passenger_id: UUID,
) -> BookingRequest:
    """Inserts a pending request. The partial unique index turns a racing duplicate into a conflict."""
    booking_request = BookingRequest(
        trip_id=trip_id,
        passenger_id=passenger_id,
        status=BookingRequestStatus.PENDING,
    )
    session.add(booking_request)
    try:
        await session.flush()
        await session.refresh(booking_request)
    except IntegrityError as e:
        logger.warning(f"Duplicate active request for trip {trip_id} by passenger {passenger_id}")
        raise ConflictError("You already have an active request for this trip.") from e
    except SQLAlchemyError as e:
        logger.error(f"DB error creating request on trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error saving the booking request.") from e
    return booking_request

async def transition_status(
    session: AsyncSession,
    request_id: UUID,
    from_statuses: Iterable[BookingRequestStatus],
    to_status: BookingRequestStatus,
) -> bool:
    """
    Moves a request only if it is still in one of from_statuses.
    Returns False when another unit of work moved it first.
    """
    try:
        result = await session.execute(
            update(BookingRequest)
            .where(
                BookingRequest.id == request_id,
                BookingRequest.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error moving request {request_id} to {to_status.value}: {e}", exc_info=True)
        raise StoreUnavailableError("Error updating the booking request.") from e
    return result.rowcount == 1

async def cancel_active_requests(
    session: AsyncSession,
    trip_id: UUID,
    to_status: BookingRequestStatus,
) -> Tuple[int, int]:
    """
    Moves every pending/confirmed request of a trip to to_status.
    Returns (cancelled, previously_confirmed).

    The active rows are locked first and only those rows are updated, so the
    confirmed count is exactly the seats the caller has to give back.
    """
    try:
        locked = (await session.execute(
            select(BookingRequest.id, BookingRequest.status)
            .where(
                BookingRequest.trip_id == trip_id,
                BookingRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
            .with_for_update()
        )).all()
        if not locked:
            return 0, 0
        await session.execute(
            update(BookingRequest)
            .where(BookingRequest.id.in_([row.id for row in locked]))
            .values(status=to_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error cancelling requests of trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error cancelling the trip's booking requests.") from e
    confirmed_count = sum(1 for row in locked if row.status == BookingRequestStatus.CONFIRMED)
    return len(locked), confirmed_count

async def get_passenger_requests(
    session: AsyncSession,
    passenger_id: UUID,
    skip: int = 0,
    limit: int = 20,
) -> List[BookingRequest]:
    """A passenger's requests, newest first, with trip and driver loaded."""
    try:
        result = await session.execute(
            select(BookingRequest)
            .options(selectinload(BookingRequest.trip).selectinload(Trip.driver))
            .where(BookingRequest.passenger_id == passenger_id)
            .order_by(BookingRequest.requested_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching requests of passenger {passenger_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching your requests.") from e

async def get_active_requests_for_trips(
    session: AsyncSession,
    trip_ids: List[UUID],
) -> List[BookingRequest]:
    if not trip_ids:
        return []
    try:
        result = await session.execute(
            select(BookingRequest)
            .options(selectinload(BookingRequest.passenger))
            .where(
                BookingRequest.trip_id.in_(trip_ids),
                BookingRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
            .order_by(BookingRequest.requested_at.asc())
        )
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching active requests: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching passenger requests.") from e

async def detach_requests(session: AsyncSession, trip_id: UUID) -> int:
    """Clears trip_id on a trip's requests ahead of a hard delete so their history survives."""
    try:
        result = await session.execute(
            update(BookingRequest)
            .where(BookingRequest.trip_id == trip_id)
            .values(trip_id=None)
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error detaching requests of trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error deleting the trip.") from e
    return result.rowcount
