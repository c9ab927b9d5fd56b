# File: services/booking_service.py

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crud import booking_crud, trip_crud
from exceptions import (
    AuthorizationError, ConflictError, NotFoundError, StoreUnavailableError, ValidationError,
)
from models import (
    BookingRequest, BookingRequestStatus, Trip, as_utc, utcnow,
)
from schemas import BookingDecision
from services.concurrency import TripLocks, run_with_timeout

logger = logging.getLogger(__name__)

CASCADE_STATUSES = (
    BookingRequestStatus.CANCELLED_BY_DRIVER,
    BookingRequestStatus.CANCELLED_TRIP_MODIFIED,
)

def _has_departed(trip: Trip) -> bool:
    return as_utc(trip.departure_at) <= utcnow()

class BookingRequestManager:
    """
    Owns the booking-request lifecycle and every change to a trip's seat counter
    that a request causes.

    Each public mutation is one unit of work: it holds the trip's lock, runs in a
    single transaction and commits before the lock is released. A seat is taken
    only by the conditional decrement, so the counter never goes negative even
    when several decisions race.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: TripLocks,
        action_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.action_timeout = action_timeout

    # --- PASSENGER ACTIONS ---

    async def request_seat(
        self,
        trip_id: UUID,
        passenger_id: UUID,
        timeout: Optional[float] = None,
    ) -> BookingRequest:
        return await run_with_timeout(
            self._request_seat(trip_id, passenger_id), timeout or self.action_timeout, "Seat request"
        )

    async def _request_seat(self, trip_id: UUID, passenger_id: UUID) -> BookingRequest:
        async with self.locks.hold(trip_id):
            async with self.session_factory() as session, session.begin():
                trip = await trip_crud.get_trip_by_id(session, trip_id)
                if trip is None:
                    raise NotFoundError("Trip not found.")
                if _has_departed(trip):
                    raise ValidationError("This trip has already departed.")
                if trip.driver_id == passenger_id:
                    raise ValidationError("You cannot request a seat on your own trip.")
                if await booking_crud.get_active_request(session, trip_id, passenger_id):
                    raise ConflictError("You already have an active request for this trip.")

                created = await booking_crud.create_pending_request(session, trip_id, passenger_id)
                booking_request = await booking_crud.get_request_by_id(session, created.id, with_trip=True)

        logger.info(f"Passenger {passenger_id} requested a seat on trip {trip_id} (request {booking_request.id})")
        return booking_request

    async def cancel_own_request(
        self,
        request_id: UUID,
        passenger_id: UUID,
        timeout: Optional[float] = None,
    ) -> BookingRequest:
        return await run_with_timeout(
            self._cancel_own_request(request_id, passenger_id),
            timeout or self.action_timeout,
            "Request cancellation",
        )

    async def _cancel_own_request(self, request_id: UUID, passenger_id: UUID) -> BookingRequest:
        trip_id = await self._trip_id_of(request_id)
        async with self.locks.hold(trip_id):
            async with self.session_factory() as session, session.begin():
                booking_request = await self._load_request(session, request_id)
                if booking_request.passenger_id != passenger_id:
                    raise AuthorizationError("You can only cancel your own requests.")
                if not booking_request.is_active:
                    raise ConflictError(
                        f"This request is already {booking_request.status.value} and cannot be cancelled."
                    )
                trip = await self._load_trip(session, booking_request.trip_id)
                if _has_departed(trip):
                    raise ValidationError("This trip has already departed.")

                prior_status = booking_request.status
                moved = await booking_crud.transition_status(
                    session, request_id, [prior_status], BookingRequestStatus.CANCELLED_BY_PASSENGER
                )
                if not moved:
                    raise ConflictError("This request changed while you were cancelling it. Please retry.")
                if prior_status == BookingRequestStatus.CONFIRMED:
                    await trip_crud.give_back_seats(session, trip.id)

                booking_request = await booking_crud.get_request_by_id(session, request_id, with_trip=True)

        logger.info(f"Passenger {passenger_id} cancelled request {request_id} (was {prior_status.value})")
        return booking_request

    # --- DRIVER ACTIONS ---

    async def decide_request(
        self,
        request_id: UUID,
        driver_id: UUID,
        decision: BookingDecision,
        timeout: Optional[float] = None,
    ) -> BookingRequest:
        return await run_with_timeout(
            self._decide_request(request_id, driver_id, decision),
            timeout or self.action_timeout,
            "Request decision",
        )

    async def _decide_request(
        self,
        request_id: UUID,
        driver_id: UUID,
        decision: BookingDecision,
    ) -> BookingRequest:
        trip_id = await self._trip_id_of(request_id)
        async with self.locks.hold(trip_id):
            async with self.session_factory() as session, session.begin():
                booking_request = await self._load_request(session, request_id)
                trip = await self._load_trip(session, booking_request.trip_id)
                if trip.driver_id != driver_id:
                    raise AuthorizationError("Only the trip's driver can decide on its requests.")

                if decision == BookingDecision.CONFIRM:
                    await self._confirm(session, booking_request, trip)
                else:
                    await self._reject(session, booking_request, trip)

                booking_request = await booking_crud.get_request_by_id(session, request_id, with_trip=True)

        logger.info(f"Driver {driver_id} {decision.value}ed request {request_id} on trip {trip_id}")
        return booking_request

    async def _confirm(self, session: AsyncSession, booking_request: BookingRequest, trip: Trip) -> None:
        if booking_request.status != BookingRequestStatus.PENDING:
            raise ConflictError(
                f"Only pending requests can be confirmed; this one is {booking_request.status.value}."
            )
        if not await trip_crud.take_seat(session, trip.id):
            logger.info(f"Confirmation of request {booking_request.id} refused: trip {trip.id} is full")
            raise ConflictError("No seats left on this trip.")
        moved = await booking_crud.transition_status(
            session, booking_request.id, [BookingRequestStatus.PENDING], BookingRequestStatus.CONFIRMED
        )
        if not moved:
            # Raising rolls the seat decrement back with the rest of the transaction
            raise ConflictError("This request changed while you were confirming it. Please retry.")

    async def _reject(self, session: AsyncSession, booking_request: BookingRequest, trip: Trip) -> None:
        if not booking_request.is_active:
            raise ConflictError(
                f"Only pending or confirmed requests can be rejected; this one is {booking_request.status.value}."
            )
        prior_status = booking_request.status
        moved = await booking_crud.transition_status(
            session, booking_request.id, [prior_status], BookingRequestStatus.REJECTED
        )
        if not moved:
            raise ConflictError("This request changed while you were rejecting it. Please retry.")
        if prior_status == BookingRequestStatus.CONFIRMED:
            await trip_crud.give_back_seats(session, trip.id)

    # --- TRIP CASCADE ---

    async def cancel_active_for_trip(
        self,
        session: AsyncSession,
        trip_id: UUID,
        status: BookingRequestStatus,
    ) -> Tuple[int, int]:
        """
        Moves every active request of a trip to a cascade status and gives back one
        seat per confirmed request. Runs inside the caller's unit of work, which
        must already hold the trip's lock.
        Returns (cancelled, previously_confirmed).
        """
        if status not in CASCADE_STATUSES:
            raise ValueError(f"{status} is not a trip cascade status")
        cancelled, confirmed = await booking_crud.cancel_active_requests(session, trip_id, status)
        await trip_crud.give_back_seats(session, trip_id, confirmed)
        if cancelled:
            logger.info(
                f"Trip {trip_id}: {cancelled} active request(s) moved to {status.value}, "
                f"{confirmed} seat(s) returned"
            )
        return cancelled, confirmed

    # --- READS ---

    async def get_request(self, request_id: UUID, user_id: UUID) -> BookingRequest:
        """Visible to the requesting passenger and to the trip's driver."""
        async with self.session_factory() as session:
            booking_request = await booking_crud.get_request_by_id(session, request_id, with_trip=True)
            if booking_request is None:
                raise NotFoundError("Booking request not found.")
            driver_id = booking_request.trip.driver_id if booking_request.trip is not None else None
            if user_id not in (booking_request.passenger_id, driver_id):
                raise AuthorizationError("You are not allowed to view this request.")
            return booking_request

    async def list_passenger_requests(
        self,
        passenger_id: UUID,
        skip: int = 0,
        limit: int = 20,
    ) -> List[BookingRequest]:
        async with self.session_factory() as session:
            return await booking_crud.get_passenger_requests(session, passenger_id, skip=skip, limit=limit)

    # --- HELPERS ---

    async def _trip_id_of(self, request_id: UUID) -> UUID:
        """Finds which trip's lock a request action needs."""
        try:
            async with self.session_factory() as session:
                row = (await session.execute(
                    select(BookingRequest.trip_id, BookingRequest.status).where(BookingRequest.id == request_id)
                )).one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Database error resolving trip of request {request_id}: {e}", exc_info=True)
            raise StoreUnavailableError("An error occurred while fetching the booking request.") from e
        if row is None:
            raise NotFoundError("Booking request not found.")
        trip_id, status = row
        if trip_id is None:
            # Only requests of deleted trips lose their trip, and those are always terminal
            raise ConflictError(f"This request is already {status.value}; its trip no longer exists.")
        return trip_id

    async def _load_request(self, session: AsyncSession, request_id: UUID) -> BookingRequest:
        booking_request = await booking_crud.get_request_by_id(session, request_id)
        if booking_request is None:
            raise NotFoundError("Booking request not found.")
        if booking_request.trip_id is None:
            raise ConflictError(
                f"This request is already {booking_request.status.value}; its trip no longer exists."
            )
        return booking_request

    async def _load_trip(self, session: AsyncSession, trip_id: UUID) -> Trip:
        trip = await trip_crud.get_trip_by_id(session, trip_id)
        if trip is None:
            raise NotFoundError("Trip not found.")
        return trip
