# File: services/trip_service.py

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crud import booking_crud, trip_crud
from exceptions import AuthorizationError, NotFoundError, ValidationError
from models import BookingRequest, BookingRequestStatus, Trip, as_utc, utcnow
from services.booking_service import BookingRequestManager
from services.concurrency import TripLocks, run_with_timeout

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("origin", "destination", "departure_at", "seats")

@dataclass
class TripDeletion:
    trip_id: UUID
    cancelled_requests: int
    seats_returned: int

class TripRegistry:
    """Trip records and their seat counters: create, edit, delete, read."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: TripLocks,
        bookings: BookingRequestManager,
        max_seats: int = 10,
        action_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.bookings = bookings
        self.max_seats = max_seats
        self.action_timeout = action_timeout

    # --- VALIDATION ---

    def _clean_place(self, value: Any, field_name: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field_name} must not be empty.")
        return value.strip()

    def _clean_seats(self, seats: Any) -> int:
        if isinstance(seats, bool) or not isinstance(seats, int):
            raise ValidationError("Seats must be a whole number.")
        if seats < 1 or seats > self.max_seats:
            raise ValidationError(f"Seats must be between 1 and {self.max_seats}.")
        return seats

    def _clean_departure(self, departure_at: Any) -> datetime:
        if not isinstance(departure_at, datetime):
            raise ValidationError("Departure time must be a date and time.")
        departure_at = as_utc(departure_at)
        if departure_at <= utcnow():
            raise ValidationError("Departure time must be in the future.")
        return departure_at

    def _clean_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}.")
        cleaned = {}
        for name in ("origin", "destination"):
            if changes.get(name) is not None:
                cleaned[name] = self._clean_place(changes[name], name.capitalize())
        if changes.get("departure_at") is not None:
            cleaned["departure_at"] = self._clean_departure(changes["departure_at"])
        if changes.get("seats") is not None:
            cleaned["seats"] = self._clean_seats(changes["seats"])
        if not cleaned:
            raise ValidationError("No changes submitted.")
        return cleaned

    # --- MUTATIONS ---

    async def create_trip(
        self,
        driver_id: UUID,
        origin: str,
        destination: str,
        departure_at: datetime,
        seats: int,
        timeout: Optional[float] = None,
    ) -> Trip:
        origin = self._clean_place(origin, "Origin")
        destination = self._clean_place(destination, "Destination")
        departure_at = self._clean_departure(departure_at)
        seats = self._clean_seats(seats)
        return await run_with_timeout(
            self._create_trip(driver_id, origin, destination, departure_at, seats),
            timeout or self.action_timeout,
            "Trip publication",
        )

    async def _create_trip(
        self,
        driver_id: UUID,
        origin: str,
        destination: str,
        departure_at: datetime,
        seats: int,
    ) -> Trip:
        async with self.session_factory() as session, session.begin():
            created = await trip_crud.create_trip(session, driver_id, origin, destination, departure_at, seats)
            trip = await trip_crud.get_trip_by_id(session, created.id)
        logger.info(f"Trip {trip.id} published by driver {driver_id}: {origin} -> {destination}, {seats} seat(s)")
        return trip

    async def update_trip(
        self,
        trip_id: UUID,
        driver_id: UUID,
        changes: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Trip:
        """
        Applies an edit and invalidates every active request on the trip.

        Confirmed requests give their seat back as they are cancelled; a submitted
        seat count is then written as the final number of seats on offer.
        """
        cleaned = self._clean_changes(changes)
        return await run_with_timeout(
            self._update_trip(trip_id, driver_id, cleaned),
            timeout or self.action_timeout,
            "Trip edit",
        )

    async def _update_trip(self, trip_id: UUID, driver_id: UUID, changes: Dict[str, Any]) -> Trip:
        async with self.locks.hold(trip_id):
            async with self.session_factory() as session, session.begin():
                trip = await self._owned_trip(session, trip_id, driver_id)
                cancelled, confirmed = await self.bookings.cancel_active_for_trip(
                    session, trip_id, BookingRequestStatus.CANCELLED_TRIP_MODIFIED
                )
                await trip_crud.apply_trip_changes(session, trip, **changes)
                trip = await trip_crud.get_trip_by_id(session, trip_id)

        logger.info(
            f"Trip {trip_id} edited by driver {driver_id}; {cancelled} request(s) cancelled, "
            f"seats now {trip.seats_available}"
        )
        return trip

    async def delete_trip(
        self,
        trip_id: UUID,
        driver_id: UUID,
        timeout: Optional[float] = None,
    ) -> TripDeletion:
        return await run_with_timeout(
            self._delete_trip(trip_id, driver_id),
            timeout or self.action_timeout,
            "Trip deletion",
        )

    async def _delete_trip(self, trip_id: UUID, driver_id: UUID) -> TripDeletion:
        async with self.locks.hold(trip_id):
            async with self.session_factory() as session, session.begin():
                await self._owned_trip(session, trip_id, driver_id)
                cancelled, confirmed = await self.bookings.cancel_active_for_trip(
                    session, trip_id, BookingRequestStatus.CANCELLED_BY_DRIVER
                )
                await booking_crud.detach_requests(session, trip_id)
                await trip_crud.delete_trip(session, trip_id)

        logger.info(f"Trip {trip_id} deleted by driver {driver_id}; {cancelled} request(s) cancelled")
        return TripDeletion(trip_id=trip_id, cancelled_requests=cancelled, seats_returned=confirmed)

    # --- READS ---

    async def get_trip(self, trip_id: UUID) -> Trip:
        async with self.session_factory() as session:
            trip = await trip_crud.get_trip_by_id(session, trip_id)
        if trip is None:
            raise NotFoundError("Trip not found.")
        return trip

    async def list_driver_trips(self, driver_id: UUID, skip: int = 0, limit: int = 20) -> List[Trip]:
        async with self.session_factory() as session:
            return await trip_crud.get_driver_trips(session, driver_id, skip=skip, limit=limit)

    async def list_driver_trips_with_requests(
        self,
        driver_id: UUID,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Tuple[Trip, List[BookingRequest]]]:
        """Upcoming trips of a driver, each with its pending and confirmed requests."""
        async with self.session_factory() as session:
            trips = await trip_crud.get_driver_trips(session, driver_id, skip=skip, limit=limit, upcoming_only=True)
            requests = await booking_crud.get_active_requests_for_trips(session, [trip.id for trip in trips])

        by_trip: Dict[UUID, List[BookingRequest]] = {trip.id: [] for trip in trips}
        for booking_request in requests:
            by_trip[booking_request.trip_id].append(booking_request)
        return [(trip, by_trip[trip.id]) for trip in trips]

    async def _owned_trip(self, session: AsyncSession, trip_id: UUID, driver_id: UUID) -> Trip:
        trip = await trip_crud.get_trip_by_id(session, trip_id)
        if trip is None:
            raise NotFoundError("Trip not found.")
        if trip.driver_id != driver_id:
            logger.warning(f"Driver {driver_id} attempted to modify trip {trip_id} they do not own")
            raise AuthorizationError("You can only modify your own trips.")
        return trip
