# File: crud/trip_crud.py

import logging
from datetime import datetime
from typing import Optional, List, Sequence
from uuid import UUID

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import SQLAlchemyError

from exceptions import StoreUnavailableError
from models import Trip, utcnow

logger = logging.getLogger(__name__)

async def create_trip(
    session: AsyncSession,
    driver_id: UUID,
    origin: str,
    destination: str,
    departure_at: datetime,
    seats: int,
) -> Trip:
    """Adds a trip to the session. Caller owns the transaction."""
    trip = Trip(
        driver_id=driver_id,
        origin=origin,
        destination=destination,
        departure_at=departure_at,
        seats_available=seats,
    )
    session.add(trip)
    try:
        await session.flush()
        await session.refresh(trip)
    except SQLAlchemyError as e:
        logger.error(f"DB error during trip creation flush for driver {driver_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error saving the trip.") from e

    logger.info(f"Trip {trip.id} prepared for driver {driver_id}")
    return trip

async def get_trip_by_id(
    session: AsyncSession,
    trip_id: UUID
) -> Optional[Trip]:
    """Get a trip by its ID, eagerly loading the driver."""
    try:
        result = await session.execute(
            select(Trip)
            .options(selectinload(Trip.driver))
            .where(Trip.id == trip_id)
            .execution_options(populate_existing=True)
        )
        trip = result.scalar_one_or_none()
        if not trip:
            logger.debug(f"Trip {trip_id} not found")
        return trip
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching the trip.") from e

async def get_driver_trips(
    session: AsyncSession,
    driver_id: UUID,
    skip: int = 0,
    limit: int = 20,
    upcoming_only: bool = False,
) -> List[Trip]:
    """Get trips created by a driver, newest departure first."""
    try:
        query = (
            select(Trip)
            .options(selectinload(Trip.driver))
            .where(Trip.driver_id == driver_id)
        )
        if upcoming_only:
            query = query.where(Trip.departure_at > utcnow()).order_by(Trip.departure_at.asc())
        else:
            query = query.order_by(Trip.departure_at.desc())
        result = await session.execute(query.offset(skip).limit(limit))
        trips = list(result.scalars().all())
        logger.info(f"Found {len(trips)} trips for driver {driver_id}")
        return trips
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching trips for driver {driver_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching driver's trips.") from e

async def get_bookable_trips(session: AsyncSession, now: datetime) -> Sequence[Trip]:
    """Future trips that still have at least one seat, soonest first."""
    try:
        result = await session.execute(
            select(Trip)
            .options(selectinload(Trip.driver))
            .where(Trip.departure_at > now, Trip.seats_available > 0)
            .order_by(Trip.departure_at.asc())
        )
        return result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Database error searching trips: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while searching for trips.") from e

async def apply_trip_changes(
    session: AsyncSession,
    trip: Trip,
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    departure_at: Optional[datetime] = None,
    seats: Optional[int] = None,
) -> Trip:
    """Writes edited fields. A submitted seat count replaces the counter outright."""
    values = {"updated_at": utcnow()}
    if origin is not None:
        values["origin"] = origin
    if destination is not None:
        values["destination"] = destination
    if departure_at is not None:
        values["departure_at"] = departure_at
    if seats is not None:
        values["seats_available"] = seats
    try:
        await session.execute(update(Trip).where(Trip.id == trip.id).values(**values))
        await session.refresh(trip)
    except SQLAlchemyError as e:
        logger.error(f"Database error during trip update for trip {trip.id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error finalizing trip update.") from e
    logger.info(f"Trip {trip.id} updated fields: {sorted(values)}")
    return trip

async def delete_trip(session: AsyncSession, trip_id: UUID) -> None:
    try:
        await session.execute(delete(Trip).where(Trip.id == trip_id))
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error deleting the trip.") from e

# --- SEAT INVENTORY ---

async def take_seat(session: AsyncSession, trip_id: UUID) -> bool:
    """
    Atomically claims one seat: seats = seats - 1 WHERE seats > 0.
    Returns False when no seat was left.
    """
    try:
        result = await session.execute(
            update(Trip)
            .where(Trip.id == trip_id, Trip.seats_available > 0)
            .values(seats_available=Trip.seats_available - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error taking a seat on trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error updating the seat inventory.") from e
    return result.rowcount == 1

async def give_back_seats(session: AsyncSession, trip_id: UUID, count: int = 1) -> None:
    """Atomically returns seats to the trip. There is no ceiling to guard."""
    if count <= 0:
        return
    try:
        await session.execute(
            update(Trip)
            .where(Trip.id == trip_id)
            .values(seats_available=Trip.seats_available + count, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error returning {count} seat(s) to trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error updating the seat inventory.") from e

async def get_seats_available(session: AsyncSession, trip_id: UUID) -> Optional[int]:
    try:
        result = await session.execute(select(Trip.seats_available).where(Trip.id == trip_id))
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Database error reading seats for trip {trip_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error reading the seat inventory.") from e
