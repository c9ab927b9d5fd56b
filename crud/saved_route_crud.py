# File: crud/saved_route_crud.py

import logging
from datetime import date
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from exceptions import StoreUnavailableError
from models import SavedRoute

logger = logging.getLogger(__name__)

async def create_saved_route(
    session: AsyncSession,
    passenger_id: UUID,
    passenger_email: Optional[str],
    origin: str,
    destination: str,
    preferred_date: Optional[date] = None,
) -> SavedRoute:
    saved_route = SavedRoute(
        passenger_id=passenger_id,
        passenger_email=passenger_email,
        origin=origin,
        destination=destination,
        preferred_date=preferred_date,
    )
    session.add(saved_route)
    try:
        await session.flush()
        await session.refresh(saved_route)
    except SQLAlchemyError as e:
        logger.error(f"DB error saving route for passenger {passenger_id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error saving the route.") from e
    logger.info(f"Saved route {saved_route.id} created for passenger {passenger_id}")
    return saved_route

async def get_saved_route_by_id(session: AsyncSession, route_id: UUID) -> Optional[SavedRoute]:
    try:
        result = await session.execute(select(SavedRoute).where(SavedRoute.id == route_id))
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching saved route {route_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching the saved route.") from e

async def get_passenger_saved_routes(session: AsyncSession, passenger_id: UUID) -> List[SavedRoute]:
    try:
        result = await session.execute(
            select(SavedRoute)
            .where(SavedRoute.passenger_id == passenger_id)
            .order_by(SavedRoute.created_at.desc())
        )
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching saved routes of passenger {passenger_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching saved routes.") from e

async def delete_saved_route(session: AsyncSession, saved_route: SavedRoute) -> None:
    try:
        await session.delete(saved_route)
        await session.flush()
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting saved route {saved_route.id}: {e}", exc_info=True)
        raise StoreUnavailableError("Error deleting the saved route.") from e

async def get_routes_watching_date(session: AsyncSession, on_date: date) -> Sequence[SavedRoute]:
    """Saved routes whose date criterion accepts on_date (no preference, or that exact day)."""
    try:
        result = await session.execute(
            select(SavedRoute).where(
                or_(SavedRoute.preferred_date.is_(None), SavedRoute.preferred_date == on_date)
            )
        )
        return result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching saved routes for {on_date}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching saved routes.") from e
