# File: services/route_matching.py

import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crud import saved_route_crud, trip_crud
from models import Trip, as_utc, utcnow
from schemas import MatchResult, RouteMatch

logger = logging.getLogger(__name__)

def normalize_location(value: str) -> str:
    """'  San   Andrés ' -> 'san andrés'"""
    return " ".join(value.split()).casefold()

def departure_date_utc(departure_at: datetime) -> date:
    return as_utc(departure_at).date()

def route_matches(
    trip: Trip,
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    on_date: Optional[date] = None,
) -> bool:
    """
    Shared predicate for saved-route matching and passenger search.

    Origin and destination compare after normalization. A None criterion
    accepts anything; the date compares against the trip's UTC calendar date.
    """
    if origin is not None and normalize_location(origin) != normalize_location(trip.origin):
        return False
    if destination is not None and normalize_location(destination) != normalize_location(trip.destination):
        return False
    if on_date is not None and on_date != departure_date_utc(trip.departure_at):
        return False
    return True

class RouteMatchEngine:

    async def find_matches(self, session: AsyncSession, trip: Trip) -> MatchResult:
        """Saved routes that should hear about this trip."""
        result = MatchResult(trip_id=trip.id)
        candidates = await saved_route_crud.get_routes_watching_date(session, departure_date_utc(trip.departure_at))

        for saved_route in candidates:
            if not route_matches(trip, saved_route.origin, saved_route.destination, saved_route.preferred_date):
                continue
            if saved_route.passenger_id == trip.driver_id:
                continue
            email = (saved_route.passenger_email or "").strip()
            if not email:
                logger.info(f"Skipping saved route {saved_route.id}: no passenger email to notify")
                result.skipped_route_ids.append(saved_route.id)
                continue
            result.matches.append(RouteMatch(
                saved_route_id=saved_route.id,
                passenger_id=saved_route.passenger_id,
                passenger_email=email,
                origin=saved_route.origin,
                destination=saved_route.destination,
                preferred_date=saved_route.preferred_date,
            ))

        logger.info(
            f"Trip {trip.id}: {len(result.matches)} saved route(s) matched, "
            f"{len(result.skipped_route_ids)} skipped"
        )
        return result

    async def search_trips(
        self,
        session: AsyncSession,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        on_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Trip]:
        """Bookable trips (future, with a free seat) matching the optional criteria."""
        trips = await trip_crud.get_bookable_trips(session, utcnow())
        found = [trip for trip in trips if route_matches(trip, origin, destination, on_date)]
        logger.debug(f"Search {origin!r} -> {destination!r} on {on_date}: {len(found)} trip(s)")
        return found[skip:skip + limit]
