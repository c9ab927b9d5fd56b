# File: services/publishing.py

import logging
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exceptions import SeatShareError
from models import SavedRoute, Trip
from schemas import (
    DispatchReport, MatchResult, NotificationAttempt, RouteMatch, RouteWatchResult, TripCreate,
)
from services.notification_service import NotificationDispatcher
from services.route_matching import RouteMatchEngine
from services.trip_service import TripRegistry

logger = logging.getLogger(__name__)

def watch_message(saved_route: SavedRoute, trip: Optional[Trip]) -> str:
    if trip is None:
        return f"No trips found for your route {saved_route.origin} - {saved_route.destination} for now."
    return f"Trip found for your route {saved_route.origin} - {saved_route.destination}!"

def route_match_for(saved_route: SavedRoute) -> Optional[RouteMatch]:
    """The saved route as a notification target, or None when it has no usable email."""
    email = (saved_route.passenger_email or "").strip()
    if not email:
        return None
    return RouteMatch(
        saved_route_id=saved_route.id,
        passenger_id=saved_route.passenger_id,
        passenger_email=email,
        origin=saved_route.origin,
        destination=saved_route.destination,
        preferred_date=saved_route.preferred_date,
    )

class TripPublisher:
    """
    Publish and edit with their "trip published" follow-up.

    The trip mutation commits first. Matching and dispatch run afterwards and
    their failures are logged and reported, never raised, so the mutation's
    result stands on its own.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: TripRegistry,
        matcher: RouteMatchEngine,
        dispatcher: NotificationDispatcher,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.matcher = matcher
        self.dispatcher = dispatcher

    async def publish(self, driver_id: UUID, trip_in: TripCreate) -> Tuple[Trip, MatchResult]:
        trip = await self.registry.create_trip(
            driver_id=driver_id,
            origin=trip_in.origin,
            destination=trip_in.destination,
            departure_at=trip_in.departure_at,
            seats=trip_in.seats,
        )
        return trip, await self.match(trip)

    async def edit(self, trip_id: UUID, driver_id: UUID, changes: Dict[str, Any]) -> Tuple[Trip, MatchResult]:
        trip = await self.registry.update_trip(trip_id, driver_id, changes)
        return trip, await self.match(trip)

    async def match(self, trip: Trip) -> MatchResult:
        try:
            async with self.session_factory() as session:
                return await self.matcher.find_matches(session, trip)
        except SeatShareError as e:
            logger.error(f"Route matching failed for trip {trip.id}; no notifications will be sent: {e.detail}")
            return MatchResult(trip_id=trip.id)

    async def dispatch(self, trip: Trip, match_result: MatchResult) -> DispatchReport:
        return await self.dispatcher.dispatch(trip, match_result)

    async def announce(self, trip: Trip) -> DispatchReport:
        """Match and notify in one go, for re-running an announcement."""
        return await self.dispatch(trip, await self.match(trip))

    async def first_trip_for(self, saved_route: SavedRoute) -> Optional[Trip]:
        """Soonest bookable trip a just-saved route would have been notified about."""
        try:
            async with self.session_factory() as session:
                trips = await self.matcher.search_trips(
                    session,
                    origin=saved_route.origin,
                    destination=saved_route.destination,
                    on_date=saved_route.preferred_date,
                    limit=1,
                )
        except SeatShareError as e:
            logger.error(f"Trip lookup failed for saved route {saved_route.id}: {e.detail}")
            return None
        return trips[0] if trips else None

    async def check_route(self, saved_route: SavedRoute, trip: Optional[Trip]) -> Optional[NotificationAttempt]:
        match = route_match_for(saved_route)
        if match is None:
            logger.info(f"Saved route {saved_route.id} has no email; skipping its first check")
            return None
        return await self.dispatcher.check_route(match, trip)

    async def watch_route(self, saved_route: SavedRoute) -> RouteWatchResult:
        """Check a freshly saved route against the trips already published."""
        trip = await self.first_trip_for(saved_route)
        attempt = await self.check_route(saved_route, trip)
        return RouteWatchResult(
            found=trip is not None,
            message=(attempt.message if attempt is not None and attempt.message else watch_message(saved_route, trip)),
            trip_id=trip.id if trip is not None else None,
            notified=attempt.delivered if attempt is not None else None,
            notification=attempt,
        )
