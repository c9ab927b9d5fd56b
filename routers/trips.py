# File: routers/trips.py

import logging
from datetime import date
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from auth.dependencies import get_current_driver
from models import Trip, User
from schemas import (
    TripCreate, TripResponse, TripUpdate, TripPublishResponse, TripDeleteResponse,
    TripWithRequestsResponse, PassengerRequestSummary, NotificationSummary, MatchResult,
)
from services.container import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/trips", tags=["trips"])

async def _announce(
    services: Services,
    trip: Trip,
    match_result: MatchResult,
    background_tasks: BackgroundTasks,
) -> NotificationSummary:
    """Dispatches now, or after the response when configured to run in the background."""
    if services.notifications_in_background:
        background_tasks.add_task(services.publisher.dispatch, trip, match_result)
        return NotificationSummary(
            matched=len(match_result.matches),
            skipped=len(match_result.skipped_route_ids),
            attempted=len(match_result.matches),
            notified=None,
        )
    report = await services.publisher.dispatch(trip, match_result)
    return NotificationSummary.from_report(report)

def _publish_message(verb: str, summary: NotificationSummary) -> str:
    if summary.notified is None:
        return f"Trip {verb}. {summary.matched} passenger(s) matched; notifications are on their way."
    return f"Trip {verb}. {summary.matched} passenger(s) matched, {summary.notified} notified."

@router.post("/", response_model=TripPublishResponse, status_code=status.HTTP_201_CREATED)
async def publish_trip(
    trip_in: TripCreate,
    background_tasks: BackgroundTasks,
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
) -> TripPublishResponse:
    """
    Publish a new trip.
    Passengers whose saved routes match are notified once the trip is committed;
    notification problems never undo the publication.
    """
    trip, match_result = await services.publisher.publish(current_user.id, trip_in)
    summary = await _announce(services, trip, match_result, background_tasks)
    logger.info(f"Successfully published trip {trip.id} for driver {current_user.id}")
    return TripPublishResponse(
        trip=TripResponse.from_trip(trip),
        notifications=summary,
        message=_publish_message("published", summary),
    )

@router.get("/search", response_model=List[TripResponse])
async def search_trips(
    services: Annotated[Services, Depends(get_services)],
    origin: Annotated[Optional[str], Query(description="Departure location")] = None,
    destination: Annotated[Optional[str], Query(description="Destination location")] = None,
    on_date: Annotated[Optional[date], Query(alias="date", description="Departure date (UTC)")] = None,
    skip: Annotated[int, Query(ge=0, description="Number of records to skip")] = 0,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of records to return")] = 20
) -> List[TripResponse]:
    """Future trips with free seats, filtered by the same rule used for saved routes."""
    async with services.session_factory() as session:
        trips = await services.matcher.search_trips(
            session,
            origin=origin or None,
            destination=destination or None,
            on_date=on_date,
            skip=skip,
            limit=limit,
        )
    return [TripResponse.from_trip(trip) for trip in trips]

@router.get("/my-trips", response_model=List[TripResponse])
async def get_my_trips(
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20
) -> List[TripResponse]:
    trips = await services.trips.list_driver_trips(current_user.id, skip=skip, limit=limit)
    logger.info(f"Successfully retrieved {len(trips)} trips for driver {current_user.id}")
    return [TripResponse.from_trip(trip) for trip in trips]

@router.get("/my-trips/requests", response_model=List[TripWithRequestsResponse])
async def get_my_trip_requests(
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20
) -> List[TripWithRequestsResponse]:
    """The driver's upcoming trips with the pending and confirmed requests on each."""
    inbox = await services.trips.list_driver_trips_with_requests(current_user.id, skip=skip, limit=limit)
    return [
        TripWithRequestsResponse(
            trip=TripResponse.from_trip(trip),
            requests=[PassengerRequestSummary.from_request(r) for r in requests],
        )
        for trip, requests in inbox
    ]

@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: UUID,
    services: Annotated[Services, Depends(get_services)],
) -> TripResponse:
    trip = await services.trips.get_trip(trip_id)
    return TripResponse.from_trip(trip)

@router.patch("/{trip_id}", response_model=TripPublishResponse)
async def edit_trip(
    trip_id: UUID,
    trip_in: TripUpdate,
    background_tasks: BackgroundTasks,
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
) -> TripPublishResponse:
    """
    Edit a trip.
    Every pending and confirmed request is cancelled as modified; a submitted
    seat count becomes the number of seats on offer. Matching saved routes are
    notified again.
    """
    trip, match_result = await services.publisher.edit(trip_id, current_user.id, trip_in.changes())
    summary = await _announce(services, trip, match_result, background_tasks)
    logger.info(f"Successfully updated trip {trip.id} for driver {current_user.id}")
    return TripPublishResponse(
        trip=TripResponse.from_trip(trip),
        notifications=summary,
        message=_publish_message("updated", summary),
    )

@router.delete("/{trip_id}", response_model=TripDeleteResponse)
async def delete_trip(
    trip_id: UUID,
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
) -> TripDeleteResponse:
    deletion = await services.trips.delete_trip(trip_id, current_user.id)
    return TripDeleteResponse(
        trip_id=deletion.trip_id,
        cancelled_requests=deletion.cancelled_requests,
        message=f"Trip deleted. {deletion.cancelled_requests} request(s) cancelled.",
    )
