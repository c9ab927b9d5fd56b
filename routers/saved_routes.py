# File: routers/saved_routes.py

import logging
from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import get_current_passenger
from crud import saved_route_crud
from database import get_db
from exceptions import AuthorizationError, NotFoundError
from models import SavedRoute, User
from schemas import RouteWatchResult, SavedRouteCreate, SavedRouteCreateResponse, SavedRouteResponse
from services.container import Services, get_services
from services.publishing import route_match_for, watch_message

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/saved-routes", tags=["saved-routes"])

async def _first_check(
    services: Services,
    saved_route: SavedRoute,
    background_tasks: BackgroundTasks,
) -> RouteWatchResult:
    if not services.notifications_in_background:
        return await services.publisher.watch_route(saved_route)
    trip = await services.publisher.first_trip_for(saved_route)
    match = route_match_for(saved_route)
    if match is not None:
        background_tasks.add_task(services.dispatcher.check_route, match, trip)
    return RouteWatchResult(
        found=trip is not None,
        message=watch_message(saved_route, trip),
        trip_id=trip.id if trip is not None else None,
    )

@router.post("/", response_model=SavedRouteCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_saved_route(
    route_in: SavedRouteCreate,
    background_tasks: BackgroundTasks,
    current_user: Annotated[User, Depends(get_current_passenger)],
    db: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)],
) -> SavedRouteCreateResponse:
    """
    Watch a route. You are emailed when a matching trip is published, on the
    preferred date only or on any date when none is given.
    The route is also checked right away against trips already published.
    """
    if not current_user.email:
        logger.warning(f"Passenger {current_user.id} saved a route without an email; it will not be notified")
    saved_route = await saved_route_crud.create_saved_route(
        session=db,
        passenger_id=current_user.id,
        passenger_email=current_user.email,
        origin=route_in.origin,
        destination=route_in.destination,
        preferred_date=route_in.preferred_date,
    )
    return SavedRouteCreateResponse(
        saved_route=SavedRouteResponse.from_route(saved_route),
        watch=await _first_check(services, saved_route, background_tasks),
    )

@router.get("/", response_model=List[SavedRouteResponse])
async def get_my_saved_routes(
    current_user: Annotated[User, Depends(get_current_passenger)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> List[SavedRouteResponse]:
    saved_routes = await saved_route_crud.get_passenger_saved_routes(db, current_user.id)
    return [SavedRouteResponse.from_route(r) for r in saved_routes]

@router.delete("/{route_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_saved_route(
    route_id: UUID,
    current_user: Annotated[User, Depends(get_current_passenger)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> None:
    saved_route = await saved_route_crud.get_saved_route_by_id(db, route_id)
    if saved_route is None:
        raise NotFoundError("Saved route not found.")
    if saved_route.passenger_id != current_user.id:
        raise AuthorizationError("You can only delete your own saved routes.")
    await saved_route_crud.delete_saved_route(db, saved_route)
    logger.info(f"Saved route {route_id} deleted by passenger {current_user.id}")
