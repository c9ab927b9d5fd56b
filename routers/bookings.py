# File: routers/bookings.py

import logging
from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from auth.dependencies import get_current_active_user, get_current_driver, get_current_passenger
from models import User
from schemas import BookingDecisionRequest, BookingRequestCreate, BookingRequestResponse
from services.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/booking-requests",
    tags=["booking-requests"]
)

@router.post(
    "/",
    response_model=BookingRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a seat",
    description="Ask for one seat on a trip. Seats are only reserved when the driver confirms."
)
async def request_seat(
    request_in: BookingRequestCreate,
    current_user: Annotated[User, Depends(get_current_passenger)],
    services: Annotated[Services, Depends(get_services)],
) -> BookingRequestResponse:
    booking_request = await services.bookings.request_seat(request_in.trip_id, current_user.id)
    return BookingRequestResponse.from_request(booking_request)

@router.get("/mine", response_model=List[BookingRequestResponse])
async def get_my_requests(
    current_user: Annotated[User, Depends(get_current_passenger)],
    services: Annotated[Services, Depends(get_services)],
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20
) -> List[BookingRequestResponse]:
    """The passenger's requests, newest first, including cancelled and rejected ones."""
    requests = await services.bookings.list_passenger_requests(current_user.id, skip=skip, limit=limit)
    logger.info(f"Retrieved {len(requests)} booking requests for passenger {current_user.id}")
    return [BookingRequestResponse.from_request(r) for r in requests]

@router.get("/{request_id}", response_model=BookingRequestResponse)
async def get_request(
    request_id: UUID,
    current_user: Annotated[User, Depends(get_current_active_user)],
    services: Annotated[Services, Depends(get_services)],
) -> BookingRequestResponse:
    booking_request = await services.bookings.get_request(request_id, current_user.id)
    return BookingRequestResponse.from_request(booking_request)

@router.post("/{request_id}/decision", response_model=BookingRequestResponse)
async def decide_request(
    request_id: UUID,
    decision_in: BookingDecisionRequest,
    current_user: Annotated[User, Depends(get_current_driver)],
    services: Annotated[Services, Depends(get_services)],
) -> BookingRequestResponse:
    """
    Confirm or reject a request on one of your trips.
    Confirming takes a seat and fails with 409 when none is left.
    """
    booking_request = await services.bookings.decide_request(request_id, current_user.id, decision_in.decision)
    return BookingRequestResponse.from_request(booking_request)

@router.post("/{request_id}/cancel", response_model=BookingRequestResponse)
async def cancel_request(
    request_id: UUID,
    current_user: Annotated[User, Depends(get_current_passenger)],
    services: Annotated[Services, Depends(get_services)],
) -> BookingRequestResponse:
    booking_request = await services.bookings.cancel_own_request(request_id, current_user.id)
    return BookingRequestResponse.from_request(booking_request)
