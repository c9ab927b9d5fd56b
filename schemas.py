# File: schemas.py

from datetime import datetime, date
from typing import ClassVar, Optional, List, Union
from uuid import UUID
from enum import Enum
from dataclasses import dataclass, field

# Define enums locally to avoid circular imports
class BookingRequestStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"
    CANCELLED_TRIP_MODIFIED = "cancelled_trip_modified"

class BookingDecision(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"

class AttemptOutcome(str, Enum):
    SENT = "sent"
    NO_CONTENT = "no_content"
    NOT_DELIVERED = "not_delivered"
    GENERATION_FAILED = "generation_failed"
    DELIVERY_FAILED = "delivery_failed"
    TIMED_OUT = "timed_out"

def _strip_required(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    return value.strip()

# --- USER SCHEMAS ---

@dataclass
class UserSummary:
    id: UUID
    full_name: Optional[str] = None

# --- TRIP SCHEMAS ---

@dataclass
class TripCreate:
    origin: str
    destination: str
    departure_at: datetime
    seats: int

    def __post_init__(self):
        self.origin = _strip_required(self.origin, "origin")
        self.destination = _strip_required(self.destination, "destination")

@dataclass
class TripUpdate:
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_at: Optional[datetime] = None
    seats: Optional[int] = None

    def __post_init__(self):
        if self.origin is not None:
            self.origin = _strip_required(self.origin, "origin")
        if self.destination is not None:
            self.destination = _strip_required(self.destination, "destination")

    def changes(self) -> dict:
        """Only the fields the caller actually submitted."""
        return {
            name: value
            for name, value in (
                ("origin", self.origin),
                ("destination", self.destination),
                ("departure_at", self.departure_at),
                ("seats", self.seats),
            )
            if value is not None
        }

@dataclass
class TripResponse:
    # Required fields first
    id: UUID
    driver_id: UUID
    origin: str
    destination: str
    departure_at: datetime
    seats_available: int
    created_at: datetime
    updated_at: datetime
    # Optional fields with defaults
    driver: Optional[UserSummary] = None

    @classmethod
    def from_trip(cls, trip) -> "TripResponse":
        driver = trip.driver
        return cls(
            id=trip.id,
            driver_id=trip.driver_id,
            origin=trip.origin,
            destination=trip.destination,
            departure_at=trip.departure_at,
            seats_available=trip.seats_available,
            created_at=trip.created_at,
            updated_at=trip.updated_at,
            driver=UserSummary(id=driver.id, full_name=driver.full_name) if driver is not None else None,
        )

# --- BOOKING REQUEST SCHEMAS ---

@dataclass
class BookingRequestCreate:
    trip_id: UUID

@dataclass
class BookingDecisionRequest:
    decision: BookingDecision

@dataclass
class BookingRequestResponse:
    # Required fields first
    id: UUID
    passenger_id: UUID
    status: BookingRequestStatus
    requested_at: datetime
    updated_at: datetime
    # Optional fields with defaults
    trip_id: Optional[UUID] = None
    trip: Optional[TripResponse] = None

    @classmethod
    def from_request(cls, booking_request) -> "BookingRequestResponse":
        trip = booking_request.trip
        return cls(
            id=booking_request.id,
            passenger_id=booking_request.passenger_id,
            status=BookingRequestStatus(booking_request.status.value),
            requested_at=booking_request.requested_at,
            updated_at=booking_request.updated_at,
            trip_id=booking_request.trip_id,
            trip=TripResponse.from_trip(trip) if trip is not None else None,
        )

@dataclass
class PassengerRequestSummary:
    id: UUID
    passenger_id: UUID
    status: BookingRequestStatus
    requested_at: datetime
    passenger: Optional[UserSummary] = None

    @classmethod
    def from_request(cls, booking_request) -> "PassengerRequestSummary":
        passenger = booking_request.passenger
        return cls(
            id=booking_request.id,
            passenger_id=booking_request.passenger_id,
            status=BookingRequestStatus(booking_request.status.value),
            requested_at=booking_request.requested_at,
            passenger=UserSummary(id=passenger.id, full_name=passenger.full_name) if passenger is not None else None,
        )

@dataclass
class TripWithRequestsResponse:
    trip: TripResponse
    requests: List[PassengerRequestSummary] = field(default_factory=list)

# --- SAVED ROUTE SCHEMAS ---

@dataclass
class SavedRouteCreate:
    origin: str
    destination: str
    preferred_date: Optional[date] = None

    def __post_init__(self):
        self.origin = _strip_required(self.origin, "origin")
        self.destination = _strip_required(self.destination, "destination")

@dataclass
class SavedRouteResponse:
    id: UUID
    passenger_id: UUID
    origin: str
    destination: str
    created_at: datetime
    passenger_email: Optional[str] = None
    preferred_date: Optional[date] = None

    @classmethod
    def from_route(cls, saved_route) -> "SavedRouteResponse":
        return cls(
            id=saved_route.id,
            passenger_id=saved_route.passenger_id,
            origin=saved_route.origin,
            destination=saved_route.destination,
            created_at=saved_route.created_at,
            passenger_email=saved_route.passenger_email,
            preferred_date=saved_route.preferred_date,
        )

# --- ROUTE MATCHING ---

@dataclass
class RouteMatch:
    """A saved route satisfied by a specific trip."""
    saved_route_id: UUID
    passenger_id: UUID
    passenger_email: str
    origin: str
    destination: str
    preferred_date: Optional[date] = None

@dataclass
class MatchResult:
    trip_id: UUID
    matches: List[RouteMatch] = field(default_factory=list)
    skipped_route_ids: List[UUID] = field(default_factory=list)

# --- NOTIFICATION FACT SHEET ---

@dataclass
class RouteWatchRequest:
    """What the passenger asked to be told about."""
    passenger_email: str
    origin: str
    destination: str
    requested_date: date

@dataclass
class MatchedTripDetails:
    trip_id: UUID
    origin: str
    destination: str
    departure_formatted: str
    driver_name: str
    seats_available: int

@dataclass
class MatchFoundFacts:
    kind: ClassVar[str] = "match_found"
    request: RouteWatchRequest
    trip: MatchedTripDetails

@dataclass
class NoMatchFacts:
    kind: ClassVar[str] = "no_match"
    request: RouteWatchRequest

FactSheet = Union[MatchFoundFacts, NoMatchFacts]

@dataclass
class GeneratedContent:
    """Text-generation collaborator output."""
    found: bool
    message: str = ""
    subject: Optional[str] = None
    body: Optional[str] = None

@dataclass
class DeliveryResult:
    """Mail-delivery collaborator output."""
    delivered: bool
    provider_message_id: Optional[str] = None

@dataclass
class NotificationAttempt:
    saved_route_id: UUID
    passenger_email: str
    outcome: AttemptOutcome
    subject: Optional[str] = None
    provider_message_id: Optional[str] = None
    error_class: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None  # the generator's one-line summary, when it produced one

    @property
    def delivered(self) -> bool:
        return self.outcome == AttemptOutcome.SENT

@dataclass
class DispatchReport:
    trip_id: UUID
    matched: int = 0
    skipped: int = 0
    attempts: List[NotificationAttempt] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.attempts)

    @property
    def delivered(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.delivered)

@dataclass
class NotificationSummary:
    matched: int
    skipped: int = 0
    attempted: int = 0
    notified: Optional[int] = None  # None while dispatch runs in the background
    attempts: List[NotificationAttempt] = field(default_factory=list)

    @classmethod
    def from_report(cls, report: DispatchReport) -> "NotificationSummary":
        return cls(
            matched=report.matched,
            skipped=report.skipped,
            attempted=report.attempted,
            notified=report.delivered,
            attempts=list(report.attempts),
        )

# --- TRIP MUTATION RESPONSES ---

@dataclass
class TripPublishResponse:
    trip: TripResponse
    notifications: NotificationSummary
    message: str = ""

@dataclass
class TripDeleteResponse:
    trip_id: UUID
    cancelled_requests: int
    message: str = ""

@dataclass
class RouteWatchResult:
    """What a freshly saved route found on its first check."""
    found: bool
    message: str
    trip_id: Optional[UUID] = None
    notified: Optional[bool] = None  # None when nothing was sent or it is still on its way
    notification: Optional[NotificationAttempt] = None

@dataclass
class SavedRouteCreateResponse:
    saved_route: SavedRouteResponse
    watch: RouteWatchResult
