# File: models.py

import uuid
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Date, Enum as SQLAlchemyEnum, Boolean, Integer, ForeignKey,
    CheckConstraint, Index, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    """Naive values are UTC (SQLite drops the offset); aware values are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

# --- Enums ---
class UserRole(str, Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"

class BookingRequestStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"
    CANCELLED_TRIP_MODIFIED = "cancelled_trip_modified"

ACTIVE_REQUEST_STATUSES = (BookingRequestStatus.PENDING, BookingRequestStatus.CONFIRMED)

# --- USER PROJECTION ---
class User(Base):
    """Local projection of an identity managed by the external auth provider."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    role = Column(
        SQLAlchemyEnum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
        default=UserRole.PASSENGER,
    )
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.id} ({self.role})>"

# --- TRIPS ---
class Trip(Base):
    __tablename__ = "trips"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    origin = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    departure_at = Column(DateTime(timezone=True), nullable=False, index=True)
    seats_available = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    driver = relationship("User", backref="created_trips")

    __table_args__ = (
        CheckConstraint("seats_available >= 0", name="ck_trips_seats_available_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Trip {self.id} from {self.origin} to {self.destination}>"

# --- BOOKING REQUESTS ---
class BookingRequest(Base):
    """A passenger's claim on exactly one seat of a trip."""
    __tablename__ = "booking_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Nullable so requests outlive a hard-deleted trip
    trip_id = Column(UUID(as_uuid=True), ForeignKey("trips.id", ondelete="SET NULL"), nullable=True, index=True)
    passenger_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(
        SQLAlchemyEnum(BookingRequestStatus, name="booking_request_status", values_callable=_enum_values),
        nullable=False,
        default=BookingRequestStatus.PENDING,
    )
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    trip = relationship("Trip")
    passenger = relationship("User", backref="booking_requests")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REQUEST_STATUSES

    def __repr__(self) -> str:
        return f"<BookingRequest {self.id} for Trip {self.trip_id} ({self.status})>"

# One active (pending or confirmed) request per (trip, passenger)
_active_request_clause = text(
    "status IN (" + ", ".join(f"'{s.value}'" for s in ACTIVE_REQUEST_STATUSES) + ")"
)
Index(
    "uq_booking_requests_active_trip_passenger",
    BookingRequest.trip_id,
    BookingRequest.passenger_id,
    unique=True,
    postgresql_where=_active_request_clause,
    sqlite_where=_active_request_clause,
)

# --- SAVED ROUTES ---
class SavedRoute(Base):
    """A passenger's standing interest in an origin/destination pair."""
    __tablename__ = "saved_routes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    passenger_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    passenger_email = Column(String, nullable=True)
    origin = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    preferred_date = Column(Date, nullable=True)  # NULL means any date

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SavedRoute {self.id} {self.origin} -> {self.destination}>"
