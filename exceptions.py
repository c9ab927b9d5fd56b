# File: exceptions.py

from fastapi import status

class SeatShareError(Exception):
    """Base class. Carries the HTTP status the API layer maps it to."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

class ValidationError(SeatShareError):
    """Malformed input, rejected before touching the store."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

class AuthorizationError(SeatShareError):
    status_code = status.HTTP_403_FORBIDDEN

class NotFoundError(SeatShareError):
    status_code = status.HTTP_404_NOT_FOUND

class ConflictError(SeatShareError):
    """Duplicate active request, no seat left, or a transition out of a terminal state."""
    status_code = status.HTTP_409_CONFLICT

class ExternalServiceError(SeatShareError):
    """Text-generation or mail-delivery collaborator failed."""
    status_code = status.HTTP_502_BAD_GATEWAY

class StoreUnavailableError(SeatShareError):
    """The store failed mid-action. Nothing was committed; the caller may retry."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

class ServiceTimeoutError(SeatShareError):
    """The unit of work exceeded its timeout and was abandoned."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
