# File: services/notification_service.py

import asyncio
import html
import logging
from typing import List, Optional

from exceptions import ExternalServiceError
from models import Trip, as_utc, utcnow
from schemas import (
    AttemptOutcome, DispatchReport, FactSheet, MatchedTripDetails, MatchFoundFacts, MatchResult,
    NoMatchFacts, NotificationAttempt, RouteMatch, RouteWatchRequest,
)
from services.email_service import MailDelivery
from services.route_matching import departure_date_utc
from services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

DEPARTURE_FORMAT = "%d/%m/%Y %H:%M UTC"

def _squash(text: str) -> str:
    return " ".join(text.split())

def fallback_subject(request: RouteWatchRequest) -> str:
    return f"Trip found! {request.origin} to {request.destination} ({request.requested_date.strftime('%d/%m/%Y')})"

def clean_subject(subject: Optional[str], request: RouteWatchRequest, max_length: int = 70) -> str:
    """
    Trim, collapse whitespace and cap the length of a generated subject.

    Overlong subjects keep their first max_length - 3 characters plus "...".
    A subject with nothing left after cleaning is replaced by one built from
    the requested route and date.
    """
    cleaned = _squash(subject or "")
    if not cleaned:
        cleaned = _squash(fallback_subject(request))
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length - 3] + "..."
    return cleaned

def html_body(text_body: str) -> str:
    return "<p>" + html.escape(text_body).replace("\n", "<br>") + "</p>"

def build_fact_sheet(match: RouteMatch, trip: Trip) -> MatchFoundFacts:
    request = RouteWatchRequest(
        passenger_email=match.passenger_email,
        origin=match.origin,
        destination=match.destination,
        requested_date=match.preferred_date or departure_date_utc(trip.departure_at),
    )
    driver = trip.driver
    return MatchFoundFacts(
        request=request,
        trip=MatchedTripDetails(
            trip_id=trip.id,
            origin=trip.origin,
            destination=trip.destination,
            departure_formatted=as_utc(trip.departure_at).strftime(DEPARTURE_FORMAT),
            driver_name=(driver.full_name if driver is not None and driver.full_name else "Your driver"),
            seats_available=trip.seats_available,
        ),
    )

def build_no_match_facts(match: RouteMatch) -> NoMatchFacts:
    return NoMatchFacts(
        request=RouteWatchRequest(
            passenger_email=match.passenger_email,
            origin=match.origin,
            destination=match.destination,
            requested_date=match.preferred_date or utcnow().date(),
        )
    )

class NotificationDispatcher:
    """
    Fans a trip's route matches out to passengers, one independent attempt each.

    Attempts never raise: every outcome, including failures and timeouts, comes
    back as a NotificationAttempt in the DispatchReport.
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        mail_delivery: MailDelivery,
        attempt_timeout: Optional[float] = 20.0,
        subject_max_length: int = 70,
    ):
        self.text_generator = text_generator
        self.mail_delivery = mail_delivery
        self.attempt_timeout = attempt_timeout
        self.subject_max_length = subject_max_length

    async def dispatch(self, trip: Trip, match_result: MatchResult) -> DispatchReport:
        report = DispatchReport(
            trip_id=trip.id,
            matched=len(match_result.matches),
            skipped=len(match_result.skipped_route_ids),
        )
        if not match_result.matches:
            return report

        attempts: List[NotificationAttempt] = await asyncio.gather(
            *(self._attempt(match, build_fact_sheet(match, trip)) for match in match_result.matches)
        )
        report.attempts.extend(attempts)
        logger.info(
            f"📬 Trip {trip.id}: {report.matched} passenger(s) matched, "
            f"{report.attempted} attempted, {report.delivered} notified"
        )
        return report

    async def check_route(self, match: RouteMatch, trip: Optional[Trip]) -> NotificationAttempt:
        """
        Single attempt for a route that was just saved. With no trip the
        generator only produces a "no trips found" message, so nothing is mailed.
        """
        facts = build_fact_sheet(match, trip) if trip is not None else build_no_match_facts(match)
        return await self._attempt(match, facts)

    async def _attempt(self, match: RouteMatch, facts: FactSheet) -> NotificationAttempt:
        try:
            attempt = await asyncio.wait_for(self._notify(match, facts), self.attempt_timeout)
        except asyncio.TimeoutError:
            attempt = NotificationAttempt(
                saved_route_id=match.saved_route_id,
                passenger_email=match.passenger_email,
                outcome=AttemptOutcome.TIMED_OUT,
                error_class="TimeoutError",
                error=f"No result within {self.attempt_timeout}s",
            )
        logger.info(
            f"Notification for saved route {attempt.saved_route_id} -> {attempt.passenger_email}: "
            f"{attempt.outcome.value}" + (f" ({attempt.error_class})" if attempt.error_class else "")
        )
        return attempt

    async def _notify(self, match: RouteMatch, facts: FactSheet) -> NotificationAttempt:
        message: Optional[str] = None

        def record(outcome: AttemptOutcome, **extra) -> NotificationAttempt:
            return NotificationAttempt(
                saved_route_id=match.saved_route_id,
                passenger_email=match.passenger_email,
                outcome=outcome,
                message=message,
                **extra,
            )

        try:
            content = await self.text_generator.generate(facts)
        except ExternalServiceError as e:
            return record(AttemptOutcome.GENERATION_FAILED, error_class=type(e).__name__, error=e.detail)
        except Exception as e:
            logger.error(f"Unexpected text generation error for route {match.saved_route_id}: {e}", exc_info=True)
            return record(AttemptOutcome.GENERATION_FAILED, error_class=type(e).__name__, error=str(e))

        message = content.message or None
        # A blank-but-present subject still gets the fallback; a missing one means no content
        if not content.found or not content.subject or not (content.body or "").strip():
            return record(AttemptOutcome.NO_CONTENT)

        subject = clean_subject(content.subject, facts.request, self.subject_max_length)
        text_body = content.body.strip()
        try:
            result = await self.mail_delivery.send(
                to=match.passenger_email,
                subject=subject,
                html_body=html_body(text_body),
                text_body=text_body,
            )
        except ExternalServiceError as e:
            return record(AttemptOutcome.DELIVERY_FAILED, subject=subject, error_class=type(e).__name__, error=e.detail)
        except Exception as e:
            logger.error(f"Unexpected mail delivery error for route {match.saved_route_id}: {e}", exc_info=True)
            return record(AttemptOutcome.DELIVERY_FAILED, subject=subject, error_class=type(e).__name__, error=str(e))

        if not result.delivered:
            return record(AttemptOutcome.NOT_DELIVERED, subject=subject)
        return record(AttemptOutcome.SENT, subject=subject, provider_message_id=result.provider_message_id)
