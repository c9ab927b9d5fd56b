# File: services/container.py

import logging
from dataclasses import dataclass

from fastapi import Request
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings
from services.booking_service import BookingRequestManager
from services.concurrency import TripLocks
from services.email_service import MailDelivery, NullMailDelivery, SMTPMailDelivery
from services.notification_service import NotificationDispatcher
from services.publishing import TripPublisher
from services.route_matching import RouteMatchEngine
from services.text_generation import LLMTextGenerator, TemplateTextGenerator, TextGenerator
from services.trip_service import TripRegistry

logger = logging.getLogger(__name__)

@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    trips: TripRegistry
    bookings: BookingRequestManager
    matcher: RouteMatchEngine
    dispatcher: NotificationDispatcher
    publisher: TripPublisher
    notifications_in_background: bool = False

def build_text_generator(settings: Settings) -> TextGenerator:
    if not settings.llm_enabled:
        return TemplateTextGenerator(app_name=settings.APP_NAME)
    client = AsyncOpenAI(api_key=settings.LLM_API_KEY, base_url=settings.LLM_BASE_URL)
    return LLMTextGenerator(
        client,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        app_name=settings.APP_NAME,
    )

def build_mail_delivery(settings: Settings) -> MailDelivery:
    if settings.MOCK_EMAIL:
        return NullMailDelivery("mock email")
    if not settings.email_enabled:
        return NullMailDelivery("SMTP not configured")
    return SMTPMailDelivery(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        from_email=str(settings.SMTP_FROM_EMAIL),
        from_name=settings.SMTP_FROM_NAME,
        use_tls=settings.SMTP_USE_TLS,
        timeout=settings.SMTP_TIMEOUT_SECONDS,
    )

def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    text_generator: TextGenerator = None,
    mail_delivery: MailDelivery = None,
) -> Services:
    """Wires every service once, at startup. Collaborators may be passed in to replace the configured ones."""
    locks = TripLocks()
    bookings = BookingRequestManager(session_factory, locks, action_timeout=settings.ACTION_TIMEOUT_SECONDS)
    trips = TripRegistry(
        session_factory,
        locks,
        bookings,
        max_seats=settings.MAX_TRIP_SEATS,
        action_timeout=settings.ACTION_TIMEOUT_SECONDS,
    )
    matcher = RouteMatchEngine()
    dispatcher = NotificationDispatcher(
        text_generator or build_text_generator(settings),
        mail_delivery or build_mail_delivery(settings),
        attempt_timeout=settings.NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS,
        subject_max_length=settings.SUBJECT_MAX_LENGTH,
    )
    logger.info(
        f"Services wired: text generation={type(dispatcher.text_generator).__name__}, "
        f"mail={type(dispatcher.mail_delivery).__name__}"
    )
    return Services(
        session_factory=session_factory,
        trips=trips,
        bookings=bookings,
        matcher=matcher,
        dispatcher=dispatcher,
        publisher=TripPublisher(session_factory, trips, matcher, dispatcher),
        notifications_in_background=settings.NOTIFICATIONS_IN_BACKGROUND,
    )

def get_services(request: Request) -> Services:
    return request.app.state.services
