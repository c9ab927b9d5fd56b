# File: tests/conftest.py

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

# Point the application at a disposable database before anything imports config
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(prefix='seatshare-'), 'app.db')}",
)
os.environ["LLM_API_KEY"] = ""
os.environ["SMTP_PASSWORD"] = ""

import pytest
from httpx import ASGITransport, AsyncClient

from auth.jwt_handler import create_access_token
from config import settings
from crud.auth_crud import create_user
from database import create_engine_for_url, create_session_factory, get_db
from exceptions import ExternalServiceError
from main import app
from models import Base, User, UserRole
from schemas import DeliveryResult, FactSheet, GeneratedContent
from services.container import Services, build_services
from services.email_service import MailDelivery
from services.text_generation import TemplateTextGenerator, TextGenerator

def in_days(days: float, hour: int = 14) -> datetime:
    """A UTC departure time safely in the future."""
    base = datetime.now(timezone.utc) + timedelta(days=days)
    return base.replace(hour=hour, minute=0, second=0, microsecond=0)

def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}

# --- Fake collaborators ---

class ScriptedTextGenerator(TextGenerator):
    """Template copy by default; per-recipient overrides for failures, delays or odd output."""

    def __init__(self):
        self.template = TemplateTextGenerator(app_name="SeatShare")
        self.calls: List[FactSheet] = []
        self.fail_for: set = set()
        self.delay_for: Dict[str, float] = {}
        self.content_for: Dict[str, GeneratedContent] = {}

    async def generate(self, facts: FactSheet) -> GeneratedContent:
        self.calls.append(facts)
        email = facts.request.passenger_email
        if email in self.delay_for:
            await asyncio.sleep(self.delay_for[email])
        if email in self.fail_for:
            raise ExternalServiceError("Text generation is temporarily unavailable.")
        if email in self.content_for:
            return self.content_for[email]
        return await self.template.generate(facts)

class RecordingMailDelivery(MailDelivery):
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.attempted: List[str] = []
        self.fail_for: set = set()
        self.refuse_for: set = set()

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        self.attempted.append(to)
        if to in self.fail_for:
            raise ExternalServiceError("Mail delivery failed.")
        if to in self.refuse_for:
            return DeliveryResult(delivered=False)
        self.sent.append({"to": to, "subject": subject, "html_body": html_body, "text_body": text_body})
        return DeliveryResult(delivered=True, provider_message_id=f"<msg-{len(self.sent)}@test>")

# --- Store ---

@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'seatshare.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)

# --- Services ---

@pytest.fixture
def text_generator() -> ScriptedTextGenerator:
    return ScriptedTextGenerator()

@pytest.fixture
def mail() -> RecordingMailDelivery:
    return RecordingMailDelivery()

@pytest.fixture
def test_settings():
    return settings.model_copy(update={
        "ACTION_TIMEOUT_SECONDS": 10.0,
        "NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS": 2.0,
        "NOTIFICATIONS_IN_BACKGROUND": False,
        "MAX_TRIP_SEATS": 10,
    })

@pytest.fixture
def services(test_settings, session_factory, text_generator, mail) -> Services:
    return build_services(test_settings, session_factory, text_generator=text_generator, mail_delivery=mail)

# --- Users ---

@pytest.fixture
def make_user(session_factory):
    async def _make_user(
        role: UserRole = UserRole.PASSENGER,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        async with session_factory() as session, session.begin():
            return await create_user(session, role=role, full_name=full_name, email=email)
    return _make_user

@pytest.fixture
async def driver(make_user) -> User:
    return await make_user(UserRole.DRIVER, full_name="Ana Gómez", email="ana.driver@example.com")

@pytest.fixture
async def passenger(make_user) -> User:
    return await make_user(UserRole.PASSENGER, full_name="Luis Pérez", email="luis@example.com")

# --- HTTP ---

@pytest.fixture
async def client(services, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                if session.in_transaction():
                    await session.commit()
            except Exception:
                await session.rollback()
                raise

    previous_services = app.state.services
    app.state.services = services
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.services = previous_services
