# File: tests/test_notifications.py

import asyncio
from datetime import date, datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from openai import OpenAIError

from conftest import RecordingMailDelivery, ScriptedTextGenerator, in_days
from crud.saved_route_crud import create_saved_route
from exceptions import ExternalServiceError
from models import Trip, User, UserRole
from schemas import (
    AttemptOutcome, GeneratedContent, MatchResult, NoMatchFacts, RouteMatch, RouteWatchRequest, TripCreate,
)
from services.notification_service import (
    NotificationDispatcher, build_fact_sheet, clean_subject, fallback_subject, html_body,
)
from services.text_generation import LLMTextGenerator, TemplateTextGenerator

def make_trip(driver_name="Carlos Rojas", seats=3) -> Trip:
    return Trip(
        id=uuid4(),
        driver_id=uuid4(),
        driver=User(id=uuid4(), full_name=driver_name, role=UserRole.DRIVER),
        origin="Cali",
        destination="Pereira",
        departure_at=datetime(2031, 12, 20, 8, 30, tzinfo=timezone.utc),
        seats_available=seats,
    )

def make_match(email: str, preferred_date=None) -> RouteMatch:
    return RouteMatch(
        saved_route_id=uuid4(),
        passenger_id=uuid4(),
        passenger_email=email,
        origin="Cali",
        destination="Pereira",
        preferred_date=preferred_date,
    )

def watch_request(requested=date(2031, 12, 20)) -> RouteWatchRequest:
    return RouteWatchRequest(
        passenger_email="p@example.com", origin="Cali", destination="Pereira", requested_date=requested
    )

@pytest.fixture
def generator() -> ScriptedTextGenerator:
    return ScriptedTextGenerator()

@pytest.fixture
def outbox() -> RecordingMailDelivery:
    return RecordingMailDelivery()

@pytest.fixture
def dispatcher(generator, outbox) -> NotificationDispatcher:
    return NotificationDispatcher(generator, outbox, attempt_timeout=0.5)

class TestSubjectAndBody:

    def test_subject_is_trimmed_and_collapsed(self):
        assert clean_subject("  Trip   found!\n Cali to Pereira ", watch_request()) == "Trip found! Cali to Pereira"

    def test_long_subject_is_truncated_with_ellipsis(self):
        subject = clean_subject("x" * 100, watch_request(), max_length=70)
        assert len(subject) == 70
        assert subject.endswith("...")
        assert subject[:67] == "x" * 67

    def test_subject_at_limit_is_untouched(self):
        assert clean_subject("y" * 70, watch_request(), max_length=70) == "y" * 70

    @pytest.mark.parametrize("subject", [None, "", "   \n "])
    def test_blank_subject_uses_fallback(self, subject):
        assert clean_subject(subject, watch_request()) == "Trip found! Cali to Pereira (20/12/2031)"

    def test_fallback_subject_uses_requested_date(self):
        assert fallback_subject(watch_request(date(2031, 1, 5))) == "Trip found! Cali to Pereira (05/01/2031)"

    def test_html_body_escapes_and_keeps_line_breaks(self):
        assert html_body("Hola <Luis> & co\nBye") == "<p>Hola &lt;Luis&gt; &amp; co<br>Bye</p>"

class TestFactSheet:

    def test_requested_date_defaults_to_trip_date(self):
        facts = build_fact_sheet(make_match("a@example.com"), make_trip())

        assert facts.kind == "match_found"
        assert facts.request.requested_date == date(2031, 12, 20)
        assert facts.trip.departure_formatted == "20/12/2031 08:30 UTC"
        assert facts.trip.driver_name == "Carlos Rojas"
        assert facts.trip.seats_available == 3

    def test_preferred_date_is_the_requested_date(self):
        facts = build_fact_sheet(make_match("a@example.com", date(2031, 12, 20)), make_trip())
        assert facts.request.requested_date == date(2031, 12, 20)

    def test_driver_without_name(self):
        facts = build_fact_sheet(make_match("a@example.com"), make_trip(driver_name=None))
        assert facts.trip.driver_name == "Your driver"

class TestTemplateTextGenerator:

    @pytest.mark.asyncio
    async def test_match_found_copy(self):
        facts = build_fact_sheet(make_match("a@example.com"), make_trip())

        content = await TemplateTextGenerator(app_name="SeatShare").generate(facts)

        assert content.found is True
        assert content.subject == "Trip found! Cali to Pereira (20/12/2031)"
        assert "Carlos Rojas" in content.body
        assert "20/12/2031 08:30 UTC" in content.body
        assert "The SeatShare team" in content.body

    @pytest.mark.asyncio
    async def test_no_match_copy(self):
        content = await TemplateTextGenerator().generate(NoMatchFacts(request=watch_request()))
        assert content.found is False
        assert content.subject is None

class TestDispatch:

    @pytest.mark.asyncio
    async def test_every_match_gets_one_attempt(self, dispatcher, outbox):
        trip = make_trip()
        matches = [make_match(f"p{i}@example.com") for i in range(3)]

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=matches, skipped_route_ids=[uuid4()]))

        assert report.matched == 3
        assert report.skipped == 1
        assert report.attempted == 3
        assert report.delivered == 3
        assert sorted(m["to"] for m in outbox.sent) == ["p0@example.com", "p1@example.com", "p2@example.com"]
        assert all(a.provider_message_id for a in report.attempts)

    @pytest.mark.asyncio
    async def test_no_matches_sends_nothing(self, dispatcher, generator, outbox):
        trip = make_trip()
        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id))

        assert report.attempted == 0
        assert generator.calls == []
        assert outbox.attempted == []

    @pytest.mark.asyncio
    async def test_one_delivery_failure_does_not_affect_others(self, dispatcher, outbox):
        trip = make_trip()
        outbox.fail_for.add("p1@example.com")
        matches = [make_match(f"p{i}@example.com") for i in range(3)]

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=matches))

        outcomes = {a.passenger_email: a.outcome for a in report.attempts}
        assert outcomes == {
            "p0@example.com": AttemptOutcome.SENT,
            "p1@example.com": AttemptOutcome.DELIVERY_FAILED,
            "p2@example.com": AttemptOutcome.SENT,
        }
        failed = next(a for a in report.attempts if a.passenger_email == "p1@example.com")
        assert failed.error_class == "ExternalServiceError"
        assert report.delivered == 2

    @pytest.mark.asyncio
    async def test_generation_failure_is_recorded(self, dispatcher, generator, outbox):
        trip = make_trip()
        generator.fail_for.add("p0@example.com")

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=[make_match("p0@example.com")]))

        assert report.attempts[0].outcome == AttemptOutcome.GENERATION_FAILED
        assert outbox.attempted == []

    @pytest.mark.asyncio
    async def test_slow_attempt_times_out_alone(self, dispatcher, generator):
        trip = make_trip()
        generator.delay_for["slow@example.com"] = 5
        matches = [make_match("slow@example.com"), make_match("fast@example.com")]

        report = await asyncio.wait_for(dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=matches)), 3)

        outcomes = {a.passenger_email: a.outcome for a in report.attempts}
        assert outcomes == {"slow@example.com": AttemptOutcome.TIMED_OUT, "fast@example.com": AttemptOutcome.SENT}
        slow = next(a for a in report.attempts if a.passenger_email == "slow@example.com")
        assert slow.error_class == "TimeoutError"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [
        GeneratedContent(found=False, message="Nothing"),
        GeneratedContent(found=True, subject=None, body="Hello"),
        GeneratedContent(found=True, subject="", body="Hello"),
        GeneratedContent(found=True, subject="Trip found!", body="   "),
    ])
    async def test_missing_content_means_no_send(self, dispatcher, generator, outbox, content):
        trip = make_trip()
        generator.content_for["p@example.com"] = content

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=[make_match("p@example.com")]))

        assert report.attempts[0].outcome == AttemptOutcome.NO_CONTENT
        assert outbox.attempted == []

    @pytest.mark.asyncio
    async def test_whitespace_subject_falls_back(self, dispatcher, generator, outbox):
        trip = make_trip()
        generator.content_for["p@example.com"] = GeneratedContent(found=True, subject="   ", body="Hello\nthere")

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=[make_match("p@example.com")]))

        assert report.attempts[0].outcome == AttemptOutcome.SENT
        assert outbox.sent[0]["subject"] == "Trip found! Cali to Pereira (20/12/2031)"
        assert outbox.sent[0]["html_body"] == "<p>Hello<br>there</p>"

    @pytest.mark.asyncio
    async def test_refused_delivery_is_not_delivered(self, dispatcher, outbox):
        trip = make_trip()
        outbox.refuse_for.add("p@example.com")

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=[make_match("p@example.com")]))

        assert report.attempts[0].outcome == AttemptOutcome.NOT_DELIVERED
        assert report.delivered == 0

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_classified_by_stage(self, generator, outbox):
        class BrokenMail(RecordingMailDelivery):
            async def send(self, to, subject, html_body, text_body):
                raise RuntimeError("socket closed")

        trip = make_trip()
        dispatcher = NotificationDispatcher(generator, BrokenMail(), attempt_timeout=0.5)

        report = await dispatcher.dispatch(trip, MatchResult(trip_id=trip.id, matches=[make_match("p@example.com")]))

        assert report.attempts[0].outcome == AttemptOutcome.DELIVERY_FAILED
        assert report.attempts[0].error_class == "RuntimeError"

def fake_openai(reply=None, error=None):
    """Just enough of AsyncOpenAI for chat.completions.create."""
    async def create(**kwargs):
        fake.last_request = kwargs
        if error is not None:
            raise error
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)), last_request=None)
    return fake

class TestLLMTextGenerator:

    def test_parse_plain_json(self):
        generator = LLMTextGenerator(fake_openai(), model="test-model")
        content = generator.parse('{"found": true, "message": "ok", "subject": "Trip found!", "body": "Hi"}')
        assert content == GeneratedContent(found=True, message="ok", subject="Trip found!", body="Hi")

    def test_parse_fenced_json(self):
        generator = LLMTextGenerator(fake_openai(), model="test-model")
        content = generator.parse('```json\n{"found": false, "message": "none"}\n```')
        assert content.found is False
        assert content.subject is None

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"found": "yes"}', '{"message": "hi"}'])
    def test_parse_rejects_bad_output(self, raw):
        generator = LLMTextGenerator(fake_openai(), model="test-model")
        with pytest.raises(ExternalServiceError):
            generator.parse(raw)

    @pytest.mark.asyncio
    async def test_generate_sends_facts_and_asks_for_json(self):
        client = fake_openai('{"found": true, "message": "m", "subject": "s", "body": "b"}')
        generator = LLMTextGenerator(client, model="test-model", temperature=0.1, app_name="SeatShare")
        facts = build_fact_sheet(make_match("a@example.com"), make_trip())

        content = await generator.generate(facts)

        assert content.found is True
        assert client.last_request["model"] == "test-model"
        assert client.last_request["response_format"] == {"type": "json_object"}
        prompt = client.last_request["messages"][-1]["content"]
        assert "Carlos Rojas" in prompt
        assert "match_found" in prompt

    @pytest.mark.asyncio
    async def test_backend_error_becomes_external_service_error(self):
        generator = LLMTextGenerator(fake_openai(error=OpenAIError("rate limited")), model="test-model")
        facts = build_fact_sheet(make_match("a@example.com"), make_trip())

        with pytest.raises(ExternalServiceError):
            await generator.generate(facts)

    @pytest.mark.asyncio
    async def test_empty_reply_becomes_external_service_error(self):
        generator = LLMTextGenerator(fake_openai(reply=""), model="test-model")
        facts = build_fact_sheet(make_match("a@example.com"), make_trip())

        with pytest.raises(ExternalServiceError):
            await generator.generate(facts)

class TestPublishAnnouncement:
    """Publishing a trip notifies matching saved routes through the wired services."""

    @pytest.mark.asyncio
    async def test_cali_pereira_publication(self, services, mail, make_user, driver):
        departure = in_days(20, hour=8)
        watchers = [await make_user(email=f"rider{i}@example.com") for i in range(3)]
        async with services.session_factory() as session, session.begin():
            await create_saved_route(session, watchers[0].id, watchers[0].email, "Cali", "Pereira")
            await create_saved_route(session, watchers[1].id, watchers[1].email, "Cali", "Pereira", departure.date())
            await create_saved_route(session, watchers[2].id, None, "Cali", "Pereira")

        trip, match_result = await services.publisher.publish(
            driver.id, TripCreate(origin="Cali", destination="Pereira", departure_at=departure, seats=3)
        )
        report = await services.publisher.dispatch(trip, match_result)

        assert report.matched == 2
        assert report.skipped == 1
        assert report.delivered == 2
        assert sorted(m["to"] for m in mail.sent) == ["rider0@example.com", "rider1@example.com"]
        expected_subject = f"Trip found! Cali to Pereira ({departure.strftime('%d/%m/%Y')})"
        assert {m["subject"] for m in mail.sent} == {expected_subject}
        assert all("Ana Gómez" in m["text_body"] for m in mail.sent)

class TestFirstCheckOnSave:
    """A route is checked against published trips as soon as it is saved."""

    @pytest.mark.asyncio
    async def test_dispatcher_mails_the_trip_found(self, dispatcher, outbox):
        attempt = await dispatcher.check_route(make_match("a@example.com"), make_trip())

        assert attempt.outcome == AttemptOutcome.SENT
        assert attempt.message == "Match found for your route Cali - Pereira on 20/12/2031!"
        assert [m["to"] for m in outbox.sent] == ["a@example.com"]

    @pytest.mark.asyncio
    async def test_dispatcher_without_trip_only_reports(self, dispatcher, generator, outbox):
        attempt = await dispatcher.check_route(make_match("a@example.com", date(2031, 12, 24)), None)

        assert isinstance(generator.calls[0], NoMatchFacts)
        assert attempt.outcome == AttemptOutcome.NO_CONTENT
        assert attempt.message == "No trips found for your route Cali - Pereira on 24/12/2031."
        assert outbox.attempted == []

    @pytest.mark.asyncio
    async def test_generation_failure_is_reported(self, dispatcher, generator, outbox):
        generator.fail_for.add("a@example.com")

        attempt = await dispatcher.check_route(make_match("a@example.com"), make_trip())

        assert attempt.outcome == AttemptOutcome.GENERATION_FAILED
        assert attempt.message is None
        assert outbox.attempted == []

    @pytest.mark.asyncio
    async def test_watch_route_picks_the_soonest_trip(self, services, mail, driver, passenger):
        await services.trips.create_trip(driver.id, "Cali", "Pereira", in_days(9), 2)
        sooner = await services.trips.create_trip(driver.id, "Cali", "Pereira", in_days(3), 2)
        async with services.session_factory() as session, session.begin():
            saved_route = await create_saved_route(session, passenger.id, passenger.email, "Cali", "Pereira")

        result = await services.publisher.watch_route(saved_route)

        assert result.found
        assert result.trip_id == sooner.id
        assert result.notified
        assert [m["to"] for m in mail.sent] == ["luis@example.com"]
        assert sooner.departure_at.strftime("%d/%m/%Y") in mail.sent[0]["subject"]

    @pytest.mark.asyncio
    async def test_watch_route_respects_preferred_date(self, services, mail, driver, passenger):
        await services.trips.create_trip(driver.id, "Cali", "Pereira", in_days(3), 2)
        wanted = in_days(6).date()
        async with services.session_factory() as session, session.begin():
            saved_route = await create_saved_route(session, passenger.id, passenger.email, "Cali", "Pereira", wanted)

        result = await services.publisher.watch_route(saved_route)

        assert not result.found
        assert result.notified is False
        assert result.message == f"No trips found for your route Cali - Pereira on {wanted.strftime('%d/%m/%Y')}."
        assert mail.sent == []

    @pytest.mark.asyncio
    async def test_route_without_email_is_not_notified(self, services, mail, text_generator, driver, passenger):
        await services.trips.create_trip(driver.id, "Cali", "Pereira", in_days(3), 2)
        async with services.session_factory() as session, session.begin():
            saved_route = await create_saved_route(session, passenger.id, None, "Cali", "Pereira")

        result = await services.publisher.watch_route(saved_route)

        assert result.found
        assert result.notification is None
        assert result.notified is None
        assert result.message == "Trip found for your route Cali - Pereira!"
        assert text_generator.calls == []
        assert mail.attempted == []
