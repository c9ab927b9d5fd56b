# File: tests/test_booking_requests.py

import asyncio
from uuid import uuid4

import pytest

from crud import trip_crud
from exceptions import AuthorizationError, ConflictError, NotFoundError, ServiceTimeoutError, ValidationError
from models import BookingRequestStatus, Trip, UserRole
from schemas import BookingDecision
from services.booking_service import BookingRequestManager
from services.concurrency import TripLocks
from services.container import Services
from conftest import in_days

async def publish(services: Services, driver, seats: int = 2, origin: str = "Bogotá",
                  destination: str = "Medellín", days: float = 3) -> Trip:
    return await services.trips.create_trip(driver.id, origin, destination, in_days(days), seats)

async def seats_left(services: Services, trip_id) -> int:
    async with services.session_factory() as session:
        return await trip_crud.get_seats_available(session, trip_id)

class TestRequestSeat:
    """Creating pending requests."""

    @pytest.mark.asyncio
    async def test_creates_pending_request_without_touching_seats(self, services, driver, passenger):
        trip = await publish(services, driver, seats=1)

        booking_request = await services.bookings.request_seat(trip.id, passenger.id)

        assert booking_request.status == BookingRequestStatus.PENDING
        assert booking_request.trip_id == trip.id
        assert booking_request.trip.origin == "Bogotá"
        assert await seats_left(services, trip.id) == 1

    @pytest.mark.asyncio
    async def test_duplicate_active_request_conflicts(self, services, driver, passenger):
        trip = await publish(services, driver)
        await services.bookings.request_seat(trip.id, passenger.id)

        with pytest.raises(ConflictError):
            await services.bookings.request_seat(trip.id, passenger.id)

    @pytest.mark.asyncio
    async def test_can_request_again_after_cancelling(self, services, driver, passenger):
        trip = await publish(services, driver)
        first = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.cancel_own_request(first.id, passenger.id)

        second = await services.bookings.request_seat(trip.id, passenger.id)

        assert second.id != first.id
        assert second.status == BookingRequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_more_pending_requests_than_seats_is_allowed(self, services, driver, make_user):
        trip = await publish(services, driver, seats=1)
        for _ in range(3):
            rider = await make_user(UserRole.PASSENGER)
            await services.bookings.request_seat(trip.id, rider.id)

        assert await seats_left(services, trip.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_trip_is_not_found(self, services, passenger):
        with pytest.raises(NotFoundError):
            await services.bookings.request_seat(uuid4(), passenger.id)

    @pytest.mark.asyncio
    async def test_driver_cannot_request_own_trip(self, services, driver):
        trip = await publish(services, driver)
        with pytest.raises(ValidationError):
            await services.bookings.request_seat(trip.id, driver.id)

    @pytest.mark.asyncio
    async def test_departed_trip_rejects_requests(self, services, driver, passenger):
        async with services.session_factory() as session, session.begin():
            past = await trip_crud.create_trip(session, driver.id, "Cali", "Pasto", in_days(-1), 3)
        with pytest.raises(ValidationError):
            await services.bookings.request_seat(past.id, passenger.id)

class TestDecideRequest:
    """Confirming and rejecting against the seat counter."""

    @pytest.mark.asyncio
    async def test_confirm_takes_a_seat(self, services, driver, passenger):
        trip = await publish(services, driver, seats=2)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        confirmed = await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)

        assert confirmed.status == BookingRequestStatus.CONFIRMED
        assert confirmed.trip.seats_available == 1
        assert await seats_left(services, trip.id) == 1

    @pytest.mark.asyncio
    async def test_confirm_without_seats_conflicts_and_stays_pending(self, services, driver, make_user):
        trip = await publish(services, driver, seats=1)
        first = await services.bookings.request_seat(trip.id, (await make_user()).id)
        second = await services.bookings.request_seat(trip.id, (await make_user()).id)
        await services.bookings.decide_request(first.id, driver.id, BookingDecision.CONFIRM)

        with pytest.raises(ConflictError) as exc_info:
            await services.bookings.decide_request(second.id, driver.id, BookingDecision.CONFIRM)

        assert "No seats left" in exc_info.value.detail
        again = await services.bookings.get_request(second.id, driver.id)
        assert again.status == BookingRequestStatus.PENDING
        assert await seats_left(services, trip.id) == 0

    @pytest.mark.asyncio
    async def test_reject_pending_leaves_seats(self, services, driver, passenger):
        trip = await publish(services, driver, seats=2)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        rejected = await services.bookings.decide_request(pending.id, driver.id, BookingDecision.REJECT)

        assert rejected.status == BookingRequestStatus.REJECTED
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_reject_confirmed_gives_seat_back(self, services, driver, passenger):
        trip = await publish(services, driver, seats=1)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)
        assert await seats_left(services, trip.id) == 0

        await services.bookings.decide_request(pending.id, driver.id, BookingDecision.REJECT)

        assert await seats_left(services, trip.id) == 1

    @pytest.mark.asyncio
    async def test_only_trip_driver_can_decide(self, services, driver, passenger, make_user):
        other_driver = await make_user(UserRole.DRIVER)
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        with pytest.raises(AuthorizationError):
            await services.bookings.decide_request(pending.id, other_driver.id, BookingDecision.CONFIRM)
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_confirming_twice_conflicts(self, services, driver, passenger):
        trip = await publish(services, driver, seats=3)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)

        with pytest.raises(ConflictError):
            await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_unknown_request_is_not_found(self, services, driver):
        with pytest.raises(NotFoundError):
            await services.bookings.decide_request(uuid4(), driver.id, BookingDecision.CONFIRM)

class TestConcurrentConfirmations:
    """The seat counter under racing decisions."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seats,contenders", [(1, 4), (2, 5), (3, 3)])
    async def test_no_oversell(self, services, driver, make_user, seats, contenders):
        trip = await publish(services, driver, seats=seats)
        pending = []
        for _ in range(contenders):
            rider = await make_user(UserRole.PASSENGER)
            pending.append(await services.bookings.request_seat(trip.id, rider.id))

        results = await asyncio.gather(
            *(services.bookings.decide_request(r.id, driver.id, BookingDecision.CONFIRM) for r in pending),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == min(seats, contenders)
        assert len(conflicts) == contenders - len(successes)
        assert await seats_left(services, trip.id) == seats - len(successes)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seats,contenders", [(1, 4), (2, 5)])
    async def test_no_oversell_across_workers(self, services, session_factory, driver, make_user, seats, contenders):
        # One manager and lock registry per contender, like separate processes sharing only the database
        trip = await publish(services, driver, seats=seats)
        pending = []
        for _ in range(contenders):
            rider = await make_user(UserRole.PASSENGER)
            pending.append(await services.bookings.request_seat(trip.id, rider.id))
        workers = [BookingRequestManager(session_factory, TripLocks(), action_timeout=10) for _ in pending]

        results = await asyncio.gather(
            *(worker.decide_request(r.id, driver.id, BookingDecision.CONFIRM) for worker, r in zip(workers, pending)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == seats
        assert len(conflicts) == contenders - seats
        assert await seats_left(services, trip.id) == 0
        statuses = [(await services.bookings.get_request(r.id, driver.id)).status for r in pending]
        assert statuses.count(BookingRequestStatus.CONFIRMED) == seats
        assert statuses.count(BookingRequestStatus.PENDING) == contenders - seats

    @pytest.mark.asyncio
    async def test_conditional_decrement_never_goes_below_zero(self, services, driver):
        trip = await publish(services, driver, seats=1)
        async with services.session_factory() as session, session.begin():
            assert await trip_crud.take_seat(session, trip.id) is True
            assert await trip_crud.take_seat(session, trip.id) is False
        assert await seats_left(services, trip.id) == 0

    @pytest.mark.asyncio
    async def test_bogota_medellin_two_seats(self, services, driver, make_user):
        trip = await publish(services, driver, seats=2, origin="Bogotá", destination="Medellín")
        riders = [await make_user(UserRole.PASSENGER) for _ in range(3)]

        async def request_and_confirm(rider):
            booking_request = await services.bookings.request_seat(trip.id, rider.id)
            return await services.bookings.decide_request(booking_request.id, driver.id, BookingDecision.CONFIRM)

        confirmed = await asyncio.gather(request_and_confirm(riders[0]), request_and_confirm(riders[1]))
        assert all(r.status == BookingRequestStatus.CONFIRMED for r in confirmed)
        assert await seats_left(services, trip.id) == 0

        with pytest.raises(ConflictError):
            await request_and_confirm(riders[2])
        assert await seats_left(services, trip.id) == 0

class TestCancelOwnRequest:

    @pytest.mark.asyncio
    async def test_cancel_pending(self, services, driver, passenger):
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        cancelled = await services.bookings.cancel_own_request(pending.id, passenger.id)

        assert cancelled.status == BookingRequestStatus.CANCELLED_BY_PASSENGER
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_cancel_confirmed_restores_seat(self, services, driver, passenger):
        trip = await publish(services, driver, seats=1)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)

        await services.bookings.cancel_own_request(pending.id, passenger.id)

        assert await seats_left(services, trip.id) == 1

    @pytest.mark.asyncio
    async def test_only_the_passenger_can_cancel(self, services, driver, passenger, make_user):
        intruder = await make_user(UserRole.PASSENGER)
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        with pytest.raises(AuthorizationError):
            await services.bookings.cancel_own_request(pending.id, intruder.id)

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_departure(self, services, driver, passenger):
        trip = await publish(services, driver, days=1)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        async with services.session_factory() as session, session.begin():
            stored = await trip_crud.get_trip_by_id(session, trip.id)
            await trip_crud.apply_trip_changes(session, stored, departure_at=in_days(-1))

        with pytest.raises(ValidationError):
            await services.bookings.cancel_own_request(pending.id, passenger.id)

class TestStateMachineClosure:
    """Terminal requests stay terminal."""

    @pytest.mark.asyncio
    async def test_rejected_request_cannot_move(self, services, driver, passenger):
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.decide_request(pending.id, driver.id, BookingDecision.REJECT)

        for action in (
            services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM),
            services.bookings.decide_request(pending.id, driver.id, BookingDecision.REJECT),
            services.bookings.cancel_own_request(pending.id, passenger.id),
        ):
            with pytest.raises(ConflictError):
                await action

        final = await services.bookings.get_request(pending.id, passenger.id)
        assert final.status == BookingRequestStatus.REJECTED
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_cancelled_request_cannot_be_confirmed(self, services, driver, passenger):
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.bookings.cancel_own_request(pending.id, passenger.id)

        with pytest.raises(ConflictError):
            await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)
        assert await seats_left(services, trip.id) == 2

    @pytest.mark.asyncio
    async def test_trip_modified_request_cannot_be_confirmed(self, services, driver, passenger):
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.trips.update_trip(trip.id, driver.id, {"destination": "Cartagena"})

        with pytest.raises(ConflictError):
            await services.bookings.decide_request(pending.id, driver.id, BookingDecision.CONFIRM)

    @pytest.mark.asyncio
    async def test_requests_of_deleted_trip_cannot_move(self, services, driver, passenger):
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)
        await services.trips.delete_trip(trip.id, driver.id)

        with pytest.raises(ConflictError):
            await services.bookings.cancel_own_request(pending.id, passenger.id)

class TestReads:

    @pytest.mark.asyncio
    async def test_get_request_hidden_from_strangers(self, services, driver, passenger, make_user):
        stranger = await make_user(UserRole.PASSENGER)
        trip = await publish(services, driver)
        pending = await services.bookings.request_seat(trip.id, passenger.id)

        assert (await services.bookings.get_request(pending.id, driver.id)).id == pending.id
        with pytest.raises(AuthorizationError):
            await services.bookings.get_request(pending.id, stranger.id)

    @pytest.mark.asyncio
    async def test_list_passenger_requests_newest_first(self, services, driver, passenger):
        first_trip = await publish(services, driver, days=2)
        second_trip = await publish(services, driver, days=4)
        await services.bookings.request_seat(first_trip.id, passenger.id)
        await asyncio.sleep(0.01)
        await services.bookings.request_seat(second_trip.id, passenger.id)

        requests = await services.bookings.list_passenger_requests(passenger.id)

        assert [r.trip_id for r in requests] == [second_trip.id, first_trip.id]
        assert requests[0].trip.driver.full_name == "Ana Gómez"

class TestTimeouts:

    @pytest.mark.asyncio
    async def test_action_exceeding_timeout_fails_with_retryable_error(self, services, driver, passenger):
        trip = await publish(services, driver)

        # Hold the trip's lock so the request has to wait past its timeout
        async with services.bookings.locks.hold(trip.id):
            with pytest.raises(ServiceTimeoutError) as exc_info:
                await services.bookings.request_seat(trip.id, passenger.id, timeout=0.05)

        assert exc_info.value.retryable is True
        assert len(await services.bookings.list_passenger_requests(passenger.id)) == 0
