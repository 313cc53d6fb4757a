"""Tests for registration (immediate vs deferred) and cancellation flows."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from conftest import LIBRARY_LOGIN_URL, PORTAL_URL, TEST_KEY
from studyroom.bridge import NotFound, SubmissionRejected
from studyroom.crypto import decrypt, encrypt
from studyroom.models import Companion, ReservationStatus
from studyroom.reservations import (
    CancellationNotAllowed,
    InvalidReservationRequest,
    RecurringRequest,
    ReservationNotFound,
    cancel_reservation,
    register_recurring_reservation,
    validate_request,
)

# A Wednesday
NOW = datetime(2025, 3, 5, 13, 0, tzinfo=ZoneInfo("Asia/Seoul"))
OWNER = "21010001"
PORTAL_TOKEN = "tok-21010001"

COMPANIONS = [
    Companion("21010011", "Park", "IP-1"),
    Companion("21010012", "Choi", "IP-2"),
]


def make_request(**overrides) -> RecurringRequest:
    values = dict(
        room_id="04",
        day_id="mon",
        start_hour=10,
        hours=1,
        purpose="Capstone meeting",
        end_date=date(2025, 3, 26),
        companions=list(COMPANIONS),
    )
    values.update(overrides)
    return RecurringRequest(**values)


async def register(store, host, settings, request=None):
    return await register_recurring_reservation(
        store,
        OWNER,
        PORTAL_TOKEN,
        encrypt("pw-a", TEST_KEY),
        request or make_request(),
        settings,
        now=NOW,
        client_factory=host.client,
    )


class TestValidation:
    def test_hours_must_be_one_or_two(self):
        with pytest.raises(InvalidReservationRequest, match="1 or 2 hours"):
            validate_request(make_request(hours=3))

    def test_weekend_is_rejected(self):
        with pytest.raises(InvalidReservationRequest, match="Invalid day"):
            validate_request(make_request(day_id="sat"))

    def test_occupancy_bounds_for_known_room(self):
        # Study Room 01 needs at least six people
        with pytest.raises(InvalidReservationRequest, match="6 to 13 people"):
            validate_request(make_request(room_id="11"))

    def test_occupancy_within_bounds(self):
        validate_request(make_request(room_id="4"))

    def test_start_hour_past_closing(self):
        with pytest.raises(InvalidReservationRequest, match="closing"):
            validate_request(make_request(start_hour=21, hours=2))

    def test_blank_purpose(self):
        with pytest.raises(InvalidReservationRequest):
            validate_request(make_request(purpose="   "))


class TestRegistration:
    @pytest.mark.asyncio
    async def test_weekly_monday_splits_immediate_and_deferred(self, store, host, settings):
        result = await register(store, host, settings)

        assert result.success is True
        assert result.dates == [date(2025, 3, 10), date(2025, 3, 17), date(2025, 3, 24)]
        assert result.scheduled_count == 2
        assert [r.reservation_date for r in result.immediate_results] == [date(2025, 3, 10)]
        assert result.immediate_results[0].status is ReservationStatus.SUCCESS

        instances = store.list_by_owner(OWNER)
        assert len(instances) == 3
        assert len({i.reservation_date for i in instances}) == 3
        assert {i.group_id for i in instances} == {result.group_id}
        assert [i.status for i in instances] == [
            ReservationStatus.SUCCESS,
            ReservationStatus.PENDING,
            ReservationStatus.PENDING,
        ]
        assert instances[0].booking_id is not None
        assert all(i.booking_id is None for i in instances[1:])
        assert instances[0].companions == COMPANIONS

    @pytest.mark.asyncio
    async def test_immediate_submission_reuses_live_portal_token(self, store, host, settings):
        await register(store, host, settings)

        assert host.calls_to(PORTAL_URL) == []
        assert len(host.calls_to(LIBRARY_LOGIN_URL)) == 1

    @pytest.mark.asyncio
    async def test_credential_is_stored_encrypted(self, store, host, settings):
        await register(store, host, settings)

        stored = store.get_credential(OWNER)
        assert "pw-a" not in stored
        assert decrypt(stored, TEST_KEY) == "pw-a"

    @pytest.mark.asyncio
    async def test_all_deferred_makes_no_host_call(self, store, host, settings):
        request = make_request(day_id="fri", end_date=date(2025, 3, 6))
        with pytest.raises(InvalidReservationRequest, match="No dates"):
            await register(store, host, settings, request)

        settings.lead_days = 1
        result = await register(
            store, host, settings, make_request(day_id="fri", end_date=date(2025, 3, 21))
        )
        assert result.immediate_results == []
        assert result.scheduled_count == 3
        assert host.requests == []

    @pytest.mark.asyncio
    async def test_library_login_failure_fails_immediate_dates(self, store, host, settings):
        host.library_down_for.add(OWNER)
        result = await register(store, host, settings)

        assert [r.status for r in result.immediate_results] == [ReservationStatus.FAILED]
        assert result.immediate_results[0].message == "Library login failed"
        statuses = [i.status for i in store.list_by_owner(OWNER)]
        assert statuses.count(ReservationStatus.PENDING) == 2

    @pytest.mark.asyncio
    async def test_host_rejection_is_reported_per_date(self, store, host, settings):
        host.reject_dates[date(2025, 3, 10)] = "Room unavailable"
        result = await register(store, host, settings)

        outcome = result.immediate_results[0]
        assert outcome.status is ReservationStatus.FAILED
        assert outcome.message == "Room unavailable"
        assert store.get_instance(outcome.reservation_id).error_message == "Room unavailable"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_failed_and_cancelled_are_rejected_before_host_call(self, store, host, settings):
        failed = store.create_instance(
            owner_id=OWNER, group_id="g", room_id="4", reservation_date=date(2025, 3, 10),
            start_hour=10, hours=1, purpose="x", companions=[],
        )
        cancelled = store.create_instance(
            owner_id=OWNER, group_id="g", room_id="4", reservation_date=date(2025, 3, 17),
            start_hour=10, hours=1, purpose="x", companions=[],
        )
        store.update_status(failed.id, ReservationStatus.FAILED, error_message="Closed")
        store.update_status(cancelled.id, ReservationStatus.CANCELLED)

        for instance in (failed, cancelled):
            with pytest.raises(CancellationNotAllowed):
                await cancel_reservation(
                    store, instance.id, OWNER, PORTAL_TOKEN, settings=settings,
                    client_factory=host.client,
                )

        assert host.requests == []

    @pytest.mark.asyncio
    async def test_pending_is_cancelled_locally(self, store, host, settings):
        result = await register(store, host, settings)
        pending = store.list_by_owner(OWNER)[1]
        host.requests.clear()

        outcome = await cancel_reservation(
            store, pending.id, OWNER, PORTAL_TOKEN, settings=settings, client_factory=host.client
        )

        assert outcome.success is True
        assert store.get_instance(pending.id).status is ReservationStatus.CANCELLED
        assert host.requests == []
        assert result.scheduled_count == 2

    @pytest.mark.asyncio
    async def test_successful_booking_is_cancelled_on_host(self, store, host, settings):
        await register(store, host, settings)
        booked = store.list_by_owner(OWNER)[0]

        outcome = await cancel_reservation(
            store, booked.id, OWNER, PORTAL_TOKEN, "Exam moved", settings,
            client_factory=host.client,
        )

        assert outcome.success is True
        stored = store.get_instance(booked.id)
        assert stored.status is ReservationStatus.CANCELLED
        assert stored.booking_id == booked.booking_id
        assert host.bookings[OWNER] == []

    @pytest.mark.asyncio
    async def test_missing_booking_id_is_resolved_by_slot(self, store, host, settings):
        instance = store.create_instance(
            owner_id=OWNER, group_id="g", room_id="4", reservation_date=date(2025, 3, 10),
            start_hour=10, hours=1, purpose="x", companions=[],
        )
        store.update_status(instance.id, ReservationStatus.SUCCESS)
        host.add_booking(OWNER, "4", date(2025, 3, 10), 10)

        outcome = await cancel_reservation(
            store, instance.id, OWNER, PORTAL_TOKEN, settings=settings, client_factory=host.client
        )

        assert outcome.success is True
        assert host.bookings[OWNER] == []

    @pytest.mark.asyncio
    async def test_booking_gone_from_host(self, store, host, settings):
        await register(store, host, settings)
        booked = store.list_by_owner(OWNER)[0]
        host.bookings[OWNER] = []

        with pytest.raises(NotFound):
            await cancel_reservation(
                store, booked.id, OWNER, PORTAL_TOKEN, settings=settings,
                client_factory=host.client,
            )
        assert store.get_instance(booked.id).status is ReservationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_host_refusal_keeps_status(self, store, host, settings):
        await register(store, host, settings)
        booked = store.list_by_owner(OWNER)[0]
        host.reject_cancel = "Cannot cancel after check-in"

        with pytest.raises(SubmissionRejected, match="check-in"):
            await cancel_reservation(
                store, booked.id, OWNER, PORTAL_TOKEN, settings=settings,
                client_factory=host.client,
            )
        assert store.get_instance(booked.id).status is ReservationStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_other_owners_reservation(self, store, host, settings):
        await register(store, host, settings)
        booked = store.list_by_owner(OWNER)[0]

        with pytest.raises(ReservationNotFound):
            await cancel_reservation(
                store, booked.id, "21010002", "tok-21010002", settings=settings,
                client_factory=host.client,
            )
