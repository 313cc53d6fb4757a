"""
Reservation registration and cancellation flows.

Registration creates one pending instance per occurrence date and submits
the near-term ones right away with the creator's live portal token; the
rest wait for the batch run. Cancellation checks the local status before any
host call is made.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

from studyroom.booking import cancel_booking
from studyroom.bridge import (
    BridgeError,
    NotFound,
    SubmissionRejected,
    SubmissionResult,
    create_http_client,
    login_to_library,
)
from studyroom.config import BookingConstants, BridgeSettings
from studyroom.dates import DAY_MAP, generate_recurring_dates, local_today, split_immediate
from studyroom.listing import resolve_booking_id
from studyroom.models import (
    Companion,
    CreationResult,
    InstanceOutcome,
    ReservationInstance,
    ReservationStatus,
)
from studyroom.orchestrator import ClientFactory, mark_failed, submit_instances
from studyroom.rooms import check_occupancy, get_room
from studyroom.store import ReservationStore

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---


class ReservationError(Exception):
    """Base class for rejected reservation requests."""

    pass


class InvalidReservationRequest(ReservationError):
    pass


class ReservationNotFound(ReservationError):
    pass


class CancellationNotAllowed(ReservationError):
    """The instance is already failed or cancelled."""

    pass


# --- Data Classes ---


@dataclass
class RecurringRequest:
    """A weekly recurring reservation as entered by the owner."""

    room_id: str
    day_id: str
    start_hour: int
    hours: int
    purpose: str
    end_date: date
    companions: list[Companion] = field(default_factory=list)


def validate_request(request: RecurringRequest) -> None:
    """
    Reject requests the host would refuse anyway.

    Raises:
        InvalidReservationRequest: With a message for the owner
    """
    if not request.room_id or not request.purpose.strip():
        raise InvalidReservationRequest("Required reservation details are missing")

    if request.hours not in BookingConstants.ALLOWED_HOURS:
        raise InvalidReservationRequest("A reservation lasts 1 or 2 hours")

    if request.day_id not in DAY_MAP:
        raise InvalidReservationRequest(f"Invalid day: {request.day_id}")

    if not 0 <= request.start_hour <= int(BookingConstants.CLOSE_HOUR) - request.hours:
        raise InvalidReservationRequest(
            f"Start hour {request.start_hour} runs past closing time"
        )

    # Only rooms in the catalogue have known bounds; the host re-checks on submit.
    room = get_room(request.room_id)
    if room and not check_occupancy(room, len(request.companions)):
        raise InvalidReservationRequest(
            f"{room.name} takes {room.min_people} to {room.max_people} people"
        )


async def register_recurring_reservation(
    store: ReservationStore,
    owner_id: str,
    portal_token: str,
    encrypted_secret: str,
    request: RecurringRequest,
    settings: BridgeSettings | None = None,
    now: datetime | None = None,
    client_factory: ClientFactory = create_http_client,
) -> CreationResult:
    """
    Register a weekly reservation and submit the dates the batch would miss.

    Args:
        store: Record store
        owner_id: Student id of the creator
        portal_token: The creator's live portal token
        encrypted_secret: Encrypted portal password for later batch runs
        request: Recurrence details
        settings: Host endpoints and lead time
        now: Current time (defaults to the real clock)
        client_factory: Builds the HTTP client for immediate submissions

    Returns:
        Creation result with per-date outcomes of immediate submissions

    Raises:
        InvalidReservationRequest: If the request is invalid or yields no dates
    """
    settings = settings or BridgeSettings()
    validate_request(request)

    today = local_today(settings.timezone, now)
    dates = generate_recurring_dates(request.day_id, request.end_date, today)
    if not dates:
        raise InvalidReservationRequest("No dates to reserve; check the end date")

    immediate_dates, deferred_dates = split_immediate(dates, today, settings.lead_days)
    group_id = str(uuid.uuid4())

    instances: dict[date, ReservationInstance] = {}
    for reservation_date in dates:
        instances[reservation_date] = store.create_instance(
            owner_id=owner_id,
            group_id=group_id,
            room_id=request.room_id,
            reservation_date=reservation_date,
            start_hour=request.start_hour,
            hours=request.hours,
            purpose=request.purpose,
            companions=request.companions,
        )
    store.save_credential(owner_id, encrypted_secret)

    logger.info(
        f"Registered {len(dates)} reservations for {owner_id} in group {group_id} "
        f"({len(immediate_dates)} immediate, {len(deferred_dates)} scheduled)"
    )

    immediate_results: list[InstanceOutcome] = []
    if immediate_dates:
        due = [instances[d] for d in immediate_dates]
        async with client_factory() as client:
            try:
                session = await login_to_library(client, portal_token, settings)
            except BridgeError as e:
                logger.warning(f"Library login failed for {owner_id}: {e}")
                immediate_results = [
                    mark_failed(store, instance, "Library login failed")
                    for instance in due
                ]
            else:
                immediate_results = await submit_instances(
                    client, session, store, due, settings
                )

    return CreationResult(
        success=True,
        message=f"{len(dates)} reservations registered",
        group_id=group_id,
        dates=dates,
        immediate_results=immediate_results,
        scheduled_count=len(deferred_dates),
    )


async def cancel_reservation(
    store: ReservationStore,
    reservation_id: int,
    owner_id: str,
    portal_token: str,
    reason: str = "",
    settings: BridgeSettings | None = None,
    client_factory: ClientFactory = create_http_client,
) -> SubmissionResult:
    """
    Cancel one reservation instance.

    A pending instance has nothing on the host yet and is cancelled locally.
    A successful one is cancelled on the host with a fresh library session
    opened from the owner's live portal token.

    Raises:
        ReservationNotFound: Unknown instance or not owned by ``owner_id``
        CancellationNotAllowed: Instance is failed or already cancelled
        NotFound: The booking is no longer on the host
        SubmissionRejected: The host refused the cancellation
        BridgeError: Login or transport failures
    """
    settings = settings or BridgeSettings()
    instance = store.get_instance(reservation_id)
    if instance is None or instance.owner_id != owner_id:
        raise ReservationNotFound(f"Reservation {reservation_id} not found")

    if instance.status in (ReservationStatus.FAILED, ReservationStatus.CANCELLED):
        raise CancellationNotAllowed(
            f"Reservation {reservation_id} is {instance.status.value} and cannot be cancelled"
        )

    if instance.status is ReservationStatus.PENDING:
        store.update_status(reservation_id, ReservationStatus.CANCELLED)
        logger.info(f"Pending reservation {reservation_id} cancelled locally")
        return SubmissionResult(success=True, message="Reservation cancelled.")

    async with client_factory() as client:
        session = await login_to_library(client, portal_token, settings)

        booking_id = instance.booking_id or await resolve_booking_id(
            client,
            session,
            instance.room_id,
            instance.reservation_date,
            instance.start_hour,
            settings,
        )
        if not booking_id:
            raise NotFound(f"No booking found on the host for reservation {reservation_id}")

        result = await cancel_booking(
            client, session, booking_id, instance.room_id, reason, settings
        )

    if not result.success:
        raise SubmissionRejected(result.message)

    store.update_status(reservation_id, ReservationStatus.CANCELLED)
    logger.info(f"Reservation {reservation_id} (booking {booking_id}) cancelled")
    return result
