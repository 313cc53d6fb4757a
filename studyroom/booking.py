"""
Booking and cancellation submission against the library study-room host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

import httpx

from studyroom.bridge import (
    BridgeError,
    NotFound,
    SessionArtifacts,
    SubmissionResult,
    fetch_form_fields,
    read_submission_result,
    send_request,
)
from studyroom.config import BookingConstants, BridgeSettings
from studyroom.listing import find_booking, match_booking_id, resolve_booking_id
from studyroom.models import Companion, ReservationInstance

logger = logging.getLogger(__name__)


# --- Data Classes ---


@dataclass
class BookingRequest:
    """Structured booking request data."""

    room_id: str
    reservation_date: date
    start_hour: int
    hours: int
    purpose: str
    companions: list[Companion] = field(default_factory=list)

    @classmethod
    def from_instance(cls, instance: ReservationInstance) -> "BookingRequest":
        return cls(
            room_id=instance.room_id,
            reservation_date=instance.reservation_date,
            start_hour=instance.start_hour,
            hours=instance.hours,
            purpose=instance.purpose,
            companions=list(instance.companions),
        )


@dataclass
class BookingResult:
    """Structured booking result."""

    room_id: str
    success: bool
    message: str
    booking_id: str | None = None


# --- Form Building ---


def build_booking_form(fields: dict[str, str], request: BookingRequest) -> dict[str, str]:
    """
    Overlay the reservation parameters onto the scraped form fields.

    Scraped fields the request does not touch are passed through unchanged.
    Companions are numbered from 1 in the order given; the host maps the
    index to an occupant slot.

    Args:
        fields: Fields scraped from the room's reservation page
        request: Booking request details

    Returns:
        New mapping ready to be form-encoded
    """
    form = dict(fields)

    for index, companion in enumerate(request.companions, start=1):
        form[f"altPid{index}"] = companion.student_id
        form[f"name{index}"] = companion.name
        form[f"ipid{index}"] = companion.ipid

    form["year"] = f"{request.reservation_date.year}"
    form["month"] = f"{request.reservation_date.month:02d}"
    form["day"] = f"{request.reservation_date.day:02d}"
    form["startHour"] = f"{request.start_hour:02d}"
    form["closeTime"] = BookingConstants.CLOSE_HOUR
    form["hours"] = str(request.hours)
    form["purpose"] = request.purpose
    form["mode"] = "INSERT"
    return form


def build_cancel_form(booking_id: str, room_id: str, reason: str) -> dict[str, str]:
    return {
        "cancelMsg": reason or BookingConstants.DEFAULT_CANCEL_REASON,
        "bookingId": booking_id,
        "expired": "C",
        "roomId": room_id,
        "mode": "update",
        "classId": "0",
    }


# --- Booking Functions ---


async def submit_booking(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    fields: dict[str, str],
    request: BookingRequest,
    settings: BridgeSettings | None = None,
) -> SubmissionResult:
    """
    Submit a reservation with previously scraped form fields.

    HTTP 200 alone does not mean success; only the X-JSON header counts.
    Nothing is retried here.

    Raises:
        NetworkError: If the request fails
    """
    settings = settings or BridgeSettings()
    form = build_booking_form(fields, request)

    logger.info(
        f"Submitting room {request.room_id} on {request.reservation_date} "
        f"at {request.start_hour:02d}:00 for {request.hours}h"
    )
    response = await send_request(
        client,
        "POST",
        settings.library_booking_process_url,
        data=form,
        headers={
            "Content-Type": BookingConstants.FORM_CONTENT_TYPE,
            "Cookie": session.cookie_header(),
        },
    )

    result = read_submission_result(response, "Reservation completed.")
    if not result.success:
        logger.warning(f"Host rejected room {request.room_id}: {result.message[:200]}")
    return result


async def book_instance(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    request: BookingRequest,
    settings: BridgeSettings | None = None,
) -> BookingResult:
    """
    Fetch the form, submit the booking and resolve the new booking id.

    Args:
        client: HTTP client to use for requests
        session: Authenticated session of the owner
        request: Booking request details
        settings: Host endpoints

    Returns:
        Booking result; ``booking_id`` may be None even on success

    Raises:
        BridgeError: If fetching the form or submitting fails
    """
    settings = settings or BridgeSettings()
    fields = await fetch_form_fields(client, session, request.room_id, settings)
    result = await submit_booking(client, session, fields, request, settings)

    if not result.success:
        return BookingResult(
            room_id=request.room_id, success=False, message=result.message
        )

    try:
        booking_id = await resolve_booking_id(
            client,
            session,
            request.room_id,
            request.reservation_date,
            request.start_hour,
            settings,
        )
    except BridgeError as e:
        # The booking exists on the host; only its id is unknown.
        logger.warning(f"Could not resolve booking id for room {request.room_id}: {e}")
        booking_id = None

    return BookingResult(
        room_id=request.room_id,
        success=True,
        message=result.message,
        booking_id=booking_id,
    )


# --- Cancellation Functions ---


async def cancel_booking(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    booking_id: str,
    room_id: str,
    reason: str = "",
    settings: BridgeSettings | None = None,
) -> SubmissionResult:
    """
    Cancel an existing booking on the host.

    The listing is scraped first so that an unknown booking id fails loudly
    instead of being posted blindly.

    Args:
        client: HTTP client to use for requests
        session: Authenticated session of the booking owner
        booking_id: Host booking identifier
        room_id: Room code of the booking
        reason: Free-text cancellation reason
        settings: Host endpoints

    Returns:
        Submission result with the host's message on failure

    Raises:
        NotFound: If the booking is not in the owner's listing
        NetworkError: If a request fails
    """
    settings = settings or BridgeSettings()
    row = await find_booking(client, session, match_booking_id(booking_id), settings)
    if row is None:
        raise NotFound(f"Booking {booking_id} not found in the reservation list")

    logger.info(f"Cancelling booking {booking_id} for room {room_id}")
    response = await send_request(
        client,
        "POST",
        settings.library_booking_process_url,
        data=build_cancel_form(booking_id, room_id, reason),
        headers={
            "Content-Type": BookingConstants.FORM_CONTENT_TYPE,
            "Cookie": session.cookie_header(),
        },
    )
    return read_submission_result(response, "Reservation cancelled.")
