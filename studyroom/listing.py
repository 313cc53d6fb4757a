"""
Helpers to read the owner's own bookings from the library study-room page.

The booking POST does not return an identifier, so the identifier of a new
booking is recovered by scraping the listing table and matching rows by what
the host renders. Matching is a plain predicate over a parsed row so a change
in the host's date format stays a local fix.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable

import httpx
from bs4 import BeautifulSoup

from studyroom.bridge import SessionArtifacts, fetch_page
from studyroom.config import BridgeSettings

logger = logging.getLogger(__name__)


@dataclass
class ListingRow:
    """One booking row of the listing table."""

    booking_id: str
    ipid: str
    room_id: str
    text: str


RowMatcher = Callable[[ListingRow], bool]

_QUOTED_ARG = re.compile(r"'([^']*)'")


def format_host_date(value: date) -> str:
    """Render a date the way the listing table does (``2025/02/10``)."""
    return value.strftime("%Y/%m/%d")


def format_host_time(hour: int) -> str:
    return f"{hour:02d}:00"


def parse_listing(html_content: str) -> list[ListingRow]:
    """
    Parse the booking rows out of the study-room listing page.

    Each row carries a ``showBooking('<bookingId>','<ipid>','<roomId>')``
    style link. Rows without such a link are skipped.

    Args:
        html_content: HTML of the study-room main page

    Returns:
        Rows in table order; empty when the table is absent
    """
    soup = BeautifulSoup(html_content, "html.parser")
    tables = soup.select("table.tb01.width-full")
    if not tables:
        return []

    rows = []
    for tr in tables[-1].find_all("tr")[1:]:
        anchor = tr.find("a", href=True)
        if anchor is None:
            continue

        args = _QUOTED_ARG.findall(anchor["href"])
        if len(args) < 3:
            continue

        rows.append(
            ListingRow(
                booking_id=args[0],
                ipid=args[1],
                room_id=args[2],
                text=tr.get_text(" ", strip=True),
            )
        )

    return rows


def match_slot(room_id: str, reservation_date: date, start_hour: int) -> RowMatcher:
    """
    Match a row by room code and the host-rendered date and start time.

    The time must directly follow the date so an end time such as
    ``~ 11:00`` is not mistaken for a start time.
    """
    slot = re.compile(
        rf"{re.escape(format_host_date(reservation_date))}\s+"
        rf"{re.escape(format_host_time(start_hour))}"
    )

    def matcher(row: ListingRow) -> bool:
        return row.room_id == room_id and slot.search(row.text) is not None

    return matcher


def match_booking_id(booking_id: str) -> RowMatcher:
    def matcher(row: ListingRow) -> bool:
        return row.booking_id == booking_id

    return matcher


def first_match(rows: list[ListingRow], matcher: RowMatcher) -> ListingRow | None:
    # Table order is taken as-is; the host does not document its sort order.
    return next((row for row in rows if matcher(row)), None)


async def fetch_listing(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    settings: BridgeSettings | None = None,
) -> list[ListingRow]:
    """Fetch and parse the authenticated owner's booking listing."""
    settings = settings or BridgeSettings()
    html = await fetch_page(client, settings.library_studyroom_url, session)
    rows = parse_listing(html)
    logger.debug(f"Listing page has {len(rows)} booking rows")
    return rows


async def find_booking(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    matcher: RowMatcher,
    settings: BridgeSettings | None = None,
) -> ListingRow | None:
    rows = await fetch_listing(client, session, settings)
    return first_match(rows, matcher)


async def resolve_booking_id(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    room_id: str,
    reservation_date: date,
    start_hour: int,
    settings: BridgeSettings | None = None,
    matcher: RowMatcher | None = None,
) -> str | None:
    """
    Find the identifier of a booking that was just created.

    Args:
        client: HTTP client to use for requests
        session: Session the booking was created with
        room_id: Room code used when booking
        reservation_date: Booked date
        start_hour: Booked start hour
        settings: Host endpoints
        matcher: Override for the default slot matcher

    Returns:
        The booking id, or None when no row matches
    """
    matcher = matcher or match_slot(room_id, reservation_date, start_hour)
    row = await find_booking(client, session, matcher, settings)
    if row is None:
        logger.info(
            f"No listing row for room {room_id} on {reservation_date} at {format_host_time(start_hour)}"
        )
        return None
    return row.booking_id
