"""
Session bridge for the library study-room booking system.

This module owns everything that talks to the host before a booking is
submitted: the two-hop login (campus portal, then library subsystem), the
scraping of the reservation form's hidden fields, and the co-occupant lookup.
Session state is never kept on the module; callers thread an explicit
``SessionArtifacts`` value through every call.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

import httpx
from bs4 import BeautifulSoup

from studyroom.config import BookingConstants, BridgeSettings

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---


class BridgeError(Exception):
    """Base class for failures talking to the booking host."""

    pass


class InvalidCredentials(BridgeError):
    """The portal did not issue a token for the given id and password."""

    pass


class UpstreamSessionError(BridgeError):
    """The portal accepted the login but the library refused a session."""

    pass


class ParseError(BridgeError):
    """A host page did not have the expected shape."""

    pass


class NotFound(BridgeError):
    """The requested booking or person does not exist on the host."""

    pass


class SubmissionRejected(BridgeError):
    """The host explicitly reported a failed submission."""

    pass


class NetworkError(BridgeError):
    """Transport-level failure (connection, timeout, unexpected status)."""

    pass


# --- Data Classes ---


@dataclass(frozen=True)
class SessionArtifacts:
    """Portal token and library session id for one authenticated owner."""

    portal_token: str
    session_id: str

    def cookie_header(self) -> str:
        return (
            f"{BookingConstants.PORTAL_COOKIE}={self.portal_token}; "
            f"{BookingConstants.SESSION_COOKIE}={self.session_id}"
        )

    def __repr__(self) -> str:
        return "SessionArtifacts(portal_token=***, session_id=***)"


@dataclass
class SubmissionResult:
    """Outcome of a booking or cancellation POST."""

    success: bool
    message: str


FieldParser = Callable[[str], dict[str, str]]


# --- Utility Functions ---


def create_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    Create HTTP client with standard headers.

    Args:
        transport: Optional transport override (used by tests)

    Returns:
        Configured HTTP client
    """
    client = httpx.AsyncClient(transport=transport)
    client.headers.update(
        {
            "User-Agent": BookingConstants.USER_AGENT,
            "Accept-Language": BookingConstants.ACCEPT_LANGUAGE,
            "Accept-Encoding": BookingConstants.ACCEPT_ENCODING,
            "Connection": BookingConstants.CONNECTION,
            "Accept": BookingConstants.ACCEPT,
        }
    )
    return client


def extract_cookie(response: httpx.Response, name: str) -> str | None:
    """
    Extract a cookie value from the response's own ``set-cookie`` headers.

    Only the headers of this response are inspected, never the client jar,
    because the host signals login success on the first (redirect) response.

    Args:
        response: Response to inspect
        name: Cookie name

    Returns:
        The cookie value, or None when absent
    """
    pattern = re.compile(rf"(?:^|[\s,;]){re.escape(name)}=([^;,\s]+)")
    for header in response.headers.get_list("set-cookie"):
        match = pattern.search(header)
        if match:
            return match.group(1)
    return None


def is_success_signal(response: httpx.Response) -> bool:
    """The host reports success by putting ``true`` somewhere in X-JSON."""
    value = response.headers.get(BookingConstants.RESULT_HEADER)
    return bool(value) and "true" in value


def read_submission_result(
    response: httpx.Response, success_message: str
) -> SubmissionResult:
    """
    Interpret the structured success header of a booking host response.

    Args:
        response: Response of a booking or cancellation POST
        success_message: Message to report on success

    Returns:
        SubmissionResult, with the raw body as message on failure
    """
    if is_success_signal(response):
        return SubmissionResult(success=True, message=success_message)

    body = response.text.strip()
    return SubmissionResult(
        success=False, message=body or BookingConstants.DEFAULT_FAILURE_MESSAGE
    )


async def send_request(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> httpx.Response:
    """
    Send a request with the default timeout, mapping transport errors.

    Raises:
        NetworkError: On connection failures and timeouts
    """
    kwargs.setdefault("timeout", BookingConstants.DEFAULT_TIMEOUT)
    try:
        return await client.request(method, url, **kwargs)
    except httpx.RequestError as e:
        logger.warning(f"{method} {url} failed: {e.__class__.__name__}")
        raise NetworkError(f"Request to {url} failed: {e}") from e


async def fetch_page(
    client: httpx.AsyncClient, url: str, session: SessionArtifacts, **kwargs: Any
) -> str:
    """
    GET an authenticated host page and return its HTML.

    Raises:
        NetworkError: On transport failures or a non-success status
    """
    response = await send_request(
        client,
        "GET",
        url,
        headers={"Cookie": session.cookie_header()},
        follow_redirects=True,
        **kwargs,
    )
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NetworkError(f"HTTP {response.status_code} from {url}") from e
    return response.text


# --- Authentication Functions ---


async def login_to_portal(
    client: httpx.AsyncClient,
    owner_id: str,
    secret: str,
    settings: BridgeSettings,
) -> str:
    """
    Log in to the campus portal and return the SSO token.

    Args:
        client: HTTP client to use for requests
        owner_id: Student id
        secret: Plaintext portal password
        settings: Host endpoints

    Returns:
        The portal token

    Raises:
        InvalidCredentials: If the response sets no portal token
        NetworkError: If the request fails
    """
    logger.info(f"Submitting portal login for {owner_id}...")
    login_payload = {
        "mainLogin": "Y",
        "rtUrl": settings.redirect_url,
        "id": owner_id,
        "password": secret,
        "chkNos": "on",
    }

    response = await send_request(
        client,
        "POST",
        settings.portal_url,
        data=login_payload,
        headers={
            "Content-Type": BookingConstants.FORM_CONTENT_TYPE,
            "Referer": settings.headers_referer,
        },
        follow_redirects=False,
    )

    token = extract_cookie(response, BookingConstants.PORTAL_COOKIE)
    if not token:
        logger.warning(f"Portal login for {owner_id} returned no token")
        raise InvalidCredentials("Student id or password is incorrect")

    return token


async def login_to_library(
    client: httpx.AsyncClient, portal_token: str, settings: BridgeSettings
) -> SessionArtifacts:
    """
    Exchange a portal token for a library session.

    Args:
        client: HTTP client to use for requests
        portal_token: Token issued by ``login_to_portal``
        settings: Host endpoints

    Returns:
        Session artifacts for the library subsystem

    Raises:
        UpstreamSessionError: If the library sets no session cookie
        NetworkError: If the request fails
    """
    logger.info("Opening library session...")
    response = await send_request(
        client,
        "GET",
        settings.library_login_url,
        headers={"Cookie": f"{BookingConstants.PORTAL_COOKIE}={portal_token}"},
        follow_redirects=False,
    )

    session_id = extract_cookie(response, BookingConstants.SESSION_COOKIE)
    if not session_id:
        logger.warning(
            f"Library login returned no session cookie (status {response.status_code})"
        )
        raise UpstreamSessionError("Library login failed after portal login")

    return SessionArtifacts(portal_token=portal_token, session_id=session_id)


async def acquire_session(
    client: httpx.AsyncClient,
    owner_id: str,
    secret: str,
    settings: BridgeSettings | None = None,
) -> SessionArtifacts:
    """
    Perform the complete two-hop login.

    Args:
        client: HTTP client to use for requests
        owner_id: Student id
        secret: Plaintext portal password
        settings: Host endpoints (loaded from the environment when omitted)

    Returns:
        Session artifacts for every other bridge call

    Raises:
        InvalidCredentials: Portal issued no token; the library is not contacted
        UpstreamSessionError: Library issued no session
        NetworkError: Either hop failed at the transport level
    """
    settings = settings or BridgeSettings()
    portal_token = await login_to_portal(client, owner_id, secret, settings)
    session = await login_to_library(client, portal_token, settings)
    logger.info(f"Session established for {owner_id}")
    return session


# --- Form Field Extraction ---


def parse_form_fields(html_content: str) -> dict[str, str]:
    """
    Extract every named input of the reservation form.

    Args:
        html_content: HTML of the room's reservation entry page

    Returns:
        Mapping of field name to default value

    Raises:
        ParseError: If the form container is missing
    """
    soup = BeautifulSoup(html_content, "html.parser")
    form = soup.find(id=BookingConstants.FORM_CONTAINER)
    if form is None:
        raise ParseError(
            f"#{BookingConstants.FORM_CONTAINER} not found on the reservation page"
        )

    fields = {}
    for element in form.find_all("input"):
        name = element.get("name")
        if name:
            fields[name] = element.get("value") or ""
    return fields


async def fetch_form_fields(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    room_id: str,
    settings: BridgeSettings | None = None,
    parser: FieldParser = parse_form_fields,
) -> dict[str, str]:
    """
    Fetch a room's reservation page and scrape its form fields.

    The returned mapping is only valid for this room and this session.

    Raises:
        ParseError: If the page has no reservation form
        NetworkError: If the page cannot be fetched
    """
    settings = settings or BridgeSettings()
    html = await fetch_page(
        client, settings.library_reserve_url, session, params={"roomId": room_id}
    )
    fields = parser(html)
    logger.debug(f"Scraped {len(fields)} form fields for room {room_id}")
    return fields


# --- Companion Verification ---


async def verify_companion(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    student_id: str,
    name: str,
    reservation_date: date,
    settings: BridgeSettings | None = None,
) -> str:
    """
    Look up a co-occupant and return the verification token the host issues.

    Args:
        client: HTTP client to use for requests
        session: Authenticated session of the reservation owner
        student_id: Co-occupant's student id
        name: Co-occupant's name as registered
        reservation_date: Date the co-occupant would be booked for

    Returns:
        The host's ``ipid`` token for the co-occupant

    Raises:
        NotFound: The host does not know the person or blocks them
        ParseError: The result header is missing or unreadable
        NetworkError: The request fails
    """
    settings = settings or BridgeSettings()
    response = await send_request(
        client,
        "POST",
        settings.library_user_find_url,
        data={
            "altPid": student_id,
            "name": name,
            "userBlockUser": "Y",
            "year": f"{reservation_date.year}",
            "month": f"{reservation_date.month:02d}",
            "day": f"{reservation_date.day:02d}",
        },
        headers={
            "Content-Type": BookingConstants.FORM_CONTENT_TYPE,
            "Cookie": session.cookie_header(),
        },
    )

    header = response.headers.get(BookingConstants.RESULT_HEADER)
    if not header:
        raise ParseError("User lookup returned no result header")

    try:
        data = json.loads(header.replace("'", '"'))
    except json.JSONDecodeError as e:
        raise ParseError(f"Unreadable user lookup result: {header[:100]}") from e

    if data.get("result") != "true" or not data.get("ipid"):
        raise NotFound(f"Student {student_id} not found or not allowed to book")

    return data["ipid"]
