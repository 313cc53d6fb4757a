"""Shared fixtures: a fake library host served through httpx.MockTransport."""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from studyroom.config import BridgeSettings
from studyroom.store import DiskReservationStore

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"

PORTAL_URL = "https://portal.test/jsp/login/login_action.jsp"
LIBRARY_LOGIN_URL = "https://library.test/sso/Login.ax"
STUDYROOM_URL = "https://library.test/studyroom/Main.ax"
RESERVE_URL = "https://library.test/studyroom/Request.ax"
BOOKING_PROCESS_URL = "https://library.test/studyroom/BookingProcess.axa"
USER_FIND_URL = "https://library.test/studyroom/UserFind.axa"

FORM_PAGE = """
<html><body>
<form id="frmMain" method="post">
  <input type="hidden" name="roomId" value="{room_id}" />
  <input type="hidden" name="token" value="abc123" />
  <input type="hidden" name="floor" value="3" />
  <input type="text" name="purpose" />
</form>
</body></html>
"""


@dataclass
class HostBooking:
    booking_id: str
    room_id: str
    reservation_date: date
    start_hour: int


@dataclass
class FakeHost:
    """Minimal stand-in for the portal and the library study-room system."""

    passwords: dict[str, str] = field(default_factory=dict)
    library_down_for: set[str] = field(default_factory=set)
    form_missing: bool = False
    reject_dates: dict[date, str] = field(default_factory=dict)
    reject_rooms: dict[str, str] = field(default_factory=dict)
    reject_cancel: str | None = None
    hide_new_bookings: bool = False
    bookings: dict[str, list[HostBooking]] = field(default_factory=dict)
    companions: dict[str, str] = field(default_factory=dict)
    unreachable: set[str] = field(default_factory=set)
    timeout_rooms: set[str] = field(default_factory=set)
    on_request: Callable[[httpx.Request], None] | None = None
    requests: list[httpx.Request] = field(default_factory=list)
    next_booking_id: int = 5000

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url).split("?")[0] == url]

    def add_booking(self, owner_id, room_id, reservation_date, start_hour) -> str:
        self.next_booking_id += 1
        booking_id = str(self.next_booking_id)
        self.bookings.setdefault(owner_id, []).insert(
            0, HostBooking(booking_id, room_id, reservation_date, start_hour)
        )
        return booking_id

    def _owner(self, request: httpx.Request) -> str | None:
        match = re.search(r"JSESSIONID=sess-([^;\s]+)", request.headers.get("cookie", ""))
        return match.group(1) if match else None

    def _form(self, request: httpx.Request) -> dict[str, str]:
        return {
            k: v[0]
            for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()
        }

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        if self.on_request is not None:
            self.on_request(request)
        if url in self.unreachable:
            raise httpx.ReadTimeout("timed out", request=request)

        if url == PORTAL_URL:
            form = self._form(request)
            owner = form.get("id")
            if owner in self.passwords and self.passwords[owner] == form.get("password"):
                return httpx.Response(
                    302,
                    headers=[
                        ("Location", "https://portal.test/main.jsp"),
                        ("Set-Cookie", f"ssotoken=tok-{owner}; Path=/; HttpOnly"),
                    ],
                )
            return httpx.Response(200, text="<html>login failed</html>")

        if url == LIBRARY_LOGIN_URL:
            match = re.search(r"ssotoken=tok-([^;\s]+)", request.headers.get("cookie", ""))
            owner = match.group(1) if match else None
            if owner is None or owner in self.library_down_for:
                return httpx.Response(200, text="<html>sso error</html>")
            return httpx.Response(
                302,
                headers=[
                    ("Location", STUDYROOM_URL),
                    ("Set-Cookie", "WMONID=xyz; Path=/"),
                    ("Set-Cookie", f"JSESSIONID=sess-{owner}; Path=/; HttpOnly"),
                ],
            )

        if url == RESERVE_URL:
            if request.url.params.get("roomId") in self.timeout_rooms:
                raise httpx.ReadTimeout("timed out", request=request)
            if self.form_missing or self._owner(request) is None:
                return httpx.Response(200, text="<html><body>session expired</body></html>")
            return httpx.Response(
                200, text=FORM_PAGE.format(room_id=request.url.params.get("roomId"))
            )

        if url == BOOKING_PROCESS_URL:
            return self._booking_process(request)

        if url == STUDYROOM_URL:
            return httpx.Response(200, text=self._listing_html(self._owner(request)))

        if url == USER_FIND_URL:
            form = self._form(request)
            ipid = self.companions.get(form.get("altPid"))
            if ipid:
                return httpx.Response(
                    200, headers={"X-JSON": f"{{'result':'true','ipid':'{ipid}'}}"}
                )
            return httpx.Response(200, headers={"X-JSON": "{'result':'false'}"})

        return httpx.Response(404)

    def _booking_process(self, request: httpx.Request) -> httpx.Response:
        owner = self._owner(request)
        form = self._form(request)

        if form.get("mode") == "INSERT":
            reservation_date = date(int(form["year"]), int(form["month"]), int(form["day"]))
            if reservation_date in self.reject_dates:
                return httpx.Response(
                    200,
                    headers={"X-JSON": "{'result':'false'}"},
                    text=f"  {self.reject_dates[reservation_date]}  ",
                )
            if form["roomId"] in self.reject_rooms:
                return httpx.Response(200, text=self.reject_rooms[form["roomId"]])
            if not self.hide_new_bookings:
                self.add_booking(owner, form["roomId"], reservation_date, int(form["startHour"]))
            return httpx.Response(200, headers={"X-JSON": "{'result':'true'}"})

        if form.get("mode") == "update":
            if self.reject_cancel:
                return httpx.Response(200, text=self.reject_cancel)
            self.bookings[owner] = [
                b for b in self.bookings.get(owner, []) if b.booking_id != form["bookingId"]
            ]
            return httpx.Response(200, headers={"X-JSON": "{'result':'true'}"})

        return httpx.Response(400, text="bad mode")

    def _listing_html(self, owner: str | None) -> str:
        rows = "".join(
            f"<tr><td>{b.room_id}</td>"
            f"<td>{b.reservation_date:%Y/%m/%d} {b.start_hour:02d}:00</td>"
            f"<td><a href=\"javascript:showBooking('{b.booking_id}','ip{b.booking_id}','{b.room_id}');\">detail</a></td></tr>"
            for b in self.bookings.get(owner, [])
        )
        return (
            "<html><body>"
            '<table class="tb01 width-full"><tr><th>notice</th></tr></table>'
            '<table class="tb01 width-full"><tr><th>Room</th><th>Date</th><th></th></tr>'
            f"{rows}</table></body></html>"
        )


@pytest.fixture
def settings():
    return BridgeSettings(
        _env_file=None,
        portal_url=PORTAL_URL,
        redirect_url="https://portal.test/main.jsp",
        headers_referer="https://portal.test/jsp/login/loginSSL.jsp",
        library_login_url=LIBRARY_LOGIN_URL,
        library_studyroom_url=STUDYROOM_URL,
        library_reserve_url=RESERVE_URL,
        library_booking_process_url=BOOKING_PROCESS_URL,
        library_user_find_url=USER_FIND_URL,
        cron_secret="s3cret",
        encryption_key=TEST_KEY,
        lead_days=7,
        timezone="Asia/Seoul",
        max_concurrent_owners=1,
    )


@pytest.fixture
def host():
    return FakeHost(passwords={"21010001": "pw-a", "21010002": "pw-b"})


@pytest.fixture
def store(tmp_path):
    store = DiskReservationStore(path=tmp_path / "store")
    yield store
    store.close()
