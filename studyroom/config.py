from diskcache import Cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path

default_store_path = Path(__file__).parent / ".cache"


def open_store_cache(path: Path | str | None = None) -> Cache:
    """Open the disk cache that holds reservation rows and credentials."""
    return Cache(str(path or default_store_path))


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent / ".env",
        extra="ignore",
        populate_by_name=True,
    )

    portal_url: str = Field(
        default="https://portal.sejong.ac.kr/jsp/login/login_action.jsp",
        alias="SEJONG_PORTAL_URL",
    )
    redirect_url: str = Field(
        default="https://portal.sejong.ac.kr/main.jsp", alias="SEJONG_REDIRECT_URL"
    )
    headers_referer: str = Field(
        default="https://portal.sejong.ac.kr/jsp/login/loginSSL.jsp",
        alias="SEJONG_HEADERS_REFERER",
    )
    library_login_url: str = Field(
        default="https://library.sejong.ac.kr/sso/Login.ax",
        alias="SEJONG_LIBRARY_LOGIN_URL",
    )
    library_studyroom_url: str = Field(
        default="https://library.sejong.ac.kr/studyroom/Main.ax",
        alias="SEJONG_LIBRARY_STUDYROOM_URL",
    )
    library_reserve_url: str = Field(
        default="https://library.sejong.ac.kr/studyroom/Request.ax",
        alias="SEJONG_LIBRARY_RESERVE_URL",
    )
    library_booking_process_url: str = Field(
        default="https://library.sejong.ac.kr/studyroom/BookingProcess.axa",
        alias="SEJONG_LIBRARY_BOOKING_PROCESS_URL",
    )
    library_user_find_url: str = Field(
        default="https://library.sejong.ac.kr/studyroom/UserFind.axa",
        alias="SEJONG_LIBRARY_USER_FIND_URL",
    )

    cron_secret: str = Field(default="", alias="CRON_SECRET")
    encryption_key: str = Field(default="", alias="ENCRYPTION_KEY")

    lead_days: int = Field(default=7, alias="BOOKING_LEAD_DAYS")
    timezone: str = Field(default="Asia/Seoul", alias="BOOKING_TIMEZONE")
    max_concurrent_owners: int = Field(default=1, alias="MAX_CONCURRENT_OWNERS")
    store_path: str | None = Field(default=None, alias="STORE_PATH")


class LoginDetails(BaseSettings):
    """Portal account used to record live host interactions."""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent / ".env", extra="ignore"
    )

    student_id: str = Field(default="", alias="SEJONG_STUDENT_ID")
    password: str = Field(default="", alias="SEJONG_PASSWORD")


class BookingConstants:
    """Centralized constants for booking operations."""

    DEFAULT_TIMEOUT = 15
    CLOSE_HOUR = "22"
    ALLOWED_HOURS = (1, 2)

    # Host cookie and header names
    PORTAL_COOKIE = "ssotoken"
    SESSION_COOKIE = "JSESSIONID"
    RESULT_HEADER = "X-JSON"
    FORM_CONTAINER = "frmMain"

    DEFAULT_FAILURE_MESSAGE = "Reservation was rejected by the library system."
    DEFAULT_CANCEL_REASON = "Booked by mistake"

    # HTTP Headers
    USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.3.1 Safari/605.1.15"
    ACCEPT_LANGUAGE = "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7"
    ACCEPT_ENCODING = "gzip, deflate, br"
    CONNECTION = "keep-alive"
    ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
