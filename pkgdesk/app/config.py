"""
Settings for the package desk.

All configuration comes from environment variables (a local .env file is
loaded first when present). Settings are frozen dataclasses grouped by the
external service they configure.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class SheetSettings:
    """Google Sheets backend."""

    service_account_email: str = field(
        default_factory=lambda: os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", "")
    )
    # keys pasted into env files usually carry escaped newlines
    private_key: str = field(
        default_factory=lambda: os.getenv("GOOGLE_PRIVATE_KEY", "").replace("\\n", "\n")
    )
    spreadsheet_id: str = field(default_factory=lambda: os.getenv("GOOGLE_SHEET_ID", ""))

    packages_tab: str = "Packages"
    users_tab: str = "Users"
    admins_tab: str = "Admins"

    @property
    def configured(self) -> bool:
        return bool(self.service_account_email and self.private_key and self.spreadsheet_id)


@dataclass(frozen=True)
class LineSettings:
    """LINE Messaging API channel."""

    channel_access_token: str = field(
        default_factory=lambda: os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")
    )
    channel_secret: str = field(default_factory=lambda: os.getenv("LINE_CHANNEL_SECRET", ""))
    api_base: str = "https://api.line.me"
    timeout_seconds: int = 10

    @property
    def configured(self) -> bool:
        return bool(self.channel_access_token and self.channel_secret)


@dataclass(frozen=True)
class PickupSettings:
    """Verification code and reminder policy."""

    # per-package codes; household codes are typed on the batch pickup screen
    otp_length: int = field(default_factory=lambda: _env_int("OTP_LENGTH", 6))
    household_otp_length: int = field(default_factory=lambda: _env_int("HOUSEHOLD_OTP_LENGTH", 4))
    otp_expiry_minutes: int = field(default_factory=lambda: _env_int("OTP_EXPIRY_MINUTES", 5))
    overdue_hours: int = field(default_factory=lambda: _env_int("OVERDUE_HOURS", 48))
    # a Sheets cell holds at most 50000 characters
    max_signature_chars: int = field(
        default_factory=lambda: _env_int("MAX_SIGNATURE_CHARS", 50000)
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container.

    Usage:
        from pkgdesk.app.config import get_settings
        settings = get_settings()
        print(settings.sheets.spreadsheet_id)
    """

    sheets: SheetSettings = field(default_factory=SheetSettings)
    line: LineSettings = field(default_factory=LineSettings)
    pickup: PickupSettings = field(default_factory=PickupSettings)

    # auto | sheets | sql
    store_backend: str = field(default_factory=lambda: os.getenv("STORE_BACKEND", "auto").lower())
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./pkgdesk.db")
    )
    timezone: str = field(default_factory=lambda: os.getenv("TIMEZONE", "Asia/Taipei"))

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def use_sheets(self) -> bool:
        if self.store_backend == "sheets":
            return True
        if self.store_backend == "sql":
            return False
        return self.sheets.configured

    def timezone_known(self) -> bool:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return False
        return True

    def zone_name(self) -> str:
        """Timezone used for reports; UTC when TIMEZONE is not a known zone."""
        return self.timezone if self.timezone_known() else "UTC"

    def validate(self) -> list[str]:
        """Return a list of configuration warnings; empty when everything is set."""
        issues = []

        if not self.timezone_known():
            issues.append(f"WARNING: unknown TIMEZONE {self.timezone!r}, using UTC.")

        if self.store_backend not in ("auto", "sheets", "sql"):
            issues.append(f"WARNING: unknown STORE_BACKEND {self.store_backend!r}, using auto.")

        if self.store_backend == "sheets" and not self.sheets.configured:
            issues.append(
                "WARNING: STORE_BACKEND=sheets but Google credentials are incomplete "
                "(GOOGLE_SERVICE_ACCOUNT_EMAIL, GOOGLE_PRIVATE_KEY, GOOGLE_SHEET_ID)."
            )
        elif not self.use_sheets():
            issues.append(f"WARNING: Google Sheets not configured. Using local store {self.database_url}.")

        if not self.line.configured:
            issues.append(
                "WARNING: LINE_CHANNEL_ACCESS_TOKEN / LINE_CHANNEL_SECRET not set. "
                "Residents will not be notified and the webhook is disabled."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
