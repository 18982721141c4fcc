import re
import secrets
from datetime import datetime, timezone
from typing import Optional, Tuple

# floor 3-19, wing A/B/C; wings A and C have doors 1-3, wing B has 1-4
HOUSEHOLD_ID_RE = re.compile(r"([3-9]|1[0-9])([AC][1-3]|B[1-4])")

OTP_SEPARATOR = "|"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_household_id(household_id: Optional[str]) -> str:
    return (household_id or "").strip().upper()


def validate_household_id(household_id: str) -> bool:
    return bool(HOUSEHOLD_ID_RE.fullmatch(household_id or ""))


def new_package_id(now: datetime) -> str:
    return f"PKG{int(now.timestamp() * 1000)}"


def generate_otp(length: int = 6) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def pack_otp(code: str, expires_at: datetime) -> str:
    return f"{code}{OTP_SEPARATOR}{format_time(expires_at)}"


def unpack_otp(value: Optional[str]) -> Optional[Tuple[str, datetime]]:
    """Split a stored "code|expiry" cell. Returns None for empty or malformed values."""
    if not value or OTP_SEPARATOR not in value:
        return None
    code, _, expiry = value.partition(OTP_SEPARATOR)
    expires_at = parse_time(expiry)
    if not code or expires_at is None:
        return None
    return code, expires_at


def format_time(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_time(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def ensure_utc(dt: datetime) -> datetime:
    # sqlite hands back naive datetimes; everything stored is UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().upper() in ("TRUE", "1", "YES")
