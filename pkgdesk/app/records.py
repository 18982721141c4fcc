from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .utils import format_time, parse_bool, parse_time


class PackageStatus(str, Enum):
    PENDING = "Pending"
    PICKED_UP = "Picked Up"
    EXPIRED = "Expired"

    @classmethod
    def parse(cls, value) -> "PackageStatus":
        try:
            return cls(str(value).strip())
        except ValueError:
            return cls.PENDING


def _cell(row: List, index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index])
    return ""


# Packages tab: A..J
PACKAGE_COLUMNS = [
    "packageId",
    "barcode",
    "householdId",
    "recipientName",
    "status",
    "receivedTime",
    "pickupTime",
    "pickupOTP",
    "signatureDataURL",
    "isOverdueNotified",
]

# Users tab: A..D
RESIDENT_COLUMNS = ["lineId", "householdId", "name", "joinDate"]

# Admins tab: A..B
ADMIN_COLUMNS = ["username", "password"]


@dataclass
class PackageRecord:
    package_id: str
    barcode: str
    household_id: str
    received_time: datetime
    status: PackageStatus = PackageStatus.PENDING
    recipient_name: Optional[str] = None
    pickup_time: Optional[datetime] = None
    pickup_otp: Optional[str] = None
    signature: Optional[str] = None
    is_overdue_notified: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status == PackageStatus.PENDING

    def to_row(self) -> List[str]:
        return [
            self.package_id,
            self.barcode,
            self.household_id,
            self.recipient_name or "",
            self.status.value,
            format_time(self.received_time) or "",
            format_time(self.pickup_time) or "",
            self.pickup_otp or "",
            self.signature or "",
            "TRUE" if self.is_overdue_notified else "FALSE",
        ]

    @classmethod
    def from_row(cls, row: List) -> Optional["PackageRecord"]:
        package_id = _cell(row, 0).strip()
        if not package_id:
            return None
        return cls(
            package_id=package_id,
            barcode=_cell(row, 1).strip(),
            household_id=_cell(row, 2).strip().upper(),
            recipient_name=_cell(row, 3) or None,
            status=PackageStatus.parse(_cell(row, 4)),
            received_time=parse_time(_cell(row, 5)) or parse_time("1970-01-01T00:00:00Z"),
            pickup_time=parse_time(_cell(row, 6)),
            pickup_otp=_cell(row, 7) or None,
            signature=_cell(row, 8) or None,
            is_overdue_notified=parse_bool(_cell(row, 9)),
        )

    def to_dict(self) -> dict:
        # the stored verification code is never sent to clients
        return {
            "packageId": self.package_id,
            "barcode": self.barcode,
            "householdId": self.household_id,
            "recipientName": self.recipient_name,
            "status": self.status.value,
            "receivedTime": format_time(self.received_time),
            "pickupTime": format_time(self.pickup_time),
            "signatureDataURL": self.signature,
            "isOverdueNotified": self.is_overdue_notified,
        }


@dataclass
class ResidentRecord:
    line_id: str
    household_id: str
    name: str = ""
    join_date: Optional[datetime] = None

    def to_row(self) -> List[str]:
        return [self.line_id, self.household_id, self.name, format_time(self.join_date) or ""]

    @classmethod
    def from_row(cls, row: List) -> Optional["ResidentRecord"]:
        line_id = _cell(row, 0).strip()
        if not line_id:
            return None
        return cls(
            line_id=line_id,
            household_id=_cell(row, 1).strip().upper(),
            name=_cell(row, 2),
            join_date=parse_time(_cell(row, 3)),
        )

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "householdId": self.household_id,
            "name": self.name,
            "status": "APPROVED",
            "joinDate": format_time(self.join_date),
        }


@dataclass
class AdminCredential:
    username: str
    password: str

    def to_row(self) -> List[str]:
        return [self.username, self.password]

    @classmethod
    def from_row(cls, row: List) -> Optional["AdminCredential"]:
        username = _cell(row, 0).strip()
        if not username:
            return None
        return cls(username=username, password=_cell(row, 1))
