"""
PackageDesk - check-in, verification codes and pickup.

Every state change is a read of the relevant tab followed by single-row
writes; there is no locking across rows.
"""

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .config import PickupSettings
from .errors import Conflict, InvalidInput, NotFound, Unauthorized, Unprocessable
from .messaging import Messenger
from .records import AdminCredential, PackageRecord, PackageStatus, ResidentRecord
from .store import PackageStore
from .utils import (
    generate_otp,
    new_package_id,
    normalize_household_id,
    now_utc,
    pack_otp,
    unpack_otp,
    validate_household_id,
)
from . import reports

logger = logging.getLogger(__name__)

HOUSEHOLD_RULES = "household id must be floor 3-19 + wing A/B/C + door (A/C: 1-3, B: 1-4), e.g. 11A1"

# attempts at drawing a code that no other household currently holds
CODE_ATTEMPTS = 20


@dataclass
class PickupSession:
    household_id: str
    name: str
    packages: List[PackageRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "user": {"name": self.name, "householdId": self.household_id},
            "packages": [p.to_dict() for p in self.packages],
        }


@dataclass
class IssuedCode:
    household_id: str
    code: str
    expires_at: datetime
    packages: List[PackageRecord]
    notified: int = 0


class PackageDesk:
    def __init__(
        self,
        store: PackageStore,
        messenger: Messenger,
        pickup: Optional[PickupSettings] = None,
        timezone: str = "UTC",
        now: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.messenger = messenger
        self.pickup = pickup or PickupSettings()
        self.timezone = timezone
        self.now = now

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _household(self, household_id: str) -> str:
        hid = normalize_household_id(household_id)
        if not validate_household_id(hid):
            raise InvalidInput(HOUSEHOLD_RULES)
        return hid

    def _accounts_for(self, household_id: str, residents: Optional[Iterable[ResidentRecord]] = None) -> List[str]:
        if residents is None:
            residents = self.store.list_residents()
        seen = []
        for r in residents:
            if r.household_id == household_id and r.line_id not in seen:
                seen.append(r.line_id)
        return seen

    def _push_all(self, accounts: List[str], text: str) -> int:
        sent = 0
        for line_id in accounts:
            if self.messenger.push_text(line_id, text):
                sent += 1
        return sent

    def _check_signature(self, signature: Optional[str], required: bool = True) -> Optional[str]:
        signature = (signature or "").strip() or None
        if signature is None:
            if required:
                raise InvalidInput("signature required")
            return None
        if len(signature) > self.pickup.max_signature_chars:
            raise InvalidInput("signature image too large")
        return signature

    def _require_package(self, package_id: str) -> PackageRecord:
        pkg = self.store.get_package(package_id)
        if pkg is None:
            raise NotFound(f"package not found: {package_id}")
        return pkg

    def _require_pending(self, pkg: PackageRecord) -> None:
        if not pkg.is_pending:
            raise Conflict(f"package {pkg.package_id} is {pkg.status.value}")

    def _mark_picked_up(self, pkg: PackageRecord, signature: Optional[str], when: datetime) -> PackageRecord:
        pkg.status = PackageStatus.PICKED_UP
        pkg.pickup_time = when
        pkg.signature = signature
        pkg.pickup_otp = None
        if not self.store.update_package(pkg):
            raise NotFound(f"package not found: {pkg.package_id}")
        return pkg

    def _active_codes(self, packages: Iterable[PackageRecord], now: datetime, exclude_household: str = None) -> set:
        codes = set()
        for p in packages:
            if not p.is_pending or p.household_id == exclude_household:
                continue
            parsed = unpack_otp(p.pickup_otp)
            if parsed and parsed[1] >= now:
                codes.add(parsed[0])
        return codes

    def _draw_code(self, taken: set, length: int) -> str:
        for _ in range(CODE_ATTEMPTS):
            code = generate_otp(length)
            if code not in taken:
                return code
        raise Conflict("no free verification code, try again shortly")

    def _otp_message(self, household_id: str, code: str, count: int) -> str:
        return (
            f"您的包裹領取驗證碼：{code}\n"
            f"戶號：{household_id}（共 {count} 件待領）\n"
            f"有效時間 {self.pickup.otp_expiry_minutes} 分鐘，請於領取時告知管理員。"
        )

    # ------------------------------------------------------------------
    # packages
    # ------------------------------------------------------------------

    def list_packages(self) -> List[PackageRecord]:
        return self.store.list_packages()

    def check_in(self, household_id: str, barcode: str, recipient_name: Optional[str] = None) -> PackageRecord:
        hid = self._household(household_id)
        barcode = (barcode or "").strip()
        if not barcode:
            raise InvalidInput("missing barcode")

        packages = self.store.list_packages()
        if any(p.barcode == barcode for p in packages):
            raise Conflict(f"barcode {barcode} already registered")

        now = self.now()
        package_id = new_package_id(now)
        existing_ids = {p.package_id for p in packages}
        bump = 0
        while package_id in existing_ids:
            bump += 1
            package_id = new_package_id(now + timedelta(milliseconds=bump))

        pkg = PackageRecord(
            package_id=package_id,
            barcode=barcode,
            household_id=hid,
            recipient_name=(recipient_name or "").strip() or None,
            received_time=now,
        )
        self.store.add_package(pkg)
        logger.info(f"checked in {barcode} for {hid} as {package_id}")

        text = f"📦 包裹到貨通知\n戶號：{hid}\n條碼：{barcode}\n"
        if pkg.recipient_name:
            text += f"收件人：{pkg.recipient_name}\n"
        text += "請攜帶手機至管理室領取。"
        self._push_all(self._accounts_for(hid), text)
        return pkg

    def delete_package(self, package_id: str) -> None:
        if not self.store.delete_package(package_id):
            raise NotFound(f"package not found: {package_id}")
        logger.info(f"deleted package {package_id}")

    def residents_of(self, household_id: str) -> List[str]:
        hid = normalize_household_id(household_id)
        names = []
        for r in self.store.list_residents():
            if r.household_id == hid and r.name and r.name not in names:
                names.append(r.name)
        return names

    # ------------------------------------------------------------------
    # verification codes
    # ------------------------------------------------------------------

    def issue_package_otp(self, package_id: str) -> IssuedCode:
        pkg = self._require_package(package_id)
        self._require_pending(pkg)
        accounts = self._accounts_for(pkg.household_id)
        if not accounts:
            raise Unprocessable(f"no chat account linked to household {pkg.household_id}")

        now = self.now()
        taken = self._active_codes(self.store.list_packages(), now, pkg.household_id)
        code = self._draw_code(taken, self.pickup.otp_length)
        expires_at = now + timedelta(minutes=self.pickup.otp_expiry_minutes)
        pkg.pickup_otp = pack_otp(code, expires_at)
        self.store.update_package(pkg)

        issued = IssuedCode(pkg.household_id, code, expires_at, [pkg])
        issued.notified = self._push_all(accounts, self._otp_message(pkg.household_id, code, 1))
        logger.info(f"issued code for {package_id}, notified {issued.notified}/{len(accounts)}")
        return issued

    def _assign_household_code(self, household_id: str) -> IssuedCode:
        packages = self.store.list_packages()
        pending = [p for p in packages if p.is_pending and p.household_id == household_id]
        if not pending:
            raise NotFound(f"no pending packages for household {household_id}")

        now = self.now()
        code = self._draw_code(self._active_codes(packages, now, household_id), self.pickup.household_otp_length)
        expires_at = now + timedelta(minutes=self.pickup.otp_expiry_minutes)
        stored = pack_otp(code, expires_at)
        for p in pending:
            p.pickup_otp = stored
            self.store.update_package(p)
        return IssuedCode(household_id, code, expires_at, pending)

    def issue_household_otp(self, household_id: str) -> IssuedCode:
        hid = self._household(household_id)
        accounts = self._accounts_for(hid)
        if not accounts:
            raise Unprocessable(f"no chat account linked to household {hid}")
        issued = self._assign_household_code(hid)
        issued.notified = self._push_all(accounts, self._otp_message(hid, issued.code, len(issued.packages)))
        logger.info(f"issued household code for {hid} ({len(issued.packages)} packages)")
        return issued

    def request_pickup_code(self, line_id: str) -> List[IssuedCode]:
        """Codes for every household the chat account is bound to that has mail waiting."""
        households = []
        for r in self.store.list_residents():
            if r.line_id == line_id and r.household_id not in households:
                households.append(r.household_id)
        if not households:
            raise NotFound("chat account is not bound to a household")

        issued = []
        for hid in households:
            try:
                issued.append(self._assign_household_code(hid))
            except NotFound:
                continue
        return issued

    def _match_code(self, stored: Optional[str], otp: str) -> Tuple[bool, bool]:
        """(matches, still valid) for a stored code cell."""
        parsed = unpack_otp(stored)
        if parsed is None:
            return False, False
        code, expires_at = parsed
        matches = hmac.compare_digest(code.encode(), otp.encode())
        return matches, expires_at >= self.now()

    def verify_and_pickup(self, package_id: str, otp: str, signature: Optional[str]) -> PackageRecord:
        pkg = self._require_package(package_id)
        self._require_pending(pkg)
        otp = (otp or "").strip()
        if not pkg.pickup_otp:
            raise InvalidInput("no verification code issued for this package")
        matches, valid = self._match_code(pkg.pickup_otp, otp)
        if not matches:
            raise InvalidInput("invalid verification code")
        if not valid:
            raise InvalidInput("verification code expired")
        signature = self._check_signature(signature)
        self._mark_picked_up(pkg, signature, self.now())
        logger.info(f"package {package_id} picked up by {pkg.household_id}")
        return pkg

    def verify_pickup_code(self, otp: str) -> PickupSession:
        otp = (otp or "").strip()
        if not otp:
            raise InvalidInput("missing verification code")

        packages = self.store.list_packages()
        expired = False
        household = None
        for p in packages:
            if not p.is_pending:
                continue
            matches, valid = self._match_code(p.pickup_otp, otp)
            if matches and valid:
                household = p.household_id
                break
            if matches:
                expired = True

        if household is None:
            if expired:
                raise InvalidInput("verification code expired")
            raise InvalidInput("invalid verification code")

        names = self.residents_of(household)
        pending = [p for p in packages if p.is_pending and p.household_id == household]
        return PickupSession(household_id=household, name=names[0] if names else "", packages=pending)

    def confirm_batch_pickup(self, package_ids: List[str], signature: Optional[str]) -> List[PackageRecord]:
        ids = []
        for pid in package_ids or []:
            if pid not in ids:
                ids.append(pid)
        if not ids:
            raise InvalidInput("no packages selected")
        signature = self._check_signature(signature)

        by_id: Dict[str, PackageRecord] = {p.package_id: p for p in self.store.list_packages()}
        for pid in ids:
            if pid not in by_id:
                raise NotFound(f"package not found: {pid}")
            self._require_pending(by_id[pid])

        now = self.now()
        done = [self._mark_picked_up(by_id[pid], signature, now) for pid in ids]
        logger.info(f"batch pickup of {len(done)} packages")
        return done

    def manual_pickup(self, package_id: str, signature: Optional[str] = None) -> PackageRecord:
        pkg = self._require_package(package_id)
        self._require_pending(pkg)
        signature = self._check_signature(signature, required=False)
        self._mark_picked_up(pkg, signature, self.now())
        logger.info(f"package {package_id} released manually")
        return pkg

    # ------------------------------------------------------------------
    # residents and admins
    # ------------------------------------------------------------------

    def list_users(self) -> List[ResidentRecord]:
        return self.store.list_residents()

    def delete_user(self, line_id: str) -> None:
        if not self.store.delete_resident(line_id):
            raise NotFound(f"user not found: {line_id}")
        logger.info(f"unbound chat account {line_id}")

    def register_resident(self, line_id: str, household_id: str, name: str = "") -> Tuple[ResidentRecord, bool]:
        hid = self._household(household_id)
        for r in self.store.list_residents():
            if r.line_id == line_id and r.household_id == hid:
                return r, False
        resident = ResidentRecord(line_id=line_id, household_id=hid, name=name or "", join_date=self.now())
        self.store.add_resident(resident)
        logger.info(f"bound chat account {line_id} to {hid}")
        return resident, True

    def login(self, username: str, password: str) -> str:
        username = (username or "").strip()
        if not username or not password:
            raise InvalidInput("missing username or password")
        for admin in self.store.list_admins():
            if admin.username == username and hmac.compare_digest(admin.password.encode(), password.encode()):
                logger.info(f"admin {username} logged in")
                return username
        logger.warning(f"failed login for {username}")
        raise Unauthorized("invalid username or password")

    def add_admin(self, username: str, password: str) -> None:
        username = (username or "").strip()
        if not username or not password:
            raise InvalidInput("missing username or password")
        self.store.add_admin(AdminCredential(username=username, password=password))

    # ------------------------------------------------------------------
    # reminders and reports
    # ------------------------------------------------------------------

    def notify_overdue(self) -> int:
        now = self.now()
        cutoff = now - timedelta(hours=self.pickup.overdue_hours)
        residents = self.store.list_residents()
        flagged = 0
        for p in self.store.list_packages():
            if not p.is_pending or p.is_overdue_notified or p.received_time > cutoff:
                continue
            text = (
                f"⏰ 領取提醒\n戶號 {p.household_id} 的包裹（條碼 {p.barcode}）"
                f"已到貨超過 {self.pickup.overdue_hours} 小時，請盡快至管理室領取。"
            )
            self._push_all(self._accounts_for(p.household_id, residents), text)
            p.is_overdue_notified = True
            self.store.update_package(p)
            flagged += 1
        if flagged:
            logger.info(f"flagged {flagged} overdue packages")
        return flagged

    def stats(self) -> dict:
        return reports.dashboard_stats(
            self.store.list_packages(), self.store.list_residents(), self.now(), self.timezone
        )

    def timeseries(self, period: str = "daily", start: str = None, end: str = None, limit: int = 365) -> dict:
        return reports.timeseries(self.store.list_packages(), period, self.timezone, start, end, limit)

    def export(self, fmt: str = "csv") -> Tuple[bytes, str, str]:
        return reports.export(self.store.list_packages(), fmt, self.timezone)
