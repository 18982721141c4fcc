"""
Persistence for packages, resident bindings and admin credentials.

PackageStore is the interface the desk service talks to. SqlStore keeps
the same records in a local SQLAlchemy database and is used whenever the
Google Sheets backend (see sheets.py) is not configured.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from .db import SessionLocal
from .models import Admin, Package, Resident
from .records import AdminCredential, PackageRecord, PackageStatus, ResidentRecord
from .utils import ensure_utc


class PackageStore(ABC):
    """Single-row reads and writes; nothing here spans more than one row."""

    @abstractmethod
    def list_packages(self) -> List[PackageRecord]:
        ...

    def get_package(self, package_id: str) -> Optional[PackageRecord]:
        for pkg in self.list_packages():
            if pkg.package_id == package_id:
                return pkg
        return None

    @abstractmethod
    def add_package(self, pkg: PackageRecord) -> None:
        ...

    @abstractmethod
    def update_package(self, pkg: PackageRecord) -> bool:
        """Overwrite the stored row for pkg.package_id. False when it is gone."""
        ...

    @abstractmethod
    def delete_package(self, package_id: str) -> bool:
        ...

    @abstractmethod
    def list_residents(self) -> List[ResidentRecord]:
        ...

    @abstractmethod
    def add_resident(self, resident: ResidentRecord) -> None:
        ...

    @abstractmethod
    def delete_resident(self, line_id: str) -> bool:
        """Remove every binding of a chat account."""
        ...

    @abstractmethod
    def list_admins(self) -> List[AdminCredential]:
        ...

    @abstractmethod
    def add_admin(self, admin: AdminCredential) -> None:
        ...


def _package_from_row(p: Package) -> PackageRecord:
    return PackageRecord(
        package_id=p.package_id,
        barcode=p.barcode,
        household_id=p.household_id,
        recipient_name=p.recipient_name,
        status=PackageStatus.parse(p.status),
        received_time=ensure_utc(p.received_time),
        pickup_time=ensure_utc(p.pickup_time) if p.pickup_time else None,
        pickup_otp=p.pickup_otp,
        signature=p.signature,
        is_overdue_notified=bool(p.is_overdue_notified),
    )


def _copy_package(pkg: PackageRecord, row: Package) -> None:
    row.barcode = pkg.barcode
    row.household_id = pkg.household_id
    row.recipient_name = pkg.recipient_name
    row.status = pkg.status.value
    row.received_time = pkg.received_time
    row.pickup_time = pkg.pickup_time
    row.pickup_otp = pkg.pickup_otp
    row.signature = pkg.signature
    row.is_overdue_notified = pkg.is_overdue_notified


class SqlStore(PackageStore):
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.SessionLocal = session_factory or SessionLocal

    def list_packages(self) -> List[PackageRecord]:
        db = self.SessionLocal()
        try:
            rows = db.query(Package).order_by(Package.received_time.desc()).all()
            return [_package_from_row(p) for p in rows]
        finally:
            db.close()

    def get_package(self, package_id: str) -> Optional[PackageRecord]:
        db = self.SessionLocal()
        try:
            p = db.get(Package, package_id)
            return _package_from_row(p) if p else None
        finally:
            db.close()

    def add_package(self, pkg: PackageRecord) -> None:
        db = self.SessionLocal()
        try:
            row = Package(package_id=pkg.package_id)
            _copy_package(pkg, row)
            db.add(row)
            db.commit()
        finally:
            db.close()

    def update_package(self, pkg: PackageRecord) -> bool:
        db = self.SessionLocal()
        try:
            row = db.get(Package, pkg.package_id)
            if row is None:
                return False
            _copy_package(pkg, row)
            db.commit()
            return True
        finally:
            db.close()

    def delete_package(self, package_id: str) -> bool:
        db = self.SessionLocal()
        try:
            row = db.get(Package, package_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True
        finally:
            db.close()

    def list_residents(self) -> List[ResidentRecord]:
        db = self.SessionLocal()
        try:
            rows = db.query(Resident).order_by(Resident.id).all()
            return [
                ResidentRecord(
                    line_id=r.line_id,
                    household_id=r.household_id,
                    name=r.name or "",
                    join_date=ensure_utc(r.join_date) if r.join_date else None,
                )
                for r in rows
            ]
        finally:
            db.close()

    def add_resident(self, resident: ResidentRecord) -> None:
        db = self.SessionLocal()
        try:
            db.add(Resident(line_id=resident.line_id, household_id=resident.household_id,
                            name=resident.name, join_date=resident.join_date))
            db.commit()
        finally:
            db.close()

    def delete_resident(self, line_id: str) -> bool:
        db = self.SessionLocal()
        try:
            deleted = db.query(Resident).filter(Resident.line_id == line_id).delete()
            db.commit()
            return deleted > 0
        finally:
            db.close()

    def list_admins(self) -> List[AdminCredential]:
        db = self.SessionLocal()
        try:
            return [AdminCredential(username=a.username, password=a.password)
                    for a in db.query(Admin).all()]
        finally:
            db.close()

    def add_admin(self, admin: AdminCredential) -> None:
        db = self.SessionLocal()
        try:
            row = db.get(Admin, admin.username)
            if row is None:
                db.add(Admin(username=admin.username, password=admin.password))
            else:
                row.password = admin.password
            db.commit()
        finally:
            db.close()
