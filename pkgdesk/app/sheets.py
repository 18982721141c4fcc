"""
Google Sheets backend.

Each tab holds one record type below a single header row. Lookups read the
whole tab; writes touch exactly one row (update in place, append, or delete).
"""

import logging
from typing import Callable, List, Optional, Tuple, TypeVar

from google.oauth2 import service_account
from googleapiclient.discovery import build

from .config import SheetSettings
from .records import (
    ADMIN_COLUMNS,
    PACKAGE_COLUMNS,
    RESIDENT_COLUMNS,
    AdminCredential,
    PackageRecord,
    ResidentRecord,
)
from .store import PackageStore

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

# first data row; row 1 is the header
FIRST_ROW = 2

T = TypeVar("T")


def _column_letter(n: int) -> str:
    # 1 -> A, 10 -> J
    letters = ""
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def build_sheets_service(settings: SheetSettings):
    info = {
        "type": "service_account",
        "client_email": settings.service_account_email,
        "private_key": settings.private_key,
        "token_uri": TOKEN_URI,
    }
    credentials = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class SheetsStore(PackageStore):
    def __init__(self, settings: SheetSettings, service=None):
        self.settings = settings
        self.spreadsheet_id = settings.spreadsheet_id
        self.service = service if service is not None else build_sheets_service(settings)
        self._sheet_ids = {}

    # --- low level ---------------------------------------------------------

    def _range(self, tab: str, width: int, row: Optional[int] = None) -> str:
        last = _column_letter(width)
        if row is None:
            return f"{tab}!A{FIRST_ROW}:{last}"
        return f"{tab}!A{row}:{last}{row}"

    def _read(self, tab: str, width: int) -> List[List]:
        result = self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(tab, width),
        ).execute()
        return result.get("values", [])

    def _records(self, tab: str, width: int, parse: Callable[[List], Optional[T]]) -> List[Tuple[int, T]]:
        """Parsed records paired with their sheet row number."""
        out = []
        for i, row in enumerate(self._read(tab, width)):
            rec = parse(row)
            if rec is not None:
                out.append((FIRST_ROW + i, rec))
        return out

    def _append(self, tab: str, width: int, values: List[str]) -> None:
        self.service.spreadsheets().values().append(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(tab, width),
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [values]},
        ).execute()

    def _write_row(self, tab: str, width: int, row: int, values: List[str]) -> None:
        self.service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(tab, width, row),
            valueInputOption="RAW",
            body={"values": [values]},
        ).execute()

    def _sheet_id(self, tab: str) -> int:
        if tab not in self._sheet_ids:
            meta = self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields="sheets.properties(sheetId,title)",
            ).execute()
            for sheet in meta.get("sheets", []):
                props = sheet.get("properties", {})
                self._sheet_ids[props.get("title")] = props.get("sheetId")
        if tab not in self._sheet_ids:
            raise KeyError(f"tab {tab!r} not found in spreadsheet")
        return self._sheet_ids[tab]

    def _delete_rows(self, tab: str, rows: List[int]) -> None:
        sheet_id = self._sheet_id(tab)
        logger.info(f"deleting rows {rows} from {tab}")
        # bottom-up so earlier deletions don't shift later indexes
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": row - 1,
                        "endIndex": row,
                    }
                }
            }
            for row in sorted(rows, reverse=True)
        ]
        self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": requests},
        ).execute()

    # --- packages ----------------------------------------------------------

    def _package_rows(self) -> List[Tuple[int, PackageRecord]]:
        return self._records(self.settings.packages_tab, len(PACKAGE_COLUMNS), PackageRecord.from_row)

    def list_packages(self) -> List[PackageRecord]:
        packages = [pkg for _, pkg in self._package_rows()]
        packages.sort(key=lambda p: p.received_time, reverse=True)
        return packages

    def _find_package_row(self, package_id: str) -> Optional[int]:
        for row, pkg in self._package_rows():
            if pkg.package_id == package_id:
                return row
        return None

    def add_package(self, pkg: PackageRecord) -> None:
        self._append(self.settings.packages_tab, len(PACKAGE_COLUMNS), pkg.to_row())

    def update_package(self, pkg: PackageRecord) -> bool:
        row = self._find_package_row(pkg.package_id)
        if row is None:
            return False
        self._write_row(self.settings.packages_tab, len(PACKAGE_COLUMNS), row, pkg.to_row())
        return True

    def delete_package(self, package_id: str) -> bool:
        row = self._find_package_row(package_id)
        if row is None:
            return False
        self._delete_rows(self.settings.packages_tab, [row])
        return True

    # --- residents ---------------------------------------------------------

    def list_residents(self) -> List[ResidentRecord]:
        return [r for _, r in self._records(self.settings.users_tab, len(RESIDENT_COLUMNS),
                                            ResidentRecord.from_row)]

    def add_resident(self, resident: ResidentRecord) -> None:
        self._append(self.settings.users_tab, len(RESIDENT_COLUMNS), resident.to_row())

    def delete_resident(self, line_id: str) -> bool:
        rows = [row for row, r in self._records(self.settings.users_tab, len(RESIDENT_COLUMNS),
                                                ResidentRecord.from_row)
                if r.line_id == line_id]
        if not rows:
            return False
        self._delete_rows(self.settings.users_tab, rows)
        return True

    # --- admins ------------------------------------------------------------

    def list_admins(self) -> List[AdminCredential]:
        return [a for _, a in self._records(self.settings.admins_tab, len(ADMIN_COLUMNS),
                                            AdminCredential.from_row)]

    def add_admin(self, admin: AdminCredential) -> None:
        for row, existing in self._records(self.settings.admins_tab, len(ADMIN_COLUMNS),
                                           AdminCredential.from_row):
            if existing.username == admin.username:
                self._write_row(self.settings.admins_tab, len(ADMIN_COLUMNS), row, admin.to_row())
                return
        self._append(self.settings.admins_tab, len(ADMIN_COLUMNS), admin.to_row())
