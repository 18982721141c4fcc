# pkgdesk/app/reports.py
import io
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pandas as pd

from .records import PackageRecord, PackageStatus, ResidentRecord

PERIOD_FORMATS = {
    "daily": "%Y%m%d",
    "monthly": "%Y%m",
    "yearly": "%Y",
}

EXPORT_COLUMNS = [
    "packageId",
    "barcode",
    "householdId",
    "recipientName",
    "status",
    "receivedTime",
    "pickupTime",
    "hasSignature",
    "isOverdueNotified",
]


def _local(dt: datetime, tz: str) -> datetime:
    return dt.astimezone(ZoneInfo(tz))


def period_key(dt: datetime, period: str, tz: str) -> str:
    return _local(dt, tz).strftime(PERIOD_FORMATS[period])


def dashboard_stats(packages: List[PackageRecord], residents: List[ResidentRecord],
                    now: datetime, tz: str, days: int = 7) -> dict:
    local_now = _local(now, tz)
    today = local_now.date()

    pending = [p for p in packages if p.status == PackageStatus.PENDING]
    received_today = sum(1 for p in packages if _local(p.received_time, tz).date() == today)
    overdue = sum(1 for p in pending if p.is_overdue_notified)

    last_days = {}
    for i in range(days - 1, -1, -1):
        d = today - timedelta(days=i)
        last_days[d] = 0
    for p in packages:
        d = _local(p.received_time, tz).date()
        if d in last_days:
            last_days[d] += 1

    return {
        "pending": len(pending),
        "today": received_today,
        "overdue": overdue,
        "residents": len({r.line_id for r in residents}),
        "daily": [{"date": d.strftime("%m/%d"), "count": c} for d, c in last_days.items()],
    }


def timeseries(packages: Iterable[PackageRecord], period: str, tz: str,
               start: Optional[str] = None, end: Optional[str] = None, limit: int = 365) -> dict:
    agg: dict[str, dict[str, int]] = {}
    for p in packages:
        key = period_key(p.received_time, period, tz)
        if start and key < start:
            continue
        if end and key > end:
            continue
        if key not in agg:
            agg[key] = {"checkin": 0, "checkout": 0}
        agg[key]["checkin"] += 1
        if p.status == PackageStatus.PICKED_UP:
            agg[key]["checkout"] += 1
    keys_sorted = sorted(agg.keys())
    if len(keys_sorted) > limit:
        keys_sorted = keys_sorted[-limit:]
    return {
        "labels": keys_sorted,
        "checkin": [agg[k]["checkin"] for k in keys_sorted],
        "checkout": [agg[k]["checkout"] for k in keys_sorted],
    }


def _export_row(p: PackageRecord, tz: str) -> dict:
    return {
        "packageId": p.package_id,
        "barcode": p.barcode,
        "householdId": p.household_id,
        "recipientName": p.recipient_name or "",
        "status": p.status.value,
        "receivedTime": _local(p.received_time, tz).strftime("%Y-%m-%d %H:%M"),
        "pickupTime": _local(p.pickup_time, tz).strftime("%Y-%m-%d %H:%M") if p.pickup_time else "",
        # signature images stay out of the sheet export
        "hasSignature": bool(p.signature),
        "isOverdueNotified": p.is_overdue_notified,
    }


def export(packages: Iterable[PackageRecord], fmt: str, tz: str) -> Tuple[bytes, str, str]:
    """Render all packages as (content, media type, file extension)."""
    rows = [_export_row(p, tz) for p in sorted(packages, key=lambda p: p.received_time)]
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)

    if fmt == "xlsx":
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="packages")
        return (buffer.getvalue(),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx")

    # BOM so spreadsheet apps open the CJK names correctly
    return df.to_csv(index=False).encode("utf-8-sig"), "text/csv", "csv"
