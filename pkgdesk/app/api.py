# pkgdesk/app/api.py
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from googleapiclient.errors import HttpError
from pydantic import BaseModel, ConfigDict, Field

from . import bot
from .config import Settings, get_settings
from .errors import DeskError
from .messaging import build_messenger
from .service import PackageDesk
from .utils import format_time

logger = logging.getLogger(__name__)

desk: Optional[PackageDesk] = None


def build_desk(settings: Settings) -> PackageDesk:
    if settings.use_sheets():
        from .sheets import SheetsStore
        store = SheetsStore(settings.sheets)
        logger.info(f"using Google Sheets {settings.sheets.spreadsheet_id}")
    else:
        from .db import init_db
        from .store import SqlStore
        init_db()
        store = SqlStore()
        logger.info(f"using local store {settings.database_url}")
    return PackageDesk(store, build_messenger(settings.line), settings.pickup, settings.zone_name())


@asynccontextmanager
async def lifespan(app: FastAPI):
    global desk
    settings = get_settings()
    for issue in settings.validate():
        logger.warning(issue)
    desk = build_desk(settings)
    yield


app = FastAPI(title="Package Desk API", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def get_desk() -> PackageDesk:
    if desk is None:
        raise DeskError("service not ready", 503)
    return desk


@app.exception_handler(DeskError)
async def desk_error_handler(request: Request, exc: DeskError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        # drop the leading "body"/"query" part of the location
        where = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{where}: {err.get('msg')}" if where else str(err.get("msg")))
    return JSONResponse(status_code=422, content={"error": "; ".join(problems) or "invalid request"})


@app.exception_handler(HttpError)
async def sheets_error_handler(request: Request, exc: HttpError):
    logger.error(f"Google Sheets error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"error": "spreadsheet unavailable"})


# Pydantic input models
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginIn(_Body):
    username: str
    password: str


class PackageIn(_Body):
    household_id: str = Field(alias="householdId")
    barcode: str
    recipient_name: Optional[str] = Field(default=None, alias="recipientName")


class PickupIn(_Body):
    otp: str
    signature: Optional[str] = Field(default=None, alias="signatureDataURL")


class ManualPickupIn(_Body):
    signature: Optional[str] = Field(default=None, alias="signatureDataURL")


class VerifyIn(_Body):
    otp: str


class BatchPickupIn(_Body):
    package_ids: List[str] = Field(alias="packageIds")
    signature: Optional[str] = Field(default=None, alias="signatureDataURL")


@app.get("/health")
def health():
    return PlainTextResponse("OK")


@app.post("/api/login")
def login(body: LoginIn, desk: PackageDesk = Depends(get_desk)):
    username = desk.login(body.username, body.password)
    return {"success": True, "username": username}


# ---------------------------
# Packages
# ---------------------------
@app.get("/api/packages")
def list_packages(desk: PackageDesk = Depends(get_desk)):
    return [p.to_dict() for p in desk.list_packages()]


@app.post("/api/packages")
def create_package(body: PackageIn, desk: PackageDesk = Depends(get_desk)):
    pkg = desk.check_in(body.household_id, body.barcode, body.recipient_name)
    return pkg.to_dict()


@app.delete("/api/packages/{package_id}")
def delete_package(package_id: str, desk: PackageDesk = Depends(get_desk)):
    desk.delete_package(package_id)
    return {"ok": True}


@app.post("/api/packages/{package_id}/otp")
def issue_package_otp(package_id: str, desk: PackageDesk = Depends(get_desk)):
    issued = desk.issue_package_otp(package_id)
    return {"ok": True, "expiresAt": format_time(issued.expires_at), "notified": issued.notified}


@app.post("/api/packages/{package_id}/pickup")
def pickup_package(package_id: str, body: PickupIn, desk: PackageDesk = Depends(get_desk)):
    pkg = desk.verify_and_pickup(package_id, body.otp, body.signature)
    return pkg.to_dict()


@app.post("/api/packages/{package_id}/manual-pickup")
def manual_pickup(package_id: str, body: Optional[ManualPickupIn] = None,
                  desk: PackageDesk = Depends(get_desk)):
    pkg = desk.manual_pickup(package_id, body.signature if body else None)
    return pkg.to_dict()


# ---------------------------
# Households and batch pickup
# ---------------------------
@app.get("/api/households/{household_id}/residents")
def household_residents(household_id: str, desk: PackageDesk = Depends(get_desk)):
    return desk.residents_of(household_id)


@app.post("/api/households/{household_id}/otp")
def issue_household_otp(household_id: str, desk: PackageDesk = Depends(get_desk)):
    issued = desk.issue_household_otp(household_id)
    return {
        "ok": True,
        "householdId": issued.household_id,
        "packageCount": len(issued.packages),
        "expiresAt": format_time(issued.expires_at),
        "notified": issued.notified,
    }


@app.post("/api/pickup/verify")
def verify_pickup(body: VerifyIn, desk: PackageDesk = Depends(get_desk)):
    return desk.verify_pickup_code(body.otp).to_dict()


@app.post("/api/pickup/confirm")
def confirm_pickup(body: BatchPickupIn, desk: PackageDesk = Depends(get_desk)):
    done = desk.confirm_batch_pickup(body.package_ids, body.signature)
    return {"ok": True, "count": len(done), "packageIds": [p.package_id for p in done]}


# ---------------------------
# Linked chat accounts
# ---------------------------
@app.get("/api/users")
def list_users(desk: PackageDesk = Depends(get_desk)):
    return [u.to_dict() for u in desk.list_users()]


@app.delete("/api/users/{line_id}")
def delete_user(line_id: str, desk: PackageDesk = Depends(get_desk)):
    desk.delete_user(line_id)
    return {"ok": True}


@app.post("/api/maintenance/overdue")
def notify_overdue(desk: PackageDesk = Depends(get_desk)):
    return {"notified": desk.notify_overdue()}


# ---------------------------
# Reports
# ---------------------------
@app.get("/api/reports/stats")
def report_stats(desk: PackageDesk = Depends(get_desk)):
    return desk.stats()


@app.get("/api/reports/timeseries")
def report_timeseries(period: str = Query("daily", pattern="^(daily|monthly|yearly)$"),
                      start: Optional[str] = None, end: Optional[str] = None, limit: int = 365,
                      desk: PackageDesk = Depends(get_desk)):
    return desk.timeseries(period, start, end, limit)


@app.get("/api/reports/export")
def report_export(fmt: str = Query("csv", pattern="^(csv|xlsx)$"), desk: PackageDesk = Depends(get_desk)):
    content, media_type, ext = desk.export(fmt)
    return Response(content=content, media_type=media_type,
                    headers={"Content-Disposition": f'attachment; filename="packages.{ext}"'})


# ---------------------------
# LINE webhook
# ---------------------------
@app.post("/callback")
async def line_callback(request: Request, desk: PackageDesk = Depends(get_desk)):
    if not desk.messenger.is_configured():
        return Response(status_code=500)

    body = await request.body()
    if not desk.messenger.verify_signature(body, request.headers.get("x-line-signature")):
        logger.warning("LINE webhook with invalid signature")
        return Response(status_code=401)

    try:
        events = json.loads(body.decode("utf-8")).get("events", [])
        for event in events:
            await run_in_threadpool(bot.handle_event, desk, event)
    except Exception:
        logger.exception("LINE webhook error")
        return Response(status_code=500)
    return {}
