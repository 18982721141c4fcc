"""
Package desk - test configuration and fixtures
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

# keep tests away from real services and the on-disk database
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['STORE_BACKEND'] = 'sql'
os.environ.pop('LINE_CHANNEL_ACCESS_TOKEN', None)
os.environ.pop('LINE_CHANNEL_SECRET', None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pkgdesk.app.api import app, get_desk
from pkgdesk.app.config import PickupSettings
from pkgdesk.app.db import init_db
from pkgdesk.app.messaging import Messenger
from pkgdesk.app.records import AdminCredential, ResidentRecord
from pkgdesk.app.service import PackageDesk
from pkgdesk.app.store import SqlStore

START = datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc)  # 10:00 in Taipei


class Clock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class RecordingMessenger(Messenger):
    """Captures everything the desk would send to residents."""

    def __init__(self, configured: bool = True, names: Optional[dict] = None):
        self.configured = configured
        self.names = names or {}
        self.pushes = []
        self.replies = []
        self.fail_for = set()

    def is_configured(self) -> bool:
        return self.configured

    def push_text(self, to: str, text: str) -> bool:
        if to in self.fail_for:
            return False
        self.pushes.append((to, text))
        return True

    def reply_text(self, reply_token: str, text: str) -> bool:
        self.replies.append((reply_token, text))
        return True

    def get_display_name(self, user_id: str) -> Optional[str]:
        return self.names.get(user_id)

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        return signature == 'valid'

    def texts_to(self, line_id: str):
        return [text for to, text in self.pushes if to == line_id]


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlStore:
    return SqlStore(session_factory)


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger(names={'U-wang': '王小明'})


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def desk(store, messenger, clock) -> PackageDesk:
    pickup = PickupSettings(otp_length=6, household_otp_length=4, otp_expiry_minutes=5,
                            overdue_hours=48, max_signature_chars=50000)
    return PackageDesk(store, messenger, pickup, timezone='Asia/Taipei', now=clock)


@pytest.fixture
def residents(store, clock):
    """Two accounts on 11A1, one on 12B2."""
    store.add_resident(ResidentRecord('U-wang', '11A1', '王小明', clock()))
    store.add_resident(ResidentRecord('U-chen', '11A1', '陳大文', clock()))
    store.add_resident(ResidentRecord('U-lin', '12B2', '林小美', clock()))
    store.add_admin(AdminCredential('admin', 's3cret'))


@pytest.fixture
def client(desk):
    app.dependency_overrides[get_desk] = lambda: desk
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def signature() -> str:
    return 'data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=='
