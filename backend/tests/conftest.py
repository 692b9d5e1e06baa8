"""
BrokerDesk - shared test fixtures

MongoDB is replaced by mongomock-motor before any service module is
imported (services bind `config.db` at import time). Firebase and SendGrid
stay unconfigured; push / email are replaced by recording channels.
"""

import os
import sys
import asyncio
import uuid
from pathlib import Path

# Environment defaults - must be set before config is imported
os.environ["STAGING_BACKEND"] = "mongo"
os.environ["FIREBASE_SERVICE_ACCOUNT"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["ADMIN_ALERT_EMAIL"] = ""
os.environ.setdefault("JWT_SECRET", "test-secret-for-admin-tokens-0123456789")
os.environ.setdefault("DB_NAME", "brokerdesk_test")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from mongomock_motor import AsyncMongoMockClient

import config

config.client = AsyncMongoMockClient()
config.db = config.client[config.DB_NAME]

from config import hash_password, now_iso
from models.auth import ExternalPrincipal, InternalPrincipal
from models.staging import StagingType
from services.errors import NotificationFailed
from services.notification_gateway import NotificationChannel, NotificationGateway, NotificationHistory
from services.repositories import UserRepository, default_record_repositories, ensure_indexes
from services.staging_store import MongoStagingStore

COLLECTIONS = ["data_tmp", "loans", "insurances", "tickets", "users", "otp_codes", "event_log", "notifications"]

ADMIN_PASSWORD = "Admin123!"


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ==================== FAKES ====================

class RecordingChannel(NotificationChannel):
    name = "recording"

    def __init__(self):
        self.sent = []

    def accepts(self, notification):
        return True

    async def send(self, notification):
        self.sent.append(notification)


class FailingChannel(NotificationChannel):
    name = "failing"

    def accepts(self, notification):
        return True

    async def send(self, notification):
        raise NotificationFailed("channel down")


class ExplodingGateway(NotificationGateway):
    """Gateway that always throws, ignoring its own best-effort contract"""

    def __init__(self):
        super().__init__([])
        self.calls = 0

    async def publish(self, notification):
        self.calls += 1
        raise RuntimeError("push backend unreachable")


# ==================== FACTORIES ====================

def make_user(firebase_uid=None, role="user", email=None, password=None, user_id=None):
    user = {
        "id": user_id or str(uuid.uuid4()),
        "firebase_uid": firebase_uid,
        "email": email or f"{uuid.uuid4().hex[:8]}@example.com",
        "name": "Test User",
        "role": role,
        "created_at": now_iso(),
    }
    if password:
        user["password"] = hash_password(password)
    _db_op(config.db.users.insert_one(dict(user)))
    user.pop("password", None)
    return user


def add_staging(store, type=StagingType.LOAN, user_id="u1", form_data=None, status="pending"):
    return _db_op(store.add(type, user_id, form_data if form_data is not None else loan_form(), status))


def loan_form(**overrides):
    form = {
        "fullName": "A",
        "email": "a@x.com",
        "phone": "1",
        "loanType": "Personal",
        "loanAmount": 50000,
    }
    form.update(overrides)
    return form


def insurance_form(**overrides):
    form = {
        "fullName": "Priya Nair",
        "email": "priya@example.com",
        "phone": "9876543210",
        "insuranceType": "Health Insurance",
        "age": 34,
    }
    form.update(overrides)
    return form


def ticket_form(**overrides):
    form = {
        "subject": "EMI not reflecting",
        "description": "Paid on the 5th, still shows due",
        "email": "a@x.com",
    }
    form.update(overrides)
    return form


# ==================== FIXTURES ====================

@pytest.fixture(autouse=True)
def clean_db():
    for name in COLLECTIONS:
        _db_op(config.db[name].delete_many({}))
    _db_op(ensure_indexes(config.db))
    yield


@pytest.fixture
def store():
    return MongoStagingStore(config.db)


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def gateway(channel):
    return NotificationGateway([channel])


@pytest.fixture
def history():
    return NotificationHistory(config.db)


@pytest.fixture
def records():
    return default_record_repositories(config.db)


@pytest.fixture
def users():
    return UserRepository(config.db)


@pytest.fixture
def workflow(store, records, users, gateway):
    from services.approval_workflow import ApprovalWorkflow
    return ApprovalWorkflow(store, records, users, gateway, field_defaults={"consent": True})


@pytest.fixture
def external_admin():
    """Firebase-authenticated reviewer: no users.id of its own"""
    return ExternalPrincipal(uid="fb-reviewer", email="reviewer@example.com", role="admin")


@pytest.fixture
def internal_admin():
    return InternalPrincipal(id="admin-internal-1", email="ops@example.com")


@pytest.fixture
def api(store, gateway):
    from fastapi.testclient import TestClient
    from server import app
    from services.notification_gateway import get_notification_gateway
    from services.staging_store import get_staging_store

    app.dependency_overrides[get_staging_store] = lambda: store
    app.dependency_overrides[get_notification_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    from services.security import create_admin_token
    admin = make_user(role="admin", email="ops@example.com", password=ADMIN_PASSWORD)
    return {"Authorization": f"Bearer {create_admin_token(admin)}"}, admin
