"""
Shared fixtures.

Settings are read once at import time, so the environment is prepared here,
before any interlink module is imported: no Redis (pub/sub and Celery fall
back to polling / eager mode), no rate limiting, no scheduler pacing.
"""
import json
import os
import tempfile
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

_TMP = tempfile.mkdtemp(prefix="interlink-tests-")
PASSWORD = "correct horse battery"
os.environ.update({
    "REDIS_URL": "",
    "RATE_LIMIT_ENABLED": "false",
    "DATABASE_URL": f"sqlite:///{_TMP}/bootstrap.db",
    "SNAPSHOT_DIR": os.path.join(_TMP, "snapshots"),
    "SNAPSHOT_PUBLIC_BASE_URL": "http://files.test/snapshots",
    "SCHEDULER_PACING_SECONDS": "0",
    "INTERNAL_API_SECRET": "",
    "WORKFLOW_WEBHOOK_URL": "http://workflow.test/webhook/links",
    "WORKFLOW_SHARED_SECRET": "edge-secret",
    "STRIPE_API_KEY": "sk_test_123",
    "STRIPE_WEBHOOK_SECRET": "whsec_test",
    "STRIPE_API_BASE": "http://billing.test",
    "JWT_SECRET": "test-jwt-secret",
    "DISPATCH_ON_CREATE": "false",
    "BCRYPT_ROUNDS": "4",
})

import httpx  # noqa: E402
import pytest  # noqa: E402

from interlink.core.config import settings  # noqa: E402
from interlink.db import base  # noqa: E402
from interlink.db.base import bind_engine, init_db, utcnow  # noqa: E402
from interlink.db.models import Job, JobStatus, Plan, Project, User  # noqa: E402
from interlink.services.auth import hash_password  # noqa: E402
from interlink.services.billing import BillingClient  # noqa: E402
from interlink.services.dispatcher import WorkflowClient  # noqa: E402
from interlink.services.realtime import reset_redis_client  # noqa: E402
from interlink.services.storage import LocalStorageProvider  # noqa: E402


# ─── Database ────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def fresh_database(tmp_path, monkeypatch):
    """Every test gets its own SQLite file and snapshot directory."""
    monkeypatch.setattr(settings, "SNAPSHOT_DIR", str(tmp_path / "snapshots"))
    reset_redis_client()
    engine = bind_engine(f"sqlite:///{tmp_path / 'interlink.db'}")
    init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def db():
    session = base.SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ─── Factories ───────────────────────────────────────────────────────────────

@pytest.fixture
def make_user(db) -> Callable[..., User]:
    def _make(email: str = "owner@example.com", stripe_customer_id: Optional[str] = None) -> User:
        user = User(email=email, stripe_customer_id=stripe_customer_id, password_hash=hash_password(PASSWORD))
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def make_project(db) -> Callable[..., Project]:
    def _make(owner: User, title: str = "Acme blog") -> Project:
        project = Project(user_id=owner.id, title=title, site_url="https://acme.example")
        db.add(project)
        db.commit()
        db.refresh(project)
        return project
    return _make


@pytest.fixture
def project(make_project, user) -> Project:
    return make_project(user)


@pytest.fixture
def make_job(db, project) -> Callable[..., Job]:
    """Insert a job directly. `age` backdates created_at/updated_at for ordering tests."""
    def _make(
        status: JobStatus = JobStatus.QUEUED,
        title: str = "How to brew coffee",
        age: timedelta = timedelta(0),
        target: Optional[Project] = None,
        dispatch_attempts: int = 0,
        error_message: Optional[str] = None,
    ) -> Job:
        stamp = utcnow() - age
        job = Job(
            project_id=(target or project).id,
            title=title,
            article_doc="https://docs.google.com/document/d/abc123/edit",
            status=status.value,
            anchors_added=0,
            anchors_log=[],
            dispatch_attempts=dispatch_attempts,
            error_message=error_message,
            created_at=stamp,
            updated_at=stamp,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        return job
    return _make


@pytest.fixture
def make_plan(db) -> Callable[..., Plan]:
    def _make(name: str, price_id: str, limit: int) -> Plan:
        plan = Plan(name=name, stripe_price_id=price_id, monthly_jobs_limit=limit)
        db.add(plan)
        db.commit()
        db.refresh(plan)
        return plan
    return _make


# ─── External services ───────────────────────────────────────────────────────

class WorkflowRecorder:
    """httpx.MockTransport handler standing in for the workflow engine."""

    def __init__(self, status_code: int = 200, fail_for: Optional[set] = None, raise_error: bool = False):
        self.status_code = status_code
        self.fail_for = fail_for or set()
        self.raise_error = raise_error
        self.requests: List[httpx.Request] = []

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error:
            raise httpx.ConnectError("connection refused", request=request)
        job_id = json.loads(request.content).get("job_id")
        if job_id in self.fail_for:
            return httpx.Response(500, text="workflow exploded")
        return httpx.Response(self.status_code, json={"received": True})

    def client(self) -> WorkflowClient:
        return WorkflowClient(transport=httpx.MockTransport(self))


@pytest.fixture
def workflow() -> WorkflowRecorder:
    return WorkflowRecorder()


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowRecorder]:
    return WorkflowRecorder


class FakeBillingProvider:
    """Serves subscription and customer lookups for the billing client."""

    def __init__(self):
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.fail = False
        self.calls: List[str] = []

    def add_subscription(self, sub_id: str, customer: str, price: str, start: int, end: int) -> None:
        self.subscriptions[sub_id] = {
            "id": sub_id,
            "customer": customer,
            "current_period_start": start,
            "current_period_end": end,
            "items": {"data": [{"price": {"id": price}}]},
        }

    def add_customer(self, customer_id: str, email: Optional[str]) -> None:
        self.customers[customer_id] = {"id": customer_id, "email": email}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        _, _, kind, object_id = request.url.path.split("/", 3)
        store = self.subscriptions if kind == "subscriptions" else self.customers
        if object_id not in store:
            return httpx.Response(404, json={"error": {"message": "No such object"}})
        return httpx.Response(200, json=store[object_id])

    def client(self) -> BillingClient:
        return BillingClient(transport=httpx.MockTransport(self))


@pytest.fixture
def billing_provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def storage(tmp_path) -> LocalStorageProvider:
    return LocalStorageProvider(base_dir=str(tmp_path / "blobs"), public_base_url="http://files.test")


# ─── HTTP client ─────────────────────────────────────────────────────────────

@pytest.fixture
def client(workflow, billing_provider, monkeypatch):
    """TestClient with the workflow engine and billing provider replaced by mocks."""
    from fastapi.testclient import TestClient

    from interlink.main import app
    from interlink.services import dispatcher, metering, scheduler

    monkeypatch.setattr(dispatcher, "WorkflowClient", lambda *a, **kw: workflow.client())
    monkeypatch.setattr(scheduler, "WorkflowClient", lambda *a, **kw: workflow.client())
    monkeypatch.setattr(metering, "BillingClient", lambda *a, **kw: billing_provider.client())

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sign_in(client) -> Callable[[str], Dict[str, str]]:
    """Sign in through the API and return Authorization headers."""
    def _sign_in(email: str = "owner@example.com", password: str = PASSWORD) -> Dict[str, str]:
        response = client.post("/api/auth/sign-in", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return _sign_in
