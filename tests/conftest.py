"""Shared pytest fixtures for Showya."""

from __future__ import annotations

import dataclasses
import json
import sys
from datetime import timedelta
from pathlib import Path
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests
import resend

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from showya import config, crud, database
from showya.communities import create_community
from showya.events import create_event
from showya.models import KYC_ACTIVATED, Base, RazorpayAccount
from showya.notifications import EmailSender
from showya.razorpay import RazorpayClient
from showya.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.configure("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def override_settings(monkeypatch):
    """Swap the frozen settings object in every module that imported it."""

    def _apply(**overrides):
        updated = dataclasses.replace(config.settings, **overrides)
        for name, module in list(sys.modules.items()):
            if name.startswith("showya") and hasattr(module, "settings"):
                monkeypatch.setattr(module, "settings", updated)
        return updated

    return _apply


class RecordedRequest:
    """What the fake Razorpay API saw for one call."""

    def __init__(self, prepared: requests.PreparedRequest) -> None:
        parts = urlsplit(prepared.url)
        self.method = prepared.method
        self.path = parts.path
        self.params = dict(parse_qsl(parts.query))
        self.headers = prepared.headers
        body = prepared.body or b""
        self.content = body.encode("utf-8") if isinstance(body, str) else body


class FakeRazorpay(requests.adapters.BaseAdapter):
    """Route table standing in for the Razorpay REST API behind the SDK's session."""

    def __init__(self) -> None:
        super().__init__()
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[RecordedRequest] = []

    def on(self, method: str, path: str, body=None, *, status: int = 200) -> None:
        self.routes[(method, path)] = (status, body if body is not None else {})

    def fail(self, method: str, path: str, description: str, *, status: int = 400) -> None:
        code = "SERVER_ERROR" if status >= 500 else "BAD_REQUEST_ERROR"
        self.on(
            method,
            path,
            {"error": {"code": code, "description": description}},
            status=status,
        )

    def calls(self, method: str, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method and r.path == path]

    def json_of(self, method: str, path: str, index: int = -1) -> dict:
        return json.loads(self.calls(method, path)[index].content)

    def send(self, request, **kwargs) -> requests.Response:
        recorded = RecordedRequest(request)
        self.requests.append(recorded)
        route = self.routes.get((recorded.method, recorded.path))
        if route is None:
            status, body = 404, {
                "error": {
                    "code": "BAD_REQUEST_ERROR",
                    "description": f"no route for {recorded.path}",
                }
            }
        else:
            status, body = route
            if callable(body):
                body = body(recorded)
        return json_response(request, status, body)

    def close(self) -> None:
        pass


def json_response(request, status: int, body) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body).encode("utf-8")
    response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    response.url = request.url
    response.request = request
    return response


def sdk_session(adapter: requests.adapters.BaseAdapter) -> requests.Session:
    session = requests.Session()
    session.mount("https://", adapter)
    return session


@pytest.fixture()
def fake_razorpay():
    return FakeRazorpay()


@pytest.fixture()
def razorpay_client(fake_razorpay):
    client = RazorpayClient(
        "rzp_test_key",
        "rzp_test_secret",
        base_url="https://api.razorpay.test",
        session=sdk_session(fake_razorpay),
        retry_delay=0,
    )
    yield client
    client.close()


@pytest.fixture()
def sent_emails():
    return []


@pytest.fixture()
def mailer(sent_emails, monkeypatch):
    def fake_send(params):
        sent_emails.append(params)
        return {"id": f"email_{len(sent_emails)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return EmailSender("re_test_key")


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    def _make(name: str = "Test User", **profile):
        counter["n"] += 1
        user = crud.create_user(
            session,
            email=profile.pop("email", f"user{counter['n']}@example.com"),
            name=name,
            is_admin=profile.pop("is_admin", False),
        )
        for key, value in profile.items():
            setattr(user, key, value)
        session.commit()
        return user

    return _make


@pytest.fixture()
def make_community(session, make_user):
    def _make(owner=None, *, name: str = "Open Mic Collective", activated: bool = False):
        owner = owner or make_user("Community Owner")
        community = create_community(
            session, owner, name=name, categories=["music"], description="Weekly shows"
        )
        if activated:
            account = RazorpayAccount(
                community_id=community.id,
                razorpay_account_id=f"acc_{community.id[:8]}",
                kyc_status=KYC_ACTIVATED,
            )
            session.add(account)
            community.kyc_status = KYC_ACTIVATED
        session.commit()
        return community

    return _make


@pytest.fixture()
def make_event(session, make_community):
    def _make(community=None, *, paid: bool = False, starts_in=timedelta(days=3), **fields):
        community = community or make_community(activated=paid)
        data = {
            "title": "Friday Open Mic",
            "event_date": utcnow().replace(microsecond=0) + starts_in,
            "duration": 90,
            "ticket_type": "paid" if paid else "free",
            "performer_slots": 3,
            "audience_enabled": True,
            "audience_slots": 10,
        }
        if paid:
            data["performer_ticket_price"] = 500.0
            data["audience_ticket_price"] = 200.0
        data.update(fields)
        event = create_event(session, community.owner, community.id, data)
        session.commit()
        return event

    return _make
