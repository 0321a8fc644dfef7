import dataclasses
import hashlib
import hmac
import json
import sqlite3
import time
from contextlib import closing
from types import SimpleNamespace

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from ticketdesk.config import Settings
from ticketdesk.infra.sql import make_database
from ticketdesk.model.db import create_schema
from ticketdesk.server import create_app

WEBHOOK_SECRET = "whsec_test_secret"
MAIL_HOST = "api.brevo.com"
TELEGRAM_HOST = "api.telegram.org"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tickets.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        stripe_secret_key="sk_test_dummy",
        stripe_price_id="price_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        database_url=f"sqlite:///{db_path}",
        public_url="http://testserver",
        ticket_limit=400,
        mail_api_key="mail-key",
        mail_from="tickets@example.com",
        telegram_bot_token="123:abc",
        telegram_chat_id="42",
    )


@pytest.fixture
async def database(db_path):
    db = make_database(f"sqlite:///{db_path}")
    async with db.engine.begin() as conn:
        await create_schema(conn)
    yield db
    await db.dispose()


# ----------------------------
# outbound HTTP (mail relay, telegram)
# ----------------------------
class Outbox:
    def __init__(self):
        self.requests = []
        self.failing_hosts = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.failing_hosts:
            return httpx.Response(503, json={"message": "unavailable"})
        return httpx.Response(200, json={"ok": True})

    def to(self, host):
        return [r for r in self.requests if r.url.host == host]


@pytest.fixture
def outbox():
    return Outbox()


# ----------------------------
# Stripe checkout sessions
# ----------------------------
class FakeStripe:
    def __init__(self):
        self.sessions = {}
        self.created = []
        self.fail_with = None

    async def create_async(self, **params):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(params)
        sid = f"cs_test_{len(self.created)}"
        self.sessions[sid] = {
            "payment_status": "unpaid",
            "email": params.get("customer_email"),
        }
        return SimpleNamespace(
            id=sid, url=f"https://checkout.stripe.test/pay/{sid}"
        )

    async def retrieve_async(self, sid, **kw):
        if sid not in self.sessions:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{sid}'", "id"
            )
        s = self.sessions[sid]
        return SimpleNamespace(
            id=sid,
            payment_status=s["payment_status"],
            customer_details=SimpleNamespace(email=s["email"]),
            customer_email=s["email"],
            metadata=None,
        )

    def paid(self, sid, email):
        self.sessions[sid] = {"payment_status": "paid", "email": email}

    def unpaid(self, sid, email):
        self.sessions[sid] = {"payment_status": "unpaid", "email": email}


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe.checkout.Session, "create_async",
                        fake.create_async, raising=False)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve_async",
                        fake.retrieve_async, raising=False)
    return fake


@pytest.fixture
def make_client(settings, outbox, fake_stripe):
    clients = []

    def _make(**overrides):
        s = dataclasses.replace(settings, **overrides)
        app = create_app(s, transport=httpx.MockTransport(outbox.handler))
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


# ----------------------------
# webhook payloads
# ----------------------------
def sign(payload: bytes, secret: str = WEBHOOK_SECRET, ts: int = None) -> str:
    ts = int(time.time()) if ts is None else ts
    signed = f"{ts}.".encode() + payload
    mac = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def checkout_event(session_id, email, *,
                   type="checkout.session.completed",
                   payment_status="paid") -> bytes:
    return json.dumps({
        "id": f"evt_{session_id}",
        "object": "event",
        "type": type,
        "data": {"object": {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "customer_details": {"email": email},
        }},
    }).encode()


def post_webhook(client, payload: bytes, signature: str = None):
    headers = {"content-type": "application/json"}
    sig = sign(payload) if signature is None else signature
    if sig:
        headers["stripe-signature"] = sig
    return client.post("/api/stripe/webhook", content=payload, headers=headers)


def ticket_rows(db_path, session_id=None):
    with closing(sqlite3.connect(db_path)) as conn:
        if session_id is None:
            return conn.execute(
                "SELECT session_id, ticket_code, email FROM tickets"
            ).fetchall()
        return conn.execute(
            "SELECT session_id, ticket_code, email FROM tickets "
            "WHERE session_id = ?", (session_id,)
        ).fetchall()
