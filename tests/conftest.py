import hashlib
import hmac
import itertools
import json
import os
import time
from types import SimpleNamespace

# Must be set before alumni_payments reads its settings
os.environ["DATABASE_URL"] = "sqlite:///./test_alumni_payments.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ.pop("STRIPE_SECRET_KEY", None)

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from alumni_payments.database import Base, get_db
from alumni_payments.main import app as fastapi_app
from alumni_payments.models import Tenant
from alumni_payments.routes import get_stripe_gateway
from alumni_payments.stripe_gateway import StripeGateway

WEBHOOK_SECRET = "whsec_test"

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


class FakeStripeGateway(StripeGateway):
    """Records checkout calls; webhook verification is the real SDK check."""

    def __init__(self, currency="jpy", webhook_secret=WEBHOOK_SECRET):
        super().__init__(api_key="sk_test_fake", webhook_secret=webhook_secret, currency=currency)
        self.calls = []
        self.error = None
        self._ids = itertools.count(1)

    def create_checkout_session(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        session_id = f"cs_test_{next(self._ids)}"
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    def retrieve_checkout_session(self, session_id):
        return SimpleNamespace(id=session_id, payment_status="paid")


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    t = Tenant(id="t1", name="Tokyo Alumni", subdomain="tokyo")
    db.add(t)
    db.commit()
    return t


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def client(gateway):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def make_token(tenant_roles=None, email="member@example.com", sub="user-1"):
    claims = {"sub": sub, "email": email, "tenant_roles": tenant_roles or {}}
    return jwt.encode(claims, os.environ["JWT_SECRET"], algorithm="HS256")


def auth_headers(tenant_roles=None, email="member@example.com"):
    return {"Authorization": f"Bearer {make_token(tenant_roles, email)}"}


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type, data_object, event_id="evt_test"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def event_payload(event_type, data_object):
    return json.dumps(stripe_event(event_type, data_object))
