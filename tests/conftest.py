import os

# Must be set before the app modules read their config at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp_webhook_secret"
os.environ["BCRYPT_ROUNDS"] = "4"

import hashlib
import hmac
from itertools import count
from types import SimpleNamespace

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base, get_db, User
from cache import get_redis
from astrology import get_openai_client
from payment_routes import get_razorpay
from main import app


class FakeCompletions:
    def __init__(self, answer="Jupiter favours you this year.", error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.answer)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, **kwargs):
        self.chat = SimpleNamespace(completions=FakeCompletions(**kwargs))

    @property
    def calls(self):
        return self.chat.completions.calls


class FakeOrders:
    def __init__(self):
        self.created = []
        self._ids = count(1)

    def create(self, data):
        self.created.append(data)
        return {
            "id": f"order_{next(self._ids)}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }


class FakeRazorpay:
    def __init__(self):
        self.order = FakeOrders()


def sign(order_id, payment_id, secret="rzp_test_secret"):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def ai():
    return FakeOpenAI()


@pytest.fixture
def rzp():
    return FakeRazorpay()


@pytest.fixture
def client(session_factory, fake_redis, ai, rzp):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_openai_client] = lambda: ai
    app.dependency_overrides[get_razorpay] = lambda: rzp
    with_client = TestClient(app)
    yield with_client
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    def _signup(email="asha@example.com", name="Asha", password="s3cret-pass"):
        resp = client.post("/api/auth/signup", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp
    return _signup


@pytest.fixture
def user(signup, db):
    signup()
    return db.query(User).filter(User.email == "asha@example.com").one()
