"""
Shared fixtures for the recovery API tests.

Every test gets its own SQLite file database, a fresh change notifier and a
fake payment gateway; storage calls are replaced so nothing leaves the process.
"""
import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlmodel import Session  # noqa: E402

from disc_recovery.core.errors import PaymentProviderError  # noqa: E402
from disc_recovery.db.db import create_db_and_tables, get_session, make_engine  # noqa: E402
from disc_recovery.main import app  # noqa: E402
from disc_recovery.models.disc import Disc  # noqa: E402
from disc_recovery.models.recovery_event import RecoveryEvent  # noqa: E402
from disc_recovery.models.user import User  # noqa: E402
from disc_recovery.services.change_notifier import ChangeNotifier, get_change_notifier  # noqa: E402
from disc_recovery.utils import s3_service  # noqa: E402
from disc_recovery.utils.payment_gateway import CheckoutSession, get_payment_gateway  # noqa: E402


class FakeGateway:
    """Records checkout requests instead of calling the payment provider."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        self.calls.append(kwargs)
        if self.fail:
            raise PaymentProviderError()
        session_id = f"cs_test_{len(self.calls)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def uploads(monkeypatch):
    """Storage keys uploaded and deleted during the test."""
    record = {"uploaded": [], "deleted": []}

    def fake_upload(buffer, ext, content_type, recovery_event_id):
        key = f"{s3_service.FOLDER}/{recovery_event_id}/test-{len(record['uploaded']) + 1}.{ext}"
        record["uploaded"].append(key)
        return key

    monkeypatch.setattr(s3_service, "upload_to_s3", fake_upload)
    monkeypatch.setattr(s3_service, "delete_s3_object", lambda key: record["deleted"].append(key))
    monkeypatch.setattr(
        s3_service,
        "generate_signed_url",
        lambda key, expires_in=3600: f"https://signed.test/{key}" if key else None,
    )
    return record


@pytest.fixture
def client(engine, notifier, gateway, uploads):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_change_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make_user(name="Pat", role="user", **fields) -> User:
        user = User(
            public_id=fields.pop("public_id", f"user-{uuid.uuid4().hex[:12]}"),
            name=name,
            email=f"{name.lower()}-{uuid.uuid4().hex[:6]}@example.com",
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def owner(make_user) -> User:
    return make_user("Olivia")


@pytest.fixture
def finder(make_user) -> User:
    return make_user("Finn", venmo_username="finn-finds")


@pytest.fixture
def outsider(make_user) -> User:
    return make_user("Oscar")


@pytest.fixture
def admin(make_user) -> User:
    return make_user("Ada", role="admin")


@pytest.fixture
def make_disc(db, owner):
    def _make_disc(reward_amount=0, **fields) -> Disc:
        disc = Disc(
            owner_id=fields.pop("owner_id", owner.id),
            name=fields.pop("name", "Destroyer"),
            manufacturer="Innova",
            mold="Destroyer",
            plastic="Star",
            color="Blue",
            photo_url="discs/destroyer.webp",
            reward_amount=reward_amount,
            **fields,
        )
        db.add(disc)
        db.commit()
        db.refresh(disc)
        return disc

    return _make_disc


@pytest.fixture
def make_recovery(db, owner, finder, make_disc):
    def _make_recovery(status="found", reward_amount=0, **fields) -> RecoveryEvent:
        disc = make_disc(reward_amount=reward_amount)
        event = RecoveryEvent(
            disc_id=disc.id,
            owner_id=owner.id,
            finder_id=finder.id,
            status=status,
            finder_message="Found it on hole 7",
            **fields,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _make_recovery


def token_for(user: User) -> str:
    return jwt.encode({"sub": user.public_id}, os.environ["JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def token():
    return token_for


@pytest.fixture
def auth():
    def _auth(user: User) -> dict:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _auth


@pytest.fixture
def future_iso():
    def _future_iso(days=1) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()

    return _future_iso


@pytest.fixture
def fresh(db):
    """Read a row as stored now, bypassing the session's identity map."""
    def _fresh(model, id):
        db.expire_all()
        return db.get(model, id)

    return _fresh
