import json
import os
import uuid
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from servixing.main import app as fastapi_app
from servixing.core.config import settings
from servixing.core.security import create_access_token, hash_password
from servixing.db.session import Base, get_db
from servixing.models.audit_log import AuditLog
from servixing.models.enums import PaymentStatus, Provider, Role
from servixing.models.payment import Payment
from servixing.models.user import User
from servixing.models.work_order import WorkOrder
from servixing.services.rate_limit import NullRateLimiter
from servixing.services.webhook_signatures import compute_signature

# One in-memory database shared by every session in a test
engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PAYSTACK_SECRET = "sk_test_paystack"
FLUTTERWAVE_HASH = "flw-secret-hash"
ETEGRAM_SECRET = "etegram-webhook-secret"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    monkeypatch.setattr(settings, "FLUTTERWAVE_SECRET_HASH", FLUTTERWAVE_HASH)
    monkeypatch.setattr(settings, "ETEGRAM_WEBHOOK_SECRET", ETEGRAM_SECRET)
    monkeypatch.setattr(settings, "WEBHOOK_ALLOW_UNSIGNED", False)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    def _get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.state.rate_limiter = NullRateLimiter()
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role=Role.CUSTOMER, email=None, password="secret123"):
        u = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            full_name="Test User",
            role=role.value,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u
    return _make


@pytest.fixture
def make_work_order(db):
    def _make(user_id, total_amount="5000.00", payment_status=PaymentStatus.PENDING.value):
        wo = WorkOrder(
            id=str(uuid.uuid4()),
            user_id=user_id,
            status="ACCEPTED",
            payment_status=payment_status,
            total_amount=Decimal(total_amount),
        )
        db.add(wo)
        db.commit()
        db.refresh(wo)
        return wo
    return _make


@pytest.fixture
def make_payment(db):
    def _make(reference="ref1", provider=Provider.PAYSTACK, status=PaymentStatus.PENDING, amount="10.00",
              work_order_id=None, user_id=None, metadata=None):
        p = Payment(
            id=str(uuid.uuid4()),
            reference=reference,
            provider=provider.value,
            amount=Decimal(amount),
            currency="NGN",
            status=status.value,
            user_id=user_id,
            work_order_id=work_order_id,
            metadata_json=json.dumps(metadata or {}),
        )
        db.add(p)
        db.commit()
        db.refresh(p)
        return p
    return _make


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def signed(provider: Provider, payload: dict) -> tuple[bytes, str]:
    body = json.dumps(payload).encode("utf-8")
    secret = {
        Provider.PAYSTACK: PAYSTACK_SECRET,
        Provider.FLUTTERWAVE: FLUTTERWAVE_HASH,
        Provider.ETEGRAM: ETEGRAM_SECRET,
    }[provider]
    return body, compute_signature(body, provider, secret)


def audit_actions(db) -> list[str]:
    return [a.action for a in db.query(AuditLog).order_by(AuditLog.created_at).all()]
