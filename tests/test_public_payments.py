from decimal import Decimal

import pytest

from servixing.models.enums import PaymentStatus, Role
from servixing.models.payment import Payment
from servixing.models.user import User
from servixing.services.payment_events import EventKind, NormalizedEvent

GATEWAY = "servixing.services.payment_service.get_gateway"


@pytest.fixture
def gateway(mocker):
    gw = mocker.Mock()
    gw.initialize.return_value = {"authorizationUrl": "https://checkout.paystack.com/g", "accessCode": "g", "raw": {}}
    mocker.patch(GATEWAY, return_value=gw)
    return gw


@pytest.fixture
def limiter(client, mocker):
    lim = mocker.Mock()
    lim.hit.return_value = True
    client.app.state.rate_limiter = lim
    return lim


def test_guest_checkout_creates_customer(client, db, gateway):
    r = client.post("/api/v1/public/payments/initialize", json={"email": "Guest@Example.com", "amount": "2500"})

    assert r.status_code == 200
    data = r.json()
    assert data["authorizationUrl"] == "https://checkout.paystack.com/g"
    user = db.query(User).filter(User.email == "guest@example.com").one()
    assert user.role == Role.CUSTOMER.value
    p = db.get(Payment, data["paymentId"])
    assert p.user_id == user.id
    assert p.amount == Decimal("2500.00")


def test_guest_checkout_reuses_existing_account(client, db, make_user, gateway):
    existing = make_user(email="repeat@example.com")

    client.post("/api/v1/public/payments/initialize", json={"email": "repeat@example.com", "amount": "10"})
    client.post("/api/v1/public/payments/initialize", json={"email": "REPEAT@example.com", "amount": "20"})

    assert db.query(User).filter(User.email == "repeat@example.com").count() == 1
    assert {p.user_id for p in db.query(Payment).all()} == {existing.id}


def test_guest_account_cannot_log_in_with_a_guess(client, gateway):
    client.post("/api/v1/public/payments/initialize", json={"email": "nopass@example.com", "amount": "10"})

    r = client.post("/api/v1/auth/login", json={"email": "nopass@example.com", "password": ""})
    assert r.status_code == 401


def test_guest_cannot_pay_someone_elses_work_order(client, make_user, make_work_order, gateway):
    owner = make_user(email="owner@example.com")
    wo = make_work_order(owner.id)

    r = client.post("/api/v1/public/payments/initialize", json={"email": "other@example.com", "workOrderId": wo.id})

    assert r.status_code == 403
    gateway.initialize.assert_not_called()


def test_guest_verify_applies_gateway_answer(client, db, make_payment, gateway):
    p = make_payment(reference="ref-g", metadata={"accessCode": "g"})
    gateway.verify.return_value = NormalizedEvent(
        EventKind.CHARGE_SUCCESS, "ref-g", Decimal("10.00"), "NGN", {"gatewayStatus": "success", "transactionId": 5},
    )

    r = client.post("/api/v1/public/payments/verify", json={"reference": "ref-g"})

    assert r.status_code == 200
    data = r.json()
    assert data["outcome"] == "applied"
    assert data["payment"]["status"] == "PAID"
    assert set(data["payment"]) == {"id", "status", "amount", "currency", "metadata", "createdAt"}
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PAID


def test_guest_verify_unknown_reference(client, gateway):
    r = client.post("/api/v1/public/payments/verify", json={"reference": "nope"})
    assert r.status_code == 404


def test_guest_view_is_minimal(client, make_user, make_payment):
    p = make_payment(user_id=make_user().id)

    r = client.get(f"/api/v1/public/payments/{p.id}")

    assert r.status_code == 200
    assert r.json()["amount"] == "10.00"
    assert "userId" not in r.json()
    assert "reference" not in r.json()
    assert client.get("/api/v1/public/payments/missing").status_code == 404


@pytest.mark.parametrize("method,path,body,key,limit", [
    ("post", "/api/v1/public/payments/initialize", {"email": "a@example.com", "amount": "10"}, "public:payments:init", 10),
    ("post", "/api/v1/public/payments/verify", {"reference": "ref1"}, "public:payments:verify", 20),
    ("get", "/api/v1/public/payments/abc", None, "public:payments:get", 30),
])
def test_public_routes_are_rate_limited_per_ip(client, limiter, gateway, method, path, body, key, limit):
    limiter.hit.return_value = False
    kwargs = {"headers": {"X-Forwarded-For": "198.51.100.4"}}
    if body is not None:
        kwargs["json"] = body

    r = getattr(client, method)(path, **kwargs)

    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMIT"
    limiter.hit.assert_called_once_with(f"{key}:198.51.100.4", limit=limit, window_seconds=600)
    gateway.initialize.assert_not_called()
    gateway.verify.assert_not_called()
