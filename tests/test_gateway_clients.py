from decimal import Decimal

import pytest
import requests

from servixing.core.config import settings
from servixing.models.enums import Provider
from servixing.services.gateway_clients import (
    EtegramClient,
    FlutterwaveClient,
    GatewayConfig,
    GatewayError,
    PaystackClient,
    get_gateway,
    to_minor_units,
)
from servixing.services.payment_events import EventKind


def _response(mocker, status_code=200, json_data=None, text=None):
    r = mocker.Mock()
    r.status_code = status_code
    r.json.return_value = json_data
    r.text = text if text is not None else ("x" if json_data is not None else "")
    return r


@pytest.fixture
def http(mocker):
    return mocker.patch("servixing.services.gateway_clients.requests.request")


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(Decimal("10.005")) == 1001
    assert to_minor_units(Decimal("7500")) == 750000


def test_paystack_initialize_sends_kobo(http, mocker):
    http.return_value = _response(mocker, json_data={
        "status": True, "data": {"authorization_url": "https://checkout.paystack.com/x", "access_code": "x"},
    })
    client = PaystackClient(GatewayConfig("https://api.paystack.co/", "sk_live"))

    out = client.initialize(reference="r1", amount=Decimal("25.50"), currency="NGN", email="a@b.c",
                            callback_url="https://app/cb", metadata={})

    assert out["authorizationUrl"] == "https://checkout.paystack.com/x"
    kwargs = http.call_args.kwargs
    assert kwargs["url"] == "https://api.paystack.co/transaction/initialize"
    assert kwargs["headers"]["Authorization"] == "Bearer sk_live"
    assert '"amount":2550' in kwargs["data"]


def test_paystack_verify_normalizes(http, mocker):
    http.return_value = _response(mocker, json_data={
        "status": True, "data": {"status": "success", "reference": "r1", "amount": 2550, "currency": "NGN", "id": 8},
    })

    ev = PaystackClient(GatewayConfig("https://api.paystack.co", "sk")).verify("r1")

    assert ev.event_kind is EventKind.CHARGE_SUCCESS
    assert ev.amount == Decimal("25.50")
    assert ev.provider_metadata["transactionId"] == 8


def test_http_error_becomes_gateway_error(http, mocker):
    http.return_value = _response(mocker, status_code=401, json_data={"status": False, "message": "Invalid key"})
    with pytest.raises(GatewayError, match="Invalid key"):
        PaystackClient(GatewayConfig("https://api.paystack.co", "bad")).verify("r1")


def test_network_error_becomes_gateway_error(http):
    http.side_effect = requests.ConnectionError("refused")
    with pytest.raises(GatewayError):
        FlutterwaveClient(GatewayConfig("https://api.flutterwave.com/v3", "sk")).verify("r1")


def test_flutterwave_refund_needs_transaction_id(http):
    client = FlutterwaveClient(GatewayConfig("https://api.flutterwave.com/v3", "sk"))
    with pytest.raises(GatewayError):
        client.refund(reference="r1", amount=None, currency="NGN", reason="dup")
    http.assert_not_called()


def test_flutterwave_refund_by_transaction_id(http, mocker):
    http.return_value = _response(mocker, json_data={"status": "success", "data": {"id": 1}})
    client = FlutterwaveClient(GatewayConfig("https://api.flutterwave.com/v3", "sk"))

    client.refund(reference="r1", amount=Decimal("5.00"), currency="NGN", reason="dup", transaction_id=77)

    assert http.call_args.kwargs["url"].endswith("/transactions/77/refund")


def test_etegram_verify_maps_failed(http, mocker):
    http.return_value = _response(mocker, json_data={"data": {"status": "failed", "reference": "r9"}})
    client = EtegramClient(GatewayConfig("https://etegram.test/api", "sk", project_id="proj"))

    ev = client.verify("r9")

    assert ev.event_kind is EventKind.CHARGE_FAILED
    assert http.call_args.kwargs["url"] == "https://etegram.test/api/verify-payment/proj/r9"


def test_get_gateway_requires_configuration(monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "")
    with pytest.raises(GatewayError):
        get_gateway(Provider.PAYSTACK)

    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "sk_live")
    assert isinstance(get_gateway("paystack"), PaystackClient)
