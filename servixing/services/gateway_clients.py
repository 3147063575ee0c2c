from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
import json
import requests

from servixing.core.config import settings
from servixing.models.enums import Provider
from servixing.services.payment_events import EventKind, NormalizedEvent, parse_amount


@dataclass
class GatewayConfig:
    base_url: str           # e.g. https://api.paystack.co
    secret_key: str         # Bearer token for server-to-server calls
    project_id: str = ""    # Etegram only
    timeout: int = 25


class GatewayError(RuntimeError):
    pass


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class GatewayClient:
    provider: Provider

    def __init__(self, cfg: GatewayConfig):
        self.cfg = cfg

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.cfg.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def request(self, method: str, path: str, payload: dict | None = None, params: dict | None = None) -> dict:
        url = f"{self.cfg.base_url.rstrip('/')}{path}"
        body = json.dumps(payload, separators=(",", ":"), default=str) if payload is not None else None
        try:
            r = requests.request(method=method.upper(), url=url, data=body, params=params, headers=self._headers(), timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"{self.provider.value} request failed: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if not isinstance(data, dict):
            data = {"data": data}
        if r.status_code >= 400:
            raise GatewayError(f"{self.provider.value} {r.status_code}: {data.get('message') or data}")
        return data

    def initialize(self, *, reference: str, amount: Decimal, currency: str, email: str, callback_url: str, metadata: dict) -> dict:
        """Start a checkout. Returns {"authorizationUrl", "accessCode", "raw"}."""
        raise NotImplementedError

    def verify(self, reference: str) -> NormalizedEvent:
        """Ask the gateway for the current state of a transaction."""
        raise NotImplementedError

    def refund(self, *, reference: str, amount: Decimal | None, currency: str, reason: str, transaction_id: str | None = None) -> dict:
        raise NotImplementedError


class PaystackClient(GatewayClient):
    provider = Provider.PAYSTACK

    def initialize(self, *, reference, amount, currency, email, callback_url, metadata):
        data = self.request("POST", "/transaction/initialize", {
            "email": email,
            "amount": to_minor_units(amount),  # kobo
            "currency": currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        })
        if not data.get("status"):
            raise GatewayError(data.get("message") or "Failed to initialize payment")
        d = data.get("data") or {}
        return {"authorizationUrl": d.get("authorization_url"), "accessCode": d.get("access_code"), "raw": data}

    def verify(self, reference):
        data = self.request("GET", f"/transaction/verify/{reference}")
        if not data.get("status"):
            raise GatewayError(data.get("message") or "Payment verification failed")
        d = data.get("data") or {}
        status = (d.get("status") or "").lower()
        kind = {"success": EventKind.CHARGE_SUCCESS, "failed": EventKind.CHARGE_FAILED}.get(status, EventKind.UNKNOWN)
        authorization = d.get("authorization") or {}
        return NormalizedEvent(
            event_kind=kind,
            reference=d.get("reference") or reference,
            amount=parse_amount(d.get("amount"), minor_units=True),
            currency=d.get("currency"),
            provider_metadata={"event": "verify", "transactionId": d.get("id"), "gatewayStatus": status,
                               "authorizationCode": authorization.get("authorization_code")},
        )

    def refund(self, *, reference, amount, currency, reason, transaction_id=None):
        payload = {"transaction": reference, "currency": currency, "merchant_note": reason}
        if amount is not None:
            payload["amount"] = to_minor_units(amount)
        data = self.request("POST", "/refund", payload)
        if not data.get("status"):
            raise GatewayError(data.get("message") or "Refund request rejected")
        return data.get("data") or {}


class FlutterwaveClient(GatewayClient):
    provider = Provider.FLUTTERWAVE

    def initialize(self, *, reference, amount, currency, email, callback_url, metadata):
        data = self.request("POST", "/payments", {
            "tx_ref": reference,
            "amount": str(amount),
            "currency": currency,
            "redirect_url": callback_url,
            "customer": {"email": email},
            "meta": metadata,
        })
        if data.get("status") != "success":
            raise GatewayError(data.get("message") or "Failed to initialize payment")
        d = data.get("data") or {}
        return {"authorizationUrl": d.get("link"), "accessCode": None, "raw": data}

    def verify(self, reference):
        data = self.request("GET", "/transactions/verify_by_reference", params={"tx_ref": reference})
        if data.get("status") != "success":
            raise GatewayError(data.get("message") or "Payment verification failed")
        d = data.get("data") or {}
        status = (d.get("status") or "").lower()
        kind = {"successful": EventKind.CHARGE_SUCCESS, "failed": EventKind.CHARGE_FAILED}.get(status, EventKind.UNKNOWN)
        return NormalizedEvent(
            event_kind=kind,
            reference=d.get("tx_ref") or reference,
            amount=parse_amount(d.get("amount")),
            currency=d.get("currency"),
            provider_metadata={"event": "verify", "transactionId": d.get("id"), "gatewayStatus": status,
                               "flwRef": d.get("flw_ref")},
        )

    def refund(self, *, reference, amount, currency, reason, transaction_id=None):
        # Flutterwave refunds are keyed by its own transaction id, not tx_ref.
        if not transaction_id:
            raise GatewayError("Flutterwave refund needs the gateway transaction id (not yet received for this payment)")
        payload = {"comments": reason}
        if amount is not None:
            payload["amount"] = str(amount)
        data = self.request("POST", f"/transactions/{transaction_id}/refund", payload)
        if data.get("status") != "success":
            raise GatewayError(data.get("message") or "Refund request rejected")
        return data.get("data") or {}


class EtegramClient(GatewayClient):
    provider = Provider.ETEGRAM

    def initialize(self, *, reference, amount, currency, email, callback_url, metadata):
        data = self.request("POST", f"/initialize/{self.cfg.project_id}", {
            "amount": str(amount),
            "email": email,
            "reference": reference,
            "currency": currency,
            "callbackUrl": callback_url,
            "metadata": metadata,
        })
        d = data.get("data") or {}
        url = d.get("authorization_url") or d.get("authorizationUrl")
        if not url:
            raise GatewayError(data.get("message") or "Failed to initialize payment")
        return {"authorizationUrl": url, "accessCode": d.get("access_code") or d.get("accessCode"), "raw": data}

    def verify(self, reference):
        data = self.request("GET", f"/verify-payment/{self.cfg.project_id}/{reference}")
        d = data.get("data") or data
        status = (d.get("status") or "").lower()
        if status in ("success", "successful"):
            kind = EventKind.CHARGE_SUCCESS
        elif status == "failed":
            kind = EventKind.CHARGE_FAILED
        else:
            kind = EventKind.UNKNOWN
        return NormalizedEvent(
            event_kind=kind,
            reference=d.get("reference") or reference,
            amount=parse_amount(d.get("amount")),
            currency=d.get("currency"),
            provider_metadata={"event": "verify", "transactionId": d.get("id"), "gatewayStatus": status},
        )

    def refund(self, *, reference, amount, currency, reason, transaction_id=None):
        payload = {"reference": reference, "currency": currency, "reason": reason}
        if amount is not None:
            payload["amount"] = str(amount)
        data = self.request("POST", f"/refund/{self.cfg.project_id}", payload)
        return data.get("data") or data


def get_gateway(provider: Provider | str) -> GatewayClient:
    provider = Provider(provider)
    if provider is Provider.PAYSTACK:
        cfg = GatewayConfig(settings.PAYSTACK_BASE_URL, settings.PAYSTACK_SECRET_KEY, timeout=settings.GATEWAY_TIMEOUT)
        client_cls = PaystackClient
    elif provider is Provider.FLUTTERWAVE:
        cfg = GatewayConfig(settings.FLUTTERWAVE_BASE_URL, settings.FLUTTERWAVE_SECRET_KEY, timeout=settings.GATEWAY_TIMEOUT)
        client_cls = FlutterwaveClient
    else:
        cfg = GatewayConfig(settings.ETEGRAM_BASE_URL, settings.ETEGRAM_SECRET_KEY or settings.ETEGRAM_PUBLIC_KEY,
                            project_id=settings.ETEGRAM_PROJECT_ID, timeout=settings.GATEWAY_TIMEOUT)
        client_cls = EtegramClient
        if not cfg.project_id:
            raise GatewayError("etegram is not configured (missing ETEGRAM_PROJECT_ID)")
    if not cfg.secret_key:
        raise GatewayError(f"{provider.value} is not configured (missing secret key)")
    return client_cls(cfg)
