"""Map provider webhook payloads onto one internal event vocabulary."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from servixing.core.errors import MalformedPayload
from servixing.models.enums import Provider


class EventKind(str, enum.Enum):
    CHARGE_SUCCESS = "CHARGE_SUCCESS"
    CHARGE_FAILED = "CHARGE_FAILED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class NormalizedEvent:
    event_kind: EventKind
    reference: Optional[str]
    amount: Optional[Decimal]
    currency: Optional[str]
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


_CENTS = Decimal("0.01")


def parse_amount(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    if minor_units:
        amount = amount / 100
    return amount.quantize(_CENTS)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _currency(value: Any) -> Optional[str]:
    s = _text(value)
    return s.upper() if s else None


def _data(raw: dict) -> dict:
    data = raw.get("data")
    return data if isinstance(data, dict) else {}


def _event_name(raw: dict) -> str:
    name = raw.get("event")
    return name.strip().lower() if isinstance(name, str) else ""


_PAYSTACK_EVENTS = {
    "charge.success": EventKind.CHARGE_SUCCESS,
    "charge.failed": EventKind.CHARGE_FAILED,
    "refund.processed": EventKind.REFUND_PROCESSED,
}


def normalize_paystack(raw: dict) -> NormalizedEvent:
    # Amounts are in kobo; refund events point back at the charge via transaction_reference.
    name = _event_name(raw)
    data = _data(raw)
    kind = _PAYSTACK_EVENTS.get(name, EventKind.UNKNOWN)
    if kind is EventKind.REFUND_PROCESSED:
        reference = _text(data.get("transaction_reference")) or _text(data.get("reference"))
    else:
        reference = _text(data.get("reference"))
    authorization = data.get("authorization") if isinstance(data.get("authorization"), dict) else {}
    return NormalizedEvent(
        event_kind=kind,
        reference=reference,
        amount=parse_amount(data.get("amount"), minor_units=True),
        currency=_currency(data.get("currency")),
        provider_metadata={
            "event": name,
            "transactionId": data.get("id"),
            "gatewayStatus": data.get("status"),
            "authorizationCode": authorization.get("authorization_code"),
            "paidAt": data.get("paid_at"),
        },
    )


def normalize_flutterwave(raw: dict) -> NormalizedEvent:
    # charge.completed covers both outcomes; data.status tells them apart.
    name = _event_name(raw)
    data = _data(raw)
    status = (_text(data.get("status")) or "").lower()
    if name == "charge.completed" and status == "successful":
        kind = EventKind.CHARGE_SUCCESS
    elif name == "charge.completed" and status == "failed":
        kind = EventKind.CHARGE_FAILED
    elif name == "refund.completed":
        kind = EventKind.REFUND_PROCESSED
    else:
        kind = EventKind.UNKNOWN
    return NormalizedEvent(
        event_kind=kind,
        reference=_text(data.get("tx_ref")),
        amount=parse_amount(data.get("amount")),
        currency=_currency(data.get("currency")),
        provider_metadata={
            "event": name,
            "transactionId": data.get("id"),
            "gatewayStatus": data.get("status"),
            "flwRef": data.get("flw_ref"),
        },
    )


_ETEGRAM_EVENTS = {
    "payment.success": EventKind.CHARGE_SUCCESS,
    "charge.success": EventKind.CHARGE_SUCCESS,
    "payment.failed": EventKind.CHARGE_FAILED,
    "charge.failed": EventKind.CHARGE_FAILED,
    "refund.success": EventKind.REFUND_PROCESSED,
    "refund.processed": EventKind.REFUND_PROCESSED,
}


def normalize_etegram(raw: dict) -> NormalizedEvent:
    name = _event_name(raw)
    data = _data(raw)
    return NormalizedEvent(
        event_kind=_ETEGRAM_EVENTS.get(name, EventKind.UNKNOWN),
        reference=_text(data.get("reference")) or _text(data.get("tx_ref")),
        amount=parse_amount(data.get("amount")),
        currency=_currency(data.get("currency")),
        provider_metadata={
            "event": name,
            "transactionId": data.get("id") or data.get("transaction_id"),
            "gatewayStatus": data.get("status"),
        },
    )


NORMALIZERS: Dict[Provider, Callable[[dict], NormalizedEvent]] = {
    Provider.PAYSTACK: normalize_paystack,
    Provider.FLUTTERWAVE: normalize_flutterwave,
    Provider.ETEGRAM: normalize_etegram,
}


def normalize(provider: Provider | str, raw_event: Any) -> NormalizedEvent:
    """Normalize a decoded webhook body.

    Unknown event names come back as ``EventKind.UNKNOWN`` and missing
    optional fields as None. Only a body that is not a JSON object raises.
    """
    if not isinstance(raw_event, dict):
        raise MalformedPayload(f"webhook body must be a JSON object, got {type(raw_event).__name__}")
    return NORMALIZERS[Provider(provider)](raw_event)
