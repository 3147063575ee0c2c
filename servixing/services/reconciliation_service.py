"""Apply gateway events to payments.

Only this module writes ``payments.status``. Webhooks, explicit verify
calls and refund confirmations all go through ``apply_event``, which moves
a payment with a single conditional UPDATE (``WHERE id = :id AND status =
:current``) so two deliveries racing on one reference cannot both apply.

``handle_webhook`` never raises: every failure ends as a log line, an
audit row and an acknowledged delivery. Gateways retry on anything but a
2xx, so surfacing errors would only produce retry storms.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from servixing.core.errors import (
    ExternalServiceError,
    InvalidTransition,
    MalformedPayload,
    NotFoundError,
    PaymentStateError,
    PersistenceFailure,
    SignatureInvalid,
    UnknownReference,
    ValidationError,
    WebhookAnomaly,
)
from servixing.models.enums import PaymentStatus
from servixing.models.payment import Payment
from servixing.services.audit_service import log_audit
from servixing.services.gateway_clients import GatewayError, get_gateway
from servixing.services.payment_events import EventKind, NormalizedEvent
from servixing.services.payment_state import Outcome, Transition, decide
from servixing.services.providers import ProviderAdapter, get_adapter
from servixing.services.work_order_service import set_payment_status

logger = logging.getLogger(__name__)

UNSUPPORTED_PROVIDER = "unsupported_provider"


@dataclass(frozen=True)
class WebhookResult:
    outcome: str  # applied, duplicate, or a WebhookAnomaly kind
    payment_id: Optional[str] = None
    status: Optional[str] = None


def handle_webhook(db: Session, provider: str, raw_body: bytes, signature_header: str | None) -> WebhookResult:
    try:
        adapter = get_adapter(provider)
    except ValueError:
        logger.warning("Webhook for unsupported provider %r ignored", provider)
        return WebhookResult(UNSUPPORTED_PROVIDER)

    actor = f"webhook:{adapter.provider.value}"
    try:
        return _reconcile(db, adapter, raw_body, signature_header)
    except WebhookAnomaly as anomaly:
        db.rollback()
        logger.warning("%s webhook %s: %s", adapter.provider.value, anomaly.kind, anomaly)
        entity_id = anomaly.details.get("payment_id") or anomaly.reference
        _record(db, actor, anomaly.kind, entity_id, {"message": str(anomaly), "reference": anomaly.reference, **anomaly.details})
        return WebhookResult(anomaly.kind, anomaly.details.get("payment_id"), anomaly.details.get("status"))
    except Exception as e:
        db.rollback()
        logger.exception("%s webhook processing failed", adapter.provider.value)
        failure = PersistenceFailure(repr(e))
        _record(db, actor, failure.kind, None, {"message": str(failure)})
        return WebhookResult(failure.kind)


def _record(db: Session, actor: str, kind: str, entity_id: str | None, details: dict) -> None:
    try:
        log_audit(db, actor_user_id=actor, action=f"webhook.{kind}", entity_type="payment", entity_id=entity_id or "-", details=details)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not write webhook.%s to the audit log", kind)


def _reconcile(db: Session, adapter: ProviderAdapter, raw_body: bytes, signature_header: str | None) -> WebhookResult:
    provider = adapter.provider.value
    try:
        signed = adapter.verify(raw_body, signature_header)
    except TypeError as e:
        raise MalformedPayload(str(e))
    if not signed:
        raise SignatureInvalid("signature does not match request body")

    try:
        payload = json.loads(raw_body.decode("utf-8") or "{}")
    except ValueError as e:
        raise MalformedPayload(f"body is not valid JSON: {e}")

    event = adapter.normalize(payload)
    event_name = event.provider_metadata.get("event")
    logger.info("%s webhook received: %s", provider, event_name)
    if not event.reference:
        raise MalformedPayload("event carries no transaction reference", event=event_name)

    payment = db.query(Payment).filter(Payment.provider == provider, Payment.reference == event.reference).first()
    if not payment:
        raise UnknownReference(f"no payment with reference {event.reference}", reference=event.reference, event=event_name)

    transition = apply_event(db, payment, event, actor=f"webhook:{provider}")
    if transition.outcome in (Outcome.TERMINAL, Outcome.INVALID):
        raise InvalidTransition(
            f"{transition.event.value} does not apply to a {transition.current.value} payment",
            reference=event.reference,
            payment_id=payment.id,
            status=transition.current.value,
            outcome=transition.outcome.value,
            event=event_name,
        )
    return WebhookResult(transition.outcome.value, payment.id, transition.next.value)


def apply_event(db: Session, payment: Payment, event: NormalizedEvent, actor: str) -> Transition:
    """Move ``payment`` according to ``event`` and commit.

    Terminal and invalid combinations are returned untouched for the caller
    to report. A lost race against a concurrent delivery is reported as
    whatever the winning state makes of this event.
    """
    transition = decide(payment.status, event.event_kind)

    if transition.outcome is Outcome.DUPLICATE:
        logger.info("Payment %s already %s; %s re-delivery ignored", payment.id, payment.status, event.event_kind.value)
        log_audit(db, actor_user_id=actor, action="payment.duplicate_event", entity_type="payment", entity_id=payment.id,
                  details={"reference": payment.reference, "event": event.event_kind.value})
        db.commit()
        return transition
    if not transition.changed:
        return transition

    if not _compare_and_set(db, payment, transition, event):
        db.rollback()
        db.refresh(payment)
        logger.info("Payment %s moved to %s concurrently; %s not applied", payment.id, payment.status, event.event_kind.value)
        raced = decide(payment.status, event.event_kind)
        if raced.changed:
            # Status moved under us but this event is still valid; leave it for the next delivery.
            return Transition(raced.current, raced.event, raced.current, Outcome.DUPLICATE)
        return raced

    wo_payment_status = transition.work_order_payment_status
    if wo_payment_status and payment.work_order_id:
        set_payment_status(db, payment.work_order_id, wo_payment_status, payment.reference)

    log_audit(db, actor_user_id=actor, action="payment.status_changed", entity_type="payment", entity_id=payment.id, details={
        "reference": payment.reference,
        "from": transition.current.value,
        "to": transition.next.value,
        "event": event.event_kind.value,
        "amount": event.amount,
    })
    db.commit()
    logger.info("Payment %s %s -> %s (%s)", payment.id, transition.current.value, transition.next.value, event.event_kind.value)
    return transition


def _compare_and_set(db: Session, payment: Payment, transition: Transition, event: NormalizedEvent) -> bool:
    now = datetime.now(timezone.utc)
    meta = payment.meta
    meta["lastEvent"] = {k: v for k, v in event.provider_metadata.items() if v is not None}
    if event.provider_metadata.get("transactionId"):
        meta["transactionId"] = event.provider_metadata["transactionId"]

    if event.event_kind is EventKind.CHARGE_SUCCESS and event.amount is not None and event.amount != payment.amount:
        logger.warning("Payment %s: gateway reported %s %s, expected %s %s",
                       payment.id, event.amount, event.currency, payment.amount, payment.currency)
        meta["amountMismatch"] = {"expected": str(payment.amount), "reported": str(event.amount)}
    if transition.next is PaymentStatus.REFUNDED:
        refunded = event.amount if event.amount is not None else meta.get("refundRequested")
        meta["refundedAmount"] = str(refunded) if refunded is not None else str(payment.amount)

    values = {
        "status": transition.next.value,
        "metadata_json": json.dumps(meta, ensure_ascii=False, default=str),
        "updated_at": now,
    }
    if transition.next in (PaymentStatus.PAID, PaymentStatus.FAILED):
        values["verified_at"] = now

    result = db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == transition.current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def initiate_refund(db: Session, payment_id: str, reason: str, requested_by: str, amount: Decimal | str | float | None = None) -> dict:
    """Ask the gateway to refund a PAID payment.

    The payment stays PAID; the gateway's refund webhook completes the
    move to REFUNDED.
    """
    # Row lock serializes refund requests for one payment (no-op on SQLite).
    payment = db.query(Payment).populate_existing().with_for_update().filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFoundError("Payment")
    if payment.status != PaymentStatus.PAID:
        raise PaymentStateError(f"Only PAID payments can be refunded (payment is {payment.status})")

    reason = (reason or "").strip()
    if len(reason) < 3:
        raise ValidationError("Refund reason must be at least 3 characters")

    if amount is not None:
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError("Refund amount must be a number")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Refund amount must be positive")
        if amount > payment.amount:
            raise ValidationError("Refund amount exceeds the amount paid")

    meta = payment.meta
    already_requested = Decimal(str(meta.get("refundRequested") or "0"))
    remaining = payment.amount - already_requested
    if remaining <= 0:
        raise ValidationError(f"The full {payment.amount} {payment.currency} has already been requested for refund")
    if amount is None and already_requested:
        # Full refund after partial ones: ask only for what is left.
        amount = remaining
    if amount is not None and amount > remaining:
        raise ValidationError(f"Refund amount exceeds the {remaining} {payment.currency} not yet requested for refund")

    try:
        gateway = get_gateway(payment.provider)
        resp = gateway.refund(
            reference=payment.reference,
            amount=amount,
            currency=payment.currency,
            reason=reason,
            transaction_id=meta.get("transactionId"),
        )
    except GatewayError as e:
        logger.error("Refund request for payment %s failed: %s", payment.id, e)
        log_audit(db, actor_user_id=requested_by, action="refund.failed", entity_type="payment", entity_id=payment.id, details={"error": str(e)})
        db.commit()
        raise ExternalServiceError(payment.provider, str(e))

    requested_at = datetime.now(timezone.utc)
    refund_amount = amount if amount is not None else payment.amount
    request = {
        "amount": str(refund_amount),
        "reason": reason,
        "requestedBy": requested_by,
        "requestedAt": requested_at.isoformat(),
    }
    payment.merge_meta(
        refundRequest=request,
        refundRequests=[*meta.get("refundRequests", []), request],
        refundRequested=str(already_requested + refund_amount),
    )
    log_audit(db, actor_user_id=requested_by, action="refund.requested", entity_type="payment", entity_id=payment.id, details={
        "reference": payment.reference,
        "amount": refund_amount,
        "partial": refund_amount != payment.amount,
        "totalRequested": already_requested + refund_amount,
        "reason": reason,
        "gateway": resp,
    })
    db.commit()
    logger.info("Refund of %s %s requested for payment %s by %s", refund_amount, payment.currency, payment.id, requested_by)

    return {
        "paymentId": payment.id,
        "reference": payment.reference,
        "provider": payment.provider,
        "paymentStatus": payment.status,
        "status": "PENDING_CONFIRMATION",
        "amount": str(refund_amount),
        "currency": payment.currency,
        "reason": reason,
        "providerResponse": resp,
    }
