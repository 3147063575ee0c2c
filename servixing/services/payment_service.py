import logging
import secrets
import uuid
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from servixing.core.config import settings
from servixing.core.security import hash_password
from servixing.core.errors import AuthorizationError, ExternalServiceError, NotFoundError, PaymentStateError, ValidationError
from servixing.models.enums import PaymentStatus, Provider, Role
from servixing.models.payment import Payment
from servixing.models.user import User
from servixing.models.work_order import WorkOrder
from servixing.services.audit_service import log_audit
from servixing.services.gateway_clients import GatewayError, get_gateway
from servixing.services.payment_events import EventKind
from servixing.services.reconciliation_service import apply_event

logger = logging.getLogger(__name__)


def serialize_payment(p: Payment) -> dict:
    return {
        "id": p.id,
        "reference": p.reference,
        "provider": p.provider,
        "amount": str(p.amount),
        "currency": p.currency,
        "status": p.status,
        "userId": p.user_id,
        "workOrderId": p.work_order_id,
        "metadata": p.meta,
        "verifiedAt": p.verified_at.isoformat() if p.verified_at else None,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
    }


def _owned_payment(db: Session, principal, payment_id: str) -> Payment:
    p = db.get(Payment, payment_id)
    if not p:
        raise NotFoundError("Payment")
    if p.user_id != principal.user_id and not principal.is_admin:
        raise AuthorizationError("Access denied")
    return p


def initialize_payment(db: Session, principal, *, provider: Provider, email: str, amount: Decimal | None = None,
                       currency: str | None = None, work_order_id: str | None = None, metadata: dict | None = None) -> dict:
    """Create a PENDING payment and open a checkout with the gateway.

    The payment id doubles as the gateway reference. Nothing is stored if
    the gateway refuses the checkout.
    """
    wo = None
    if work_order_id:
        wo = db.get(WorkOrder, work_order_id)
        if not wo:
            raise NotFoundError("Work order")
        if wo.user_id != principal.user_id:
            raise AuthorizationError("Unauthorized payment attempt")
        if wo.payment_status == PaymentStatus.PAID:
            raise PaymentStateError("Work order already paid")
        if amount is None:
            amount = wo.total_amount
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("Amount must be positive")

    payment_id = str(uuid.uuid4())
    currency = (currency or settings.DEFAULT_CURRENCY).upper()
    meta = dict(metadata or {})
    p = Payment(
        id=payment_id,
        reference=payment_id,
        provider=provider.value,
        amount=Decimal(amount).quantize(Decimal("0.01")),
        currency=currency,
        status=PaymentStatus.PENDING.value,
        user_id=principal.user_id,
        work_order_id=work_order_id,
    )
    p.merge_meta(**meta)
    db.add(p)
    db.flush()

    callback_url = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/dashboard/payments/{payment_id}"
    try:
        gateway = get_gateway(provider)
        checkout = gateway.initialize(
            reference=p.reference,
            amount=p.amount,
            currency=currency,
            email=email,
            callback_url=callback_url,
            metadata={"paymentId": payment_id, "workOrderId": work_order_id, **meta},
        )
    except GatewayError as e:
        db.rollback()
        logger.error("%s initialization failed for work order %s: %s", provider.value, work_order_id, e)
        raise ExternalServiceError(provider.value, "Failed to initialize payment")

    if checkout.get("accessCode"):
        p.merge_meta(accessCode=checkout["accessCode"])
    if wo:
        wo.payment_reference = p.reference
    log_audit(db, actor_user_id=principal.user_id, action="payment.initialized", entity_type="payment", entity_id=payment_id,
              details={"provider": provider.value, "amount": p.amount, "workOrderId": work_order_id})
    db.commit()
    logger.info("Payment initialized: %s via %s for work order %s", payment_id, provider.value, work_order_id)

    return {
        "paymentId": payment_id,
        "reference": p.reference,
        "provider": provider.value,
        "authorizationUrl": checkout.get("authorizationUrl"),
        "accessCode": checkout.get("accessCode"),
    }


def verify_payment(db: Session, principal, reference: str) -> dict:
    """Ask the gateway about ``reference`` and apply the answer like a webhook would.

    ``principal`` is None on the guest route, where knowing the reference is enough.
    """
    p = db.query(Payment).filter(Payment.reference == reference).first()
    if not p:
        raise NotFoundError("Payment")
    if principal is not None and p.user_id != principal.user_id and not principal.is_admin:
        raise AuthorizationError("Access denied")

    try:
        event = get_gateway(p.provider).verify(reference)
    except GatewayError as e:
        logger.error("Verification of %s failed: %s", reference, e)
        raise ExternalServiceError(p.provider, "Failed to verify payment")

    transition = None
    if event.event_kind is not EventKind.UNKNOWN:
        transition = apply_event(db, p, event, actor=principal.user_id if principal else "guest")
    db.refresh(p)
    return {
        "gatewayStatus": event.provider_metadata.get("gatewayStatus"),
        "outcome": transition.outcome.value if transition else "pending",
        "payment": serialize_payment(p),
    }


def get_payment(db: Session, principal, payment_id: str) -> dict:
    return serialize_payment(_owned_payment(db, principal, payment_id))


def _page(query, page: int, limit: int) -> dict:
    total = query.with_entities(func.count(Payment.id)).scalar() or 0
    rows = query.order_by(Payment.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "payments": [serialize_payment(p) for p in rows],
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": (total + limit - 1) // limit},
    }


def payment_history(db: Session, user_id: str, page: int = 1, limit: int = 10) -> dict:
    return _page(db.query(Payment).filter(Payment.user_id == user_id), page, limit)


def list_payments(db: Session, status: str | None = None, provider: str | None = None, page: int = 1, limit: int = 20) -> dict:
    q = db.query(Payment)
    if status:
        q = q.filter(Payment.status == status.upper())
    if provider:
        q = q.filter(Payment.provider == provider.lower())
    return _page(q, page, limit)


def switch_provider(db: Session, principal, payment_id: str, provider: Provider) -> dict:
    p = db.get(Payment, payment_id)
    if not p:
        raise NotFoundError("Payment")
    if p.user_id != principal.user_id:
        raise AuthorizationError("Access denied")
    if p.status != PaymentStatus.PENDING:
        raise PaymentStateError("Can only update provider for pending payments")
    previous = p.provider
    p.provider = provider.value
    log_audit(db, actor_user_id=principal.user_id, action="payment.provider_changed", entity_type="payment", entity_id=p.id,
              details={"from": previous, "to": provider.value})
    db.commit()
    return {"id": p.id, "provider": p.provider, "status": p.status}


def find_or_create_customer(db: Session, email: str) -> User:
    """Guest checkout: the payer's account, created as a CUSTOMER on first payment."""
    email = email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    # Random hash: the account exists for ownership, not for login.
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name="",
        role=Role.CUSTOMER.value,
        password_hash=hash_password(secrets.token_urlsafe(32)),
        is_active=True,
    )
    db.add(user)
    db.commit()
    logger.info("Created guest customer %s for %s", user.id, email)
    return user


def serialize_public_payment(p: Payment) -> dict:
    return {
        "id": p.id,
        "status": p.status,
        "amount": str(p.amount),
        "currency": p.currency,
        "metadata": p.meta,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
    }


def get_public_payment(db: Session, payment_id: str) -> dict:
    p = db.get(Payment, payment_id)
    if not p:
        raise NotFoundError("Payment")
    return serialize_public_payment(p)
