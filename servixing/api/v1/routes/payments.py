from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from servixing.api.deps import Principal, get_current_principal, require_admin
from servixing.db.session import get_db
from servixing.schemas.payments import InitializePaymentRequest, VerifyPaymentRequest, UpdateProviderRequest, RefundRequest
from servixing.services import payment_service
from servixing.services.reconciliation_service import initiate_refund

router = APIRouter(tags=["payments"])


@router.post("/payments/initialize")
def initialize(body: InitializePaymentRequest, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payment_service.initialize_payment(
        db, principal,
        provider=body.provider,
        email=body.email,
        amount=body.amount,
        currency=body.currency,
        work_order_id=body.workOrderId,
        metadata=body.metadata,
    )


@router.post("/payments/verify")
def verify(body: VerifyPaymentRequest, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payment_service.verify_payment(db, principal, body.reference.strip())


@router.get("/payments")
def history(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
            db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payment_service.payment_history(db, principal.user_id, page=page, limit=limit)


@router.get("/payments/{payment_id}")
def detail(payment_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payment_service.get_payment(db, principal, payment_id)


@router.post("/payments/{payment_id}/provider")
def update_provider(payment_id: str, body: UpdateProviderRequest, db: Session = Depends(get_db),
                    principal: Principal = Depends(get_current_principal)):
    return payment_service.switch_provider(db, principal, payment_id, body.provider)


@router.post("/payments/{payment_id}/refund")
def refund(payment_id: str, body: RefundRequest, db: Session = Depends(get_db), principal: Principal = Depends(require_admin)):
    """Ask the gateway for a refund. The payment stays PAID until the gateway's refund webhook arrives."""
    return initiate_refund(db, payment_id, reason=body.reason, amount=body.amount, requested_by=principal.user_id)
