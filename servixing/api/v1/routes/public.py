from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from servixing.api.deps import Principal, rate_limit
from servixing.core.config import settings
from servixing.db.session import get_db
from servixing.models.enums import Role
from servixing.schemas.payments import InitializePaymentRequest, VerifyPaymentRequest
from servixing.services import payment_service

router = APIRouter(prefix="/public", tags=["public"])

_WINDOW = settings.PUBLIC_RATE_WINDOW_SECONDS


@router.post("/payments/initialize", dependencies=[Depends(rate_limit("public:payments:init", settings.PUBLIC_INIT_RATE_LIMIT, _WINDOW))])
def initialize(body: InitializePaymentRequest, db: Session = Depends(get_db)):
    """Guest checkout. The payer is found or created as a CUSTOMER by email."""
    user = payment_service.find_or_create_customer(db, body.email)
    principal = Principal(user_id=user.id, email=user.email, role=Role(user.role))
    return payment_service.initialize_payment(
        db, principal,
        provider=body.provider,
        email=user.email,
        amount=body.amount,
        currency=body.currency,
        work_order_id=body.workOrderId,
        metadata=body.metadata,
    )


@router.post("/payments/verify", dependencies=[Depends(rate_limit("public:payments:verify", settings.PUBLIC_VERIFY_RATE_LIMIT, _WINDOW))])
def verify(body: VerifyPaymentRequest, db: Session = Depends(get_db)):
    result = payment_service.verify_payment(db, None, body.reference.strip())
    payment = result["payment"]
    return {
        "gatewayStatus": result["gatewayStatus"],
        "outcome": result["outcome"],
        "payment": {k: payment[k] for k in ("id", "status", "amount", "currency", "metadata", "createdAt")},
    }


@router.get("/payments/{payment_id}", dependencies=[Depends(rate_limit("public:payments:get", settings.PUBLIC_VIEW_RATE_LIMIT, _WINDOW))])
def detail(payment_id: str, db: Session = Depends(get_db)):
    return payment_service.get_public_payment(db, payment_id)
