from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from servixing.api.deps import Principal, require_admin
from servixing.db.session import get_db
from servixing.models.enums import PaymentStatus, Provider
from servixing.services import payment_service

router = APIRouter(tags=["admin"])


@router.get("/admin/payments")
def list_payments(
    status: Optional[PaymentStatus] = None,
    provider: Optional[Provider] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    return payment_service.list_payments(
        db,
        status=status.value if status else None,
        provider=provider.value if provider else None,
        page=page,
        limit=limit,
    )
