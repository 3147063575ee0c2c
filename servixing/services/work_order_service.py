import logging

from sqlalchemy.orm import Session

from servixing.models.work_order import WorkOrder

logger = logging.getLogger(__name__)


def set_payment_status(db: Session, work_order_id: str, payment_status: str, payment_reference: str | None = None) -> bool:
    """Write the payment fields of a work order. Does not commit.

    Returns False when the work order does not exist.
    """
    wo = db.get(WorkOrder, work_order_id)
    if not wo:
        logger.warning("Work order %s not found while syncing payment status %s", work_order_id, payment_status)
        return False
    wo.payment_status = payment_status
    if payment_reference:
        wo.payment_reference = payment_reference
    return True
