from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from servixing.db.session import Base

class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    status: Mapped[str] = mapped_column(String(30), default="CREATED")  # CREATED, ACCEPTED, IN_REPAIR, AWAITING_PARTS, READY_FOR_PICKUP, COMPLETED, CANCELLED
    payment_status: Mapped[str] = mapped_column(String(20), default="PENDING")  # PENDING, PAID, FAILED, REFUNDED
    payment_reference: Mapped[str] = mapped_column(String(120), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
