"""
Payment — a transaction intent reconciled against the payment gateway.
transaction_id is internal, order_id is what the gateway sees.
paid_at is stamped once, on the first transition into a settled status.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Numeric, String

from app.db.base import Base


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SETTLEMENT = "settlement"
    CAPTURE = "capture"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    COMPLETED = "completed"
    FAILED = "failed"


SETTLED_STATUSES = frozenset({PaymentStatus.SETTLEMENT, PaymentStatus.CAPTURE, PaymentStatus.COMPLETED})
FAILED_STATUSES = frozenset({
    PaymentStatus.DENY,
    PaymentStatus.CANCEL,
    PaymentStatus.EXPIRE,
    PaymentStatus.FAILED,
})


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_enrollment_status", "enrollment_id", "status"),
        Index("ix_payments_user_status", "user_id", "status"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    transaction_id = Column(String, unique=True, nullable=False, index=True)
    order_id = Column(String, unique=True, nullable=False, index=True)
    gateway_transaction_id = Column(String, nullable=True, index=True)  # reported by the gateway
    enrollment_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    course_id = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String, nullable=False, default="unknown")
    snap_token = Column(String, nullable=True)
    redirect_url = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
