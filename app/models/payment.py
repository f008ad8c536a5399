"""
Payment model — one attempt to pay for an order or a package purchase.
Targets are mutually exclusive (CHECK constraint); `target` exposes them as a tagged value.
Review data (proof, verifiedAt/By, rejectReason) lives in the `metadata` JSON column.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String

from app.db.base import Base, JSONType
from app.schemas.payments import PaymentTarget


PAYMENT_STATUSES = ("pending", "pending_verification", "success", "rejected", "failed")
# "completed" is the legacy status written by cash confirmation
CONFIRMED_STATUSES = frozenset({"success", "completed"})
RESUBMITTABLE_STATUSES = frozenset({"pending", "pending_verification", "rejected", "failed"})


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "NOT (order_id IS NOT NULL AND package_id IS NOT NULL)",
            name="ck_payment_single_target",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    order_id = Column(String, nullable=True, index=True)
    package_id = Column(String, nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    provider = Column(String, nullable=False, default="tng")  # tng (wallet QR) / cash
    status = Column(String, nullable=False, default="pending", index=True)
    transaction_id = Column(String, nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def target(self) -> PaymentTarget:
        if self.order_id:
            return PaymentTarget.for_order(self.order_id)
        if self.package_id:
            return PaymentTarget.for_package(self.package_id)
        return PaymentTarget.none()

    @property
    def is_confirmed(self) -> bool:
        return self.status in CONFIRMED_STATUSES

    @property
    def is_cash(self) -> bool:
        return self.provider == "cash"
