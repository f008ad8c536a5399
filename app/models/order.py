"""
Order model — a stringing-service booking.
Status moves pending -> in_progress -> completed; cancelled and payment_rejected are side exits.
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, Text

from app.db.base import Base


ORDER_STATUSES = ("pending", "in_progress", "completed", "cancelled", "payment_rejected")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    discount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    use_package = Column(Boolean, nullable=False, default=False)
    user_package_id = Column(String, nullable=True)
    voucher_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def final_price(self) -> Decimal:
        """price - discount, never below zero."""
        price = Decimal(self.price or 0)
        discount = Decimal(self.discount or 0)
        return max(Decimal("0.00"), price - discount).quantize(Decimal("0.01"))
