"""
Voucher — catalog discount definition, optionally bought with points.
UserVoucher — a grant of a voucher to one user.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String

from app.db.base import Base


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)  # stored upper-case
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="fixed_amount")  # fixed_amount / percentage
    value = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    min_purchase = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    max_uses = Column(Integer, nullable=True)  # null = unlimited
    used_count = Column(Integer, nullable=False, default=0)
    max_redemptions_per_user = Column(Integer, nullable=True)  # null = settings default
    points_cost = Column(Integer, nullable=False, default=0)
    # Welcome gift: granted automatically at sign-up
    is_auto_issue = Column(Boolean, nullable=False, default=False)
    # Grant expiry in days from issue; null = the voucher's valid_until
    validity_days = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def discount_type(self) -> str:
        return "percentage" if "percentage" in (self.type or "").lower() else "fixed"

    def grant_expiry(self, issued_at: datetime) -> datetime:
        if self.validity_days and self.validity_days > 0:
            return issued_at + timedelta(days=self.validity_days)
        return self.valid_until


class UserVoucher(Base):
    __tablename__ = "user_vouchers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    voucher_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="active")  # active / used / expired
    expiry = Column(DateTime(timezone=True), nullable=False)
    order_id = Column(String, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
