"""
Package — catalog offer of N stringing services valid for D days.
UserPackage — per-user grant created when a package payment is confirmed.
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base


class Package(Base):
    __tablename__ = "packages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    times = Column(Integer, nullable=False)
    validity_days = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class UserPackage(Base):
    __tablename__ = "user_packages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    package_id = Column(String, nullable=False, index=True)
    # One grant per confirmed payment: a duplicate confirm hits the unique index.
    payment_id = Column(String, nullable=True, unique=True)
    remaining = Column(Integer, nullable=False)
    original_times = Column(Integer, nullable=False)
    expiry = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="active")  # active / expired / depleted
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
