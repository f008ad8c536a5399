from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base


class PointsLogEntry(Base):
    """Append-only: one row per balance change, never updated or deleted."""

    __tablename__ = "points_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # signed delta
    type = Column(String, nullable=False)  # earn / order / spend / redeem / refund / admin_add / admin_deduct
    reference_id = Column(String, nullable=True)
    description = Column(Text, nullable=False, default="")
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
