"""
PointsLedgerService — the only writer of User.points.

Every balance change is read-modify-write on a locked user row and is paired with
exactly one PointsLogEntry carrying the resulting balance. credit/debit flush but do
not commit, so callers compose them into their own transaction.
"""
import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, InsufficientBalance, NotFound
from app.db.session import atomic
from app.models.points_log import PointsLogEntry
from app.models.user import User
from app.schemas.points import PointsLogOut, PointsStats, PointsSummary
from app.schemas.users import Caller
from app.services.auth.roles import require_admin
from app.utils.metrics import points_operations_total, points_rejected_total
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class PointsLedgerService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def credit(
        self,
        user_id: str,
        amount: int,
        type: str,
        reference_id: str | None = None,
        description: str = "",
    ) -> PointsLogEntry:
        """Apply a signed delta. A negative delta that would overdraw raises InsufficientBalance."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise BadRequest("Invalid points amount")

        user = (
            self.db.query(User)
            .filter(User.id == user_id)
            .with_for_update()
            .one_or_none()
        )
        if not user:
            raise NotFound("User not found")

        current = user.points or 0
        new_balance = current + amount
        if new_balance < 0:
            points_rejected_total.inc()
            logger.info(
                "points_debit_rejected",
                extra={"user_id": user_id, "points": amount, "balance_after": current},
            )
            raise InsufficientBalance("Insufficient points balance")

        user.points = new_balance
        self.db.add(user)

        entry = PointsLogEntry(
            user_id=user_id,
            amount=amount,
            type=type,
            reference_id=reference_id,
            description=description or "",
            balance_after=new_balance,
        )
        self.db.add(entry)
        self.db.flush()

        points_operations_total.labels(type=type).inc()
        logger.info(
            "points_applied",
            extra={
                "user_id": user_id,
                "points": amount,
                "kind": type,
                "balance_after": new_balance,
            },
        )
        return entry

    def debit(
        self,
        user_id: str,
        amount: int,
        type: str = "spend",
        reference_id: str | None = None,
        description: str = "",
    ) -> PointsLogEntry:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise BadRequest("Invalid points amount")
        return self.credit(user_id, -amount, type, reference_id, description)

    def redeem_points(self, user_id: str, points: int, reason: str | None = None) -> dict:
        """Standalone spend of points, committed on its own."""
        with atomic(self.db):
            entry = self.debit(user_id, points, "redeem", description=reason or "Points redemption")
        return {"balance": entry.balance_after, "redeemed": points}

    def admin_adjust(self, caller: Caller, user_id: str, amount: int, reason: str | None = None) -> PointsLogEntry:
        require_admin(caller)
        kind = "admin_add" if amount > 0 else "admin_deduct"
        with atomic(self.db):
            entry = self.credit(
                user_id,
                amount,
                kind,
                reference_id=caller.id,
                description=reason or "Admin adjustment",
            )
        logger.info(
            "points_admin_adjusted",
            extra={"user_id": user_id, "reviewer_id": caller.id, "points": amount},
        )
        return entry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> int:
        points = self.db.query(User.points).filter(User.id == user_id).scalar()
        return points or 0

    def get_history(self, user_id: str, type: str | None = None, limit: int | None = None) -> list[PointsLogEntry]:
        q = self.db.query(PointsLogEntry).filter(PointsLogEntry.user_id == user_id)
        if type and type.strip():
            q = q.filter(PointsLogEntry.type == type.strip())
        q = q.order_by(PointsLogEntry.created_at.desc())
        if limit:
            q = q.limit(limit)
        return q.all()

    def get_summary(self, user_id: str, type: str | None = None, limit: int | None = None) -> PointsSummary:
        logs = self.get_history(user_id, type=type, limit=limit)
        return PointsSummary(
            balance=self.get_balance(user_id),
            logs=[PointsLogOut.model_validate(entry) for entry in logs],
        )

    def get_stats(self, user_id: str, now: datetime | None = None) -> PointsStats:
        now = ensure_utc(now) or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        rows = (
            self.db.query(PointsLogEntry.amount, PointsLogEntry.created_at)
            .filter(PointsLogEntry.user_id == user_id)
            .all()
        )
        total_earned = total_spent = earned_month = spent_month = 0
        for amount, created_at in rows:
            this_month = ensure_utc(created_at) >= month_start
            if amount > 0:
                total_earned += amount
                if this_month:
                    earned_month += amount
            elif amount < 0:
                total_spent += -amount
                if this_month:
                    spent_month += -amount
        return PointsStats(
            total_points=self.get_balance(user_id),
            earned_this_month=earned_month,
            redeemed_this_month=spent_month,
            total_earned=total_earned,
            total_spent=total_spent,
        )

    def ledger_balance(self, user_id: str) -> int:
        """Balance derived from the log alone."""
        return (
            self.db.query(func.coalesce(func.sum(PointsLogEntry.amount), 0))
            .filter(PointsLogEntry.user_id == user_id)
            .scalar()
            or 0
        )

    def verify_balance(self, user_id: str) -> bool:
        cached = self.get_balance(user_id)
        derived = self.ledger_balance(user_id)
        if cached != derived:
            logger.error(
                "points_balance_diverged",
                extra={"user_id": user_id, "balance_after": cached, "points": derived},
            )
            return False
        return True
