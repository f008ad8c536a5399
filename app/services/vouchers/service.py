"""
VoucherService — voucher redemption and issuance.

Redemption validates in a fixed order (first failure wins) while holding a lock on the
voucher row, then debits points (if the voucher costs any), inserts the UserVoucher grant
and bumps Voucher.used_count, all in one transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BadRequest, Conflict, InsufficientBalance, NotFound
from app.db.session import atomic
from app.models.user import User
from app.models.voucher import UserVoucher, Voucher
from app.schemas.vouchers import RedeemableVoucher, RedemptionResult, VoucherStats
from app.services.notifications.service import NotificationService
from app.services.points.service import PointsLedgerService
from app.utils.metrics import vouchers_redeemed_total
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def max_per_user(voucher: Voucher) -> int:
    return voucher.max_redemptions_per_user or settings.voucher_default_max_per_user


class VoucherService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.points = PointsLedgerService(db)
        self.notifications = NotificationService(db, clock=clock)

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def redeem_by_code(self, user_id: str, code: str, use_points: bool = False) -> RedemptionResult:
        trimmed = (code or "").strip()
        if not trimmed:
            raise BadRequest("Voucher code is required")
        return self._redeem(
            user_id,
            Voucher.code == trimmed.upper(),
            use_points=use_points,
            points_offered=None,
        )

    def redeem_by_id(self, user_id: str, voucher_id: str, points_offered: int | None = None) -> RedemptionResult:
        if not voucher_id:
            raise BadRequest("Voucher id is required")
        return self._redeem(
            user_id,
            Voucher.id == voucher_id,
            use_points=True,
            points_offered=points_offered,
        )

    def _redeem(
        self,
        user_id: str,
        criterion,
        use_points: bool,
        points_offered: int | None,
    ) -> RedemptionResult:
        now = self.clock()
        with atomic(self.db):
            voucher = (
                self.db.query(Voucher)
                .filter(criterion)
                .with_for_update()
                .one_or_none()
            )
            self._validate(voucher, user_id, now)

            cost = voucher.points_cost or 0
            spent = 0
            if cost > 0:
                if not use_points:
                    raise Conflict("Voucher must be redeemed with points")
                if points_offered is not None and points_offered < cost:
                    raise InsufficientBalance("Insufficient points")
                balance = self.points.get_balance(user_id)
                if balance < cost:
                    raise InsufficientBalance("Insufficient points")
                self.points.debit(
                    user_id,
                    cost,
                    "redeem",
                    reference_id=voucher.id,
                    description=f"Redeem voucher: {voucher.name}",
                )
                spent = cost

            grant = UserVoucher(
                user_id=user_id,
                voucher_id=voucher.id,
                status="active",
                expiry=voucher.valid_until,
            )
            self.db.add(grant)

            if not self._claim_use(voucher.id):
                raise Conflict("Voucher is fully redeemed")
            self.db.flush()

            balance_after = self.points.get_balance(user_id)

        vouchers_redeemed_total.labels(funding="points" if spent else "free").inc()
        logger.info(
            "voucher_redeemed",
            extra={
                "user_id": user_id,
                "voucher_id": voucher.id,
                "user_voucher_id": grant.id,
                "points": spent,
                "balance_after": balance_after,
            },
        )
        return RedemptionResult(
            user_voucher=grant,
            voucher_name=voucher.name,
            points_spent=spent,
            balance=balance_after,
        )

    def _claim_use(self, voucher_id: str) -> bool:
        """Bump used_count unless the global cap is reached. False means nothing was claimed."""
        res = self.db.execute(
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                or_(
                    Voucher.max_uses.is_(None),
                    Voucher.max_uses == 0,
                    Voucher.used_count < Voucher.max_uses,
                ),
            )
            .values(used_count=Voucher.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0

    def _validate(self, voucher: Voucher | None, user_id: str, now: datetime) -> None:
        if not voucher:
            raise NotFound("Voucher not found")
        if not voucher.active:
            raise Conflict("Voucher is inactive")
        if now < ensure_utc(voucher.valid_from) or now > ensure_utc(voucher.valid_until):
            raise Conflict("Voucher not in valid date range")
        if voucher.max_uses and (voucher.used_count or 0) >= voucher.max_uses:
            raise Conflict("Voucher is fully redeemed")
        if not self.db.query(User.id).filter(User.id == user_id).first():
            raise NotFound("User not found")
        owned = self._owned_count(user_id, voucher.id)
        if owned >= max_per_user(voucher):
            raise Conflict("Voucher redemption limit reached")

    def _owned_count(self, user_id: str, voucher_id: str) -> int:
        return (
            self.db.query(func.count(UserVoucher.id))
            .filter(UserVoucher.user_id == user_id, UserVoucher.voucher_id == voucher_id)
            .scalar()
            or 0
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_welcome_vouchers(self, user_id: str) -> list[UserVoucher]:
        """
        Grant every active, in-window auto-issue voucher to a new user in one transaction,
        with a single welcome notification. Vouchers at their per-user or global cap are skipped.
        """
        if not self.db.query(User.id).filter(User.id == user_id).first():
            raise NotFound("User not found")

        now = self.clock()
        issued: list[UserVoucher] = []
        names: list[str] = []
        with atomic(self.db):
            vouchers = (
                self.db.query(Voucher)
                .filter(
                    Voucher.active.is_(True),
                    Voucher.is_auto_issue.is_(True),
                    Voucher.valid_from <= now,
                    Voucher.valid_until >= now,
                )
                .order_by(Voucher.created_at)
                .with_for_update()
                .all()
            )
            for voucher in vouchers:
                if self._owned_count(user_id, voucher.id) >= max_per_user(voucher):
                    continue
                if not self._claim_use(voucher.id):
                    logger.info("welcome_voucher_exhausted", extra={"voucher_id": voucher.id})
                    continue
                grant = UserVoucher(
                    user_id=user_id,
                    voucher_id=voucher.id,
                    status="active",
                    expiry=voucher.grant_expiry(now),
                )
                self.db.add(grant)
                issued.append(grant)
                names.append(voucher.name)

            if issued:
                self.db.flush()
                self.notifications.notify(
                    user_id,
                    "system",
                    "🎁 Welcome gift",
                    f"You received a new member gift: {', '.join(names)}. Use it on your next order!",
                    "/vouchers",
                )

        if issued:
            vouchers_redeemed_total.labels(funding="welcome").inc(len(issued))
        logger.info(
            "welcome_vouchers_issued",
            extra={"user_id": user_id, "count": len(issued), "ids": [g.id for g in issued]},
        )
        return issued

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_redeemable_vouchers(self, user_id: str) -> list[RedeemableVoucher]:
        """Active, in-window vouchers the user can still redeem."""
        now = self.clock()
        owned_rows = (
            self.db.query(UserVoucher.voucher_id, func.count(UserVoucher.id))
            .filter(UserVoucher.user_id == user_id)
            .group_by(UserVoucher.voucher_id)
            .all()
        )
        owned = {voucher_id: count for voucher_id, count in owned_rows}

        vouchers = (
            self.db.query(Voucher)
            .filter(
                Voucher.active.is_(True),
                Voucher.valid_from <= now,
                Voucher.valid_until >= now,
            )
            .order_by(Voucher.created_at.desc())
            .all()
        )

        result = []
        for voucher in vouchers:
            if voucher.max_uses and (voucher.used_count or 0) >= voucher.max_uses:
                continue
            owned_count = owned.get(voucher.id, 0)
            cap = max_per_user(voucher)
            remaining = max(0, cap - owned_count)
            if remaining <= 0:
                continue
            result.append(
                RedeemableVoucher(
                    id=voucher.id,
                    code=voucher.code,
                    name=voucher.name,
                    discount_type=voucher.discount_type,
                    discount_value=voucher.value,
                    min_purchase=voucher.min_purchase or 0,
                    points_cost=voucher.points_cost or 0,
                    valid_from=ensure_utc(voucher.valid_from),
                    valid_until=ensure_utc(voucher.valid_until),
                    owned_count=owned_count,
                    max_per_user=cap,
                    remaining_redemptions=remaining,
                )
            )
        return result

    def get_user_vouchers(self, user_id: str, status: str | None = None) -> list[UserVoucher]:
        q = self.db.query(UserVoucher).filter(UserVoucher.user_id == user_id)
        if status:
            q = q.filter(UserVoucher.status == status)
        return q.order_by(UserVoucher.created_at.desc()).all()

    def get_voucher_stats(self, user_id: str) -> VoucherStats:
        now = self.clock()
        base = self.db.query(func.count(UserVoucher.id)).filter(UserVoucher.user_id == user_id)
        total = base.scalar() or 0
        used = base.filter(UserVoucher.status == "used").scalar() or 0
        active = (
            base.filter(UserVoucher.status == "active", UserVoucher.expiry > now).scalar()
            or 0
        )
        expired = max(total - used - active, 0)
        usage_rate = round(used / total * 100) if total > 0 else 0
        return VoucherStats(total=total, used=used, active=active, expired=expired, usage_rate=usage_rate)
