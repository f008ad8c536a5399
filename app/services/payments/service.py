"""
PaymentService — payment lifecycle and fulfillment.

Responsibilities:
- Creating wallet-QR and cash payments for an order or a package purchase
- Recording payment proof (-> pending_verification) and alerting reviewers
- Confirming a payment exactly once: package grant, order advancement, notification
- Rejecting a payment with a reason the customer can act on

State machine: pending -> pending_verification -> success | rejected.
rejected/failed payments may be resubmitted; success is terminal.
"""
import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.db.session import atomic
from app.models.order import Order
from app.models.package import Package, UserPackage
from app.models.payment import CONFIRMED_STATUSES, RESUBMITTABLE_STATUSES, Payment
from app.schemas.payments import Pagination, PendingPaymentsPage
from app.schemas.users import Caller
from app.services.auth.roles import require_admin
from app.services.notifications.service import NotificationService
from app.utils.currency import format_amount, to_money
from app.utils.metrics import package_grants_total, payment_transitions_total
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

# Order states a confirmed payment moves to in_progress
ADVANCEABLE_ORDER_STATUSES = ("pending", "payment_rejected")


def should_advance_order_status(order_status: str, payment_status: str) -> bool:
    return order_status in ADVANCEABLE_ORDER_STATUSES and payment_status == "success"


class PaymentService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.notifications = NotificationService(db, clock=clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_payment(
        self,
        user_id: str,
        amount,
        order_id: str | None = None,
        package_id: str | None = None,
        provider: str | None = None,
    ) -> Payment:
        """Create a pending payment for exactly one of an order or a package."""
        money = self._validate_amount(amount)
        if not order_id and not package_id:
            raise BadRequest("Missing required fields")
        if order_id and package_id:
            raise BadRequest("A payment funds either an order or a package, not both")

        meta: dict = {}
        if order_id:
            order = self.db.query(Order).filter(Order.id == order_id).one_or_none()
            if not order:
                raise NotFound("Order not found")
            if order.user_id != user_id:
                raise Forbidden("Forbidden")
        else:
            package = self.db.query(Package).filter(Package.id == package_id).one_or_none()
            if not package:
                raise NotFound("Package not found")
            if not package.active:
                raise Conflict("Package is not available")
            meta["type"] = "package"

        provider = provider or "tng"
        with atomic(self.db):
            payment = Payment(
                user_id=user_id,
                order_id=order_id,
                package_id=package_id,
                amount=money,
                provider=provider,
                status="pending",
                meta=meta,
            )
            self.db.add(payment)
            self.db.flush()

        logger.info(
            "payment_created",
            extra={
                "payment_id": payment.id,
                "user_id": user_id,
                "order_id": order_id,
                "package_id": package_id,
                "amount": str(money),
                "provider": provider,
            },
        )
        return payment

    def create_cash_payment(self, user_id: str, order_id: str, amount) -> Payment:
        money = self._validate_amount(amount)
        order = self.db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order:
            raise NotFound("Order not found")
        if order.user_id != user_id:
            raise Forbidden("Forbidden")

        with atomic(self.db):
            payment = Payment(
                user_id=user_id,
                order_id=order_id,
                amount=money,
                provider="cash",
                status="pending",
                meta={
                    "payment_type": "cash",
                    "payment_method": "cash",
                    "created_at": self.clock().isoformat(),
                    "note": "Customer selected cash payment; awaiting admin confirmation.",
                },
            )
            self.db.add(payment)
            self.db.flush()

        logger.info(
            "cash_payment_created",
            extra={"payment_id": payment.id, "user_id": user_id, "order_id": order_id, "amount": str(money)},
        )
        return payment

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        try:
            money = to_money(amount)
        except ValueError:
            raise BadRequest("Invalid amount")
        if money <= 0:
            raise BadRequest("Amount must be positive")
        return money

    # ------------------------------------------------------------------
    # Lookup & ownership
    # ------------------------------------------------------------------

    def _get(self, payment_id: str, lock: bool = False) -> Payment | None:
        q = self.db.query(Payment).filter(Payment.id == payment_id)
        if lock:
            q = q.with_for_update()
        return q.one_or_none()

    def _owner_id(self, payment: Payment) -> str:
        """The customer a payment belongs to: the order's owner when there is an order."""
        if payment.order_id:
            order_user = self.db.query(Order.user_id).filter(Order.id == payment.order_id).scalar()
            if order_user:
                return order_user
        return payment.user_id

    def get_payment_for_user(self, payment_id: str, caller: Caller) -> Payment:
        payment = self._get(payment_id)
        if not payment:
            raise NotFound("Payment not found")
        if not caller.is_admin and self._owner_id(payment) != caller.id:
            raise Forbidden("Forbidden")
        return payment

    # ------------------------------------------------------------------
    # Proof submission
    # ------------------------------------------------------------------

    def submit_proof(self, payment_id: str, user_id: str, proof_url: str) -> Payment:
        if not proof_url or not proof_url.strip():
            raise BadRequest("Proof URL is required")
        proof_url = proof_url.strip()

        payment = self._get(payment_id)
        if not payment:
            raise NotFound("Payment not found")
        if self._owner_id(payment) != user_id:
            raise Forbidden("Forbidden")
        if payment.status not in RESUBMITTABLE_STATUSES:
            raise Conflict("Payment already processed")

        now = self.clock()
        with atomic(self.db):
            payment = self._get(payment_id, lock=True)
            if payment.status not in RESUBMITTABLE_STATUSES:
                raise Conflict("Payment already processed")
            old_status = payment.status

            meta = dict(payment.meta or {})
            meta["proofUrl"] = proof_url
            meta["receiptUrl"] = meta.get("receiptUrl") or proof_url
            meta["uploadedAt"] = now.isoformat()
            payment.meta = meta
            payment.status = "pending_verification"
            self.db.add(payment)

            if payment.order_id:
                subject = f"Order #{payment.order_id[:8]} uploaded a payment proof ({format_amount(payment.amount)})"
            else:
                package_name = None
                if payment.package_id:
                    package_name = (
                        self.db.query(Package.name).filter(Package.id == payment.package_id).scalar()
                    )
                subject = f"Package {package_name or payment.package_id or ''} uploaded a payment proof ({format_amount(payment.amount)})"
            self.notifications.notify_admins(
                "payment",
                "Payment proof uploaded",
                subject,
                "/admin/payments",
            )
            self.notifications.notify(
                user_id,
                "payment",
                "Payment proof submitted",
                "Your payment proof has been submitted and is awaiting review.",
                payment.target.action_url,
            )
            self.db.flush()

        payment_transitions_total.labels(status="pending_verification").inc()
        logger.info(
            "payment_proof_submitted",
            extra={
                "payment_id": payment_id,
                "user_id": user_id,
                "old_status": old_status,
                "new_status": "pending_verification",
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(
        self,
        payment_id: str,
        reviewer: Caller,
        transaction_ref: str | None = None,
        notes: str | None = None,
        require_cash: bool = False,
    ) -> Payment:
        """
        Confirm a payment and run its fulfillment in one transaction.
        A second confirm (double click, concurrent reviewer) raises Conflict with no side effects.
        """
        require_admin(reviewer)

        payment = self._get(payment_id)
        if not payment:
            raise NotFound("Payment not found")
        if require_cash and not payment.is_cash:
            raise BadRequest("Only cash payments can be confirmed here")
        if payment.is_confirmed:
            raise Conflict("Payment already confirmed")

        transaction_ref = (transaction_ref or "").strip() or None
        notes = (notes or "").strip() or None
        now = self.clock()
        grant: UserPackage | None = None

        with atomic(self.db):
            payment = self._get(payment_id, lock=True)
            if payment.is_confirmed:
                raise Conflict("Payment already confirmed")

            meta = dict(payment.meta or {})
            if payment.is_cash:
                meta["confirmed_by"] = reviewer.id
                meta["confirmed_at"] = now.isoformat()
                meta["confirmed_by_name"] = reviewer.full_name
            else:
                meta["verifiedAt"] = now.isoformat()
                meta["verifiedBy"] = reviewer.id
            if notes:
                meta["adminNotes"] = notes

            res = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status.notin_(CONFIRMED_STATUSES))
                .values({
                    Payment.status: "success",
                    Payment.transaction_id: transaction_ref,
                    Payment.meta: meta,
                    Payment.updated_at: now,
                })
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                raise Conflict("Payment already confirmed")
            self.db.refresh(payment)

            owner_id = self._owner_id(payment)
            target = payment.target

            if target.kind == "package":
                grant = self._grant_package(payment, owner_id, now)

            if target.kind == "order":
                order = (
                    self.db.query(Order)
                    .filter(Order.id == payment.order_id)
                    .with_for_update()
                    .one_or_none()
                )
                if order and should_advance_order_status(order.status, "success"):
                    order.status = "in_progress"
                    self.db.add(order)
                message = (
                    f"Your payment has been confirmed. Order #{payment.order_id[:8]} is now active."
                )
            elif target.kind == "package":
                message = "Your package payment has been confirmed. Check “My Packages” for details."
            else:
                message = "Your payment has been confirmed."

            self.notifications.notify(owner_id, "payment", "Payment confirmed", message, target.action_url)
            self.db.flush()

        payment_transitions_total.labels(status="success").inc()
        logger.info(
            "payment_confirmed",
            extra={
                "payment_id": payment_id,
                "reviewer_id": reviewer.id,
                "order_id": payment.order_id,
                "package_id": payment.package_id,
                "user_package_id": grant.id if grant else None,
                "amount": str(payment.amount),
                "provider": payment.provider,
            },
        )
        return payment

    def confirm_cash(self, payment_id: str, reviewer: Caller, notes: str | None = None) -> Payment:
        return self.confirm(payment_id, reviewer, notes=notes, require_cash=True)

    def _grant_package(self, payment: Payment, owner_id: str, now: datetime) -> UserPackage:
        """Create the single UserPackage a confirmed package payment is entitled to."""
        existing = (
            self.db.query(UserPackage)
            .filter(UserPackage.payment_id == payment.id)
            .one_or_none()
        )
        if existing:
            return existing

        package = self.db.query(Package).filter(Package.id == payment.package_id).one_or_none()
        if not package:
            logger.error(
                "payment_package_missing",
                extra={"payment_id": payment.id, "package_id": payment.package_id},
            )
            raise NotFound("Package not found")

        grant = UserPackage(
            user_id=owner_id,
            package_id=package.id,
            payment_id=payment.id,
            remaining=package.times,
            original_times=package.times,
            status="active",
            expiry=now + timedelta(days=package.validity_days),
        )
        self.db.add(grant)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise Conflict("Package already granted for this payment") from e

        package_grants_total.inc()
        return grant

    # ------------------------------------------------------------------
    # Rejection
    # ------------------------------------------------------------------

    def reject(self, payment_id: str, reviewer: Caller, reason: str) -> Payment:
        require_admin(reviewer)
        reason = (reason or "").strip()
        if not reason:
            raise BadRequest("Reject reason is required")

        payment = self._get(payment_id)
        if not payment:
            raise NotFound("Payment not found")
        if payment.is_confirmed:
            raise Conflict("Payment already confirmed")

        now = self.clock()
        with atomic(self.db):
            payment = self._get(payment_id, lock=True)
            if payment.is_confirmed:
                raise Conflict("Payment already confirmed")
            old_status = payment.status

            meta = dict(payment.meta or {})
            meta["rejectedAt"] = now.isoformat()
            meta["rejectReason"] = reason
            meta["rejectedBy"] = reviewer.id
            payment.meta = meta
            payment.status = "rejected"
            self.db.add(payment)

            if payment.order_id:
                order = (
                    self.db.query(Order)
                    .filter(Order.id == payment.order_id)
                    .with_for_update()
                    .one_or_none()
                )
                if order:
                    order.status = "payment_rejected"
                    self.db.add(order)

            self.notifications.notify(
                self._owner_id(payment),
                "payment",
                "Payment rejected",
                f"Your payment was rejected. Reason: {reason}. Please resubmit a valid receipt.",
                payment.target.action_url,
            )
            self.db.flush()

        payment_transitions_total.labels(status="rejected").inc()
        logger.info(
            "payment_rejected",
            extra={
                "payment_id": payment_id,
                "reviewer_id": reviewer.id,
                "order_id": payment.order_id,
                "old_status": old_status,
                "reason": reason,
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_pending_payments(self, page: int = 1, limit: int = 20) -> PendingPaymentsPage:
        page = max(1, int(page or 1))
        limit = max(1, int(limit or 20))
        q = self.db.query(Payment).filter(
            or_(
                and_(Payment.provider != "cash", Payment.status == "pending_verification"),
                and_(Payment.provider == "cash", Payment.status.in_(("pending", "pending_verification"))),
            )
        )
        total = q.count()
        payments = (
            q.order_by(Payment.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return PendingPaymentsPage(
            payments=payments,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    def get_user_payments(self, user_id: str, limit: int = 50) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )
