"""
OrderAutomationService — periodic order lifecycle passes.

- Timeout cancellation of unpaid pending orders
- Stall warnings to admins for orders stuck in progress
- Pickup reminders to owners shortly after completion

Each pass is idempotent per order and isolates failures per order.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import exists, func, update
from sqlalchemy.orm import Session

from app.db.session import atomic
from app.models.order import Order
from app.models.payment import CONFIRMED_STATUSES, Payment
from app.models.user import User
from app.orders.config import (
    NEAR_TIMEOUT_MARGIN,
    PICKUP_STATS_WINDOW,
    get_completion_reminder,
    get_in_progress_warning,
    get_pending_timeout,
    get_reminder_window,
)
from app.schemas.automation import AutomationStats, AutomationSummary, PassResult
from app.services.notifications.service import NotificationService
from app.utils.metrics import (
    order_automation_actions_total,
    order_automation_duration_seconds,
    order_automation_failures_total,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

CANCELLED_TITLE = "Order automatically cancelled"
WARNING_MARKER = "Order processing overdue"
WARNING_TITLE = f"⚠️ {WARNING_MARKER}"
REMINDER_MARKER = "Pickup reminder"
REMINDER_TITLE = f"🏸 {REMINDER_MARKER}"


def _has_confirmed_payment():
    return exists().where(
        Payment.order_id == Order.id,
        Payment.status.in_(CONFIRMED_STATUSES),
    )


def _hours(delta) -> int:
    return int(delta.total_seconds() // 3600)


class OrderAutomationService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.notifications = NotificationService(db, clock=clock)

    def _timed_out_query(self, cutoff: datetime):
        return self.db.query(Order).filter(
            Order.status == "pending",
            Order.use_package.is_(False),
            Order.created_at < cutoff,
            ~_has_confirmed_payment(),
        )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def cancel_timed_out_orders(self) -> PassResult:
        timeout = get_pending_timeout()
        cutoff = self.clock() - timeout
        candidates = [(o.id, o.user_id) for o in self._timed_out_query(cutoff).all()]

        cancelled: list[str] = []
        for order_id, user_id in candidates:
            try:
                with atomic(self.db):
                    res = self.db.execute(
                        update(Order)
                        .where(
                            Order.id == order_id,
                            Order.status == "pending",
                            ~_has_confirmed_payment(),
                        )
                        .values(status="cancelled", updated_at=self.clock())
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount == 0:
                        # Paid or moved on since the scan
                        continue
                    self.notifications.notify(
                        user_id,
                        "order",
                        CANCELLED_TITLE,
                        f"Your order was cancelled automatically because it was not paid within "
                        f"{_hours(timeout)} hours. Please place a new order to continue.",
                        f"/orders/{order_id}",
                    )
                cancelled.append(order_id)
                order_automation_actions_total.labels(action="cancelled").inc()
                logger.info("order_auto_cancelled", extra={"order_id": order_id, "user_id": user_id})
            except Exception:
                order_automation_failures_total.labels(action="cancelled").inc()
                logger.exception("order_auto_cancel_failed", extra={"order_id": order_id})

        return PassResult.from_ids(cancelled)

    def check_in_progress_warnings(self) -> PassResult:
        threshold = get_in_progress_warning()
        warning_date = self.clock() - threshold
        overdue = (
            self.db.query(Order.id, User.full_name)
            .outerjoin(User, User.id == Order.user_id)
            .filter(Order.status == "in_progress", Order.updated_at < warning_date)
            .all()
        )
        if not overdue:
            return PassResult()

        admin_ids = self.notifications.admin_ids()
        if not admin_ids:
            logger.warning("order_warning_no_admins", extra={"count": len(overdue)})
            return PassResult()

        warned: list[str] = []
        for order_id, full_name in overdue:
            action_url = f"/admin/orders/{order_id}"
            try:
                if self.notifications.exists(WARNING_MARKER, action_url, since=warning_date):
                    continue
                with atomic(self.db):
                    self.notifications.notify_admins(
                        "system",
                        WARNING_TITLE,
                        f"Order {order_id[:8]} ({full_name or 'customer'}) has been in progress for more "
                        f"than {_hours(threshold)} hours. Please follow up.",
                        action_url,
                        admin_ids=admin_ids,
                    )
                warned.append(order_id)
                order_automation_actions_total.labels(action="warning").inc()
                logger.info("order_stall_warning_sent", extra={"order_id": order_id, "count": len(admin_ids)})
            except Exception:
                self.db.rollback()
                order_automation_failures_total.labels(action="warning").inc()
                logger.exception("order_stall_warning_failed", extra={"order_id": order_id})

        return PassResult.from_ids(warned)

    def send_pickup_reminders(self) -> PassResult:
        window_start = self.clock() - get_completion_reminder()
        window_end = window_start + get_reminder_window()
        completed = (
            self.db.query(Order.id, Order.user_id)
            .filter(
                Order.status == "completed",
                Order.completed_at >= window_start,
                Order.completed_at < window_end,
            )
            .all()
        )

        reminded: list[str] = []
        for order_id, user_id in completed:
            action_url = f"/orders/{order_id}"
            try:
                if self.notifications.exists(REMINDER_MARKER, action_url, user_id=user_id):
                    continue
                with atomic(self.db):
                    self.notifications.notify(
                        user_id,
                        "order",
                        REMINDER_TITLE,
                        "Your racket has been restrung. Please pick it up at the store!",
                        action_url,
                    )
                reminded.append(order_id)
                order_automation_actions_total.labels(action="reminder").inc()
                logger.info("order_pickup_reminder_sent", extra={"order_id": order_id, "user_id": user_id})
            except Exception:
                self.db.rollback()
                order_automation_failures_total.labels(action="reminder").inc()
                logger.exception("order_pickup_reminder_failed", extra={"order_id": order_id})

        return PassResult.from_ids(reminded)

    def run(self) -> AutomationSummary:
        """Run all three passes. Each pass stands alone; one failing does not skip the others."""
        with order_automation_duration_seconds.time():
            summary = AutomationSummary(
                cancelled_orders=self._run_pass("cancelled", self.cancel_timed_out_orders),
                warning_orders=self._run_pass("warning", self.check_in_progress_warnings),
                reminders=self._run_pass("reminder", self.send_pickup_reminders),
            )
        logger.info(
            "order_automation_done",
            extra={
                "count": summary.cancelled_orders.count
                + summary.warning_orders.count
                + summary.reminders.count,
                "ids": {
                    "cancelled": summary.cancelled_orders.ids,
                    "warning": summary.warning_orders.ids,
                    "reminder": summary.reminders.ids,
                },
            },
        )
        return summary

    def _run_pass(self, action: str, fn: Callable[[], PassResult]) -> PassResult:
        try:
            return fn()
        except Exception:
            self.db.rollback()
            order_automation_failures_total.labels(action=action).inc()
            logger.exception("order_automation_pass_failed", extra={"kind": action})
            return PassResult()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> AutomationStats:
        now = self.clock()

        def count(*criteria) -> int:
            return self.db.query(func.count(Order.id)).filter(*criteria).scalar() or 0

        near_timeout_cutoff = now - (get_pending_timeout() - NEAR_TIMEOUT_MARGIN)
        return AutomationStats(
            pending_orders_count=count(Order.status == "pending"),
            pending_orders_near_timeout=count(
                Order.status == "pending",
                Order.use_package.is_(False),
                Order.created_at < near_timeout_cutoff,
                ~_has_confirmed_payment(),
            ),
            in_progress_orders_count=count(Order.status == "in_progress"),
            in_progress_orders_overdue=count(
                Order.status == "in_progress",
                Order.updated_at < now - get_in_progress_warning(),
            ),
            completed_awaiting_pickup=count(
                Order.status == "completed",
                Order.completed_at >= now - PICKUP_STATS_WINDOW,
            ),
        )
