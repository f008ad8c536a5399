import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import Conflict, NotFound
from app.db.session import atomic
from app.models.order import Order
from app.models.payment import CONFIRMED_STATUSES, Payment
from app.orders.config import calc_reward_points
from app.schemas.users import Caller
from app.services.auth.roles import require_admin, require_owner_or_admin
from app.services.notifications.service import NotificationService
from app.services.points.service import PointsLedgerService
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class OrderService:
    """Order reads and the admin completion step that feeds rewards and pickup reminders."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.points = PointsLedgerService(db)
        self.notifications = NotificationService(db, clock=clock)

    def get_order(self, order_id: str, caller: Caller) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order:
            raise NotFound("Order not found")
        require_owner_or_admin(caller, order.user_id)
        return order

    def _reward_base(self, order: Order):
        """Amount of the latest confirmed payment, falling back to the order's final price."""
        paid = (
            self.db.query(Payment.amount)
            .filter(Payment.order_id == order.id, Payment.status.in_(CONFIRMED_STATUSES))
            .order_by(Payment.created_at.desc())
            .first()
        )
        if paid:
            return paid.amount
        return order.final_price

    def complete_order(self, order_id: str, admin: Caller, admin_notes: str | None = None) -> Order:
        require_admin(admin)
        order = self.db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order:
            raise NotFound("Order not found")
        if order.status != "in_progress":
            raise Conflict("Only in-progress orders can be completed")

        now = self.clock()
        points = 0
        with atomic(self.db):
            values = {"status": "completed", "completed_at": now, "updated_at": now}
            if admin_notes:
                values["admin_notes"] = admin_notes.strip()
            res = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == "in_progress")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                raise Conflict("Only in-progress orders can be completed")
            self.db.refresh(order)

            points = calc_reward_points(self._reward_base(order))
            if points > 0:
                self.points.credit(
                    order.user_id,
                    points,
                    "order",
                    reference_id=order.id,
                    description=f"Order #{order.id[:8]} completed",
                )

            message = f"Your order #{order.id[:8]} is ready for pickup."
            if points > 0:
                message += f" You earned {points} points."
            self.notifications.notify(order.user_id, "order", "Order completed", message, f"/orders/{order.id}")

        logger.info(
            "order_completed",
            extra={"order_id": order_id, "user_id": order.user_id, "reviewer_id": admin.id, "points": points},
        )
        return order
