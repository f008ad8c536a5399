"""Tests for OrderAutomationService — timeout cancellation, stall warnings, pickup reminders."""
from datetime import timedelta
from unittest.mock import MagicMock, patch

from app.models.notification import Notification
from app.models.order import Order
from app.utils.time import ensure_utc
from app.services.orders.automation import (
    REMINDER_MARKER,
    WARNING_MARKER,
    OrderAutomationService,
)


def _statuses(db, orders):
    return {o.id: db.get(Order, o.id).status for o in orders}


class TestTimeoutCancellation:
    def test_unpaid_order_past_timeout_is_cancelled(self, db, make_user, make_order, clock):
        user = make_user()
        order = make_order(user, age=timedelta(hours=49))

        result = OrderAutomationService(db, clock=clock).cancel_timed_out_orders()

        assert result.count == 1
        assert result.ids == [order.id]
        assert db.get(Order, order.id).status == "cancelled"
        note = db.query(Notification).filter(Notification.user_id == user.id).one()
        assert note.action_url == f"/orders/{order.id}"
        assert "48 hours" in note.message

    def test_paid_order_is_never_cancelled(self, db, make_user, make_order, make_payment, clock):
        user = make_user()
        order = make_order(user, age=timedelta(hours=49))
        make_payment(user, order=order, status="success")

        result = OrderAutomationService(db, clock=clock).cancel_timed_out_orders()

        assert result.count == 0
        assert db.get(Order, order.id).status == "pending"

    def test_legacy_completed_payment_also_protects(self, db, make_user, make_order, make_payment, clock):
        user = make_user()
        order = make_order(user, age=timedelta(hours=49))
        make_payment(user, order=order, status="completed", provider="cash")

        assert OrderAutomationService(db, clock=clock).cancel_timed_out_orders().count == 0

    def test_young_and_package_orders_are_kept(self, db, make_user, make_order, clock):
        user = make_user()
        young = make_order(user, age=timedelta(hours=47))
        package_funded = make_order(user, age=timedelta(hours=60), use_package=True)

        result = OrderAutomationService(db, clock=clock).cancel_timed_out_orders()

        assert result.count == 0
        assert _statuses(db, [young, package_funded]) == {
            young.id: "pending",
            package_funded.id: "pending",
        }

    def test_rerun_is_idempotent(self, db, make_user, make_order, clock):
        user = make_user()
        make_order(user, age=timedelta(hours=49))
        svc = OrderAutomationService(db, clock=clock)

        svc.cancel_timed_out_orders()
        second = svc.cancel_timed_out_orders()

        assert second.count == 0
        assert db.query(Notification).count() == 1

    def test_one_failure_does_not_abort_siblings(self, db, make_user, make_order, clock):
        user = make_user()
        orders = [make_order(user, age=timedelta(hours=50)) for _ in range(2)]
        svc = OrderAutomationService(db, clock=clock)

        with patch.object(svc.notifications, "notify", side_effect=[RuntimeError("boom"), MagicMock()]):
            result = svc.cancel_timed_out_orders()

        assert result.count == 1
        assert sorted(_statuses(db, orders).values()) == ["cancelled", "pending"]


class TestStallWarnings:
    def test_admins_warned_once(self, db, make_user, make_order, admin, now, clock):
        second_admin = make_user(role="admin")
        customer = make_user(full_name="Ali")
        order = make_order(customer, status="in_progress", updated_at=now - timedelta(hours=73))
        svc = OrderAutomationService(db, clock=clock)

        first = svc.check_in_progress_warnings()
        second = svc.check_in_progress_warnings()

        assert first.ids == [order.id]
        assert second.count == 0
        warnings = (
            db.query(Notification)
            .filter(Notification.action_url == f"/admin/orders/{order.id}")
            .all()
        )
        assert {w.user_id for w in warnings} == {admin.id, second_admin.id}
        assert all(WARNING_MARKER in w.title for w in warnings)
        assert "Ali" in warnings[0].message

    def test_recent_orders_not_flagged(self, db, make_user, make_order, admin, now, clock):
        customer = make_user()
        make_order(customer, status="in_progress", updated_at=now - timedelta(hours=10))
        assert OrderAutomationService(db, clock=clock).check_in_progress_warnings().count == 0

    def test_no_admins_means_no_warning(self, db, make_user, make_order, now, clock):
        customer = make_user()
        make_order(customer, status="in_progress", updated_at=now - timedelta(hours=100))
        assert OrderAutomationService(db, clock=clock).check_in_progress_warnings().count == 0
        assert db.query(Notification).count() == 0


class TestPickupReminders:
    def test_reminder_sent_once_inside_window(self, db, make_user, make_order, now, clock):
        customer = make_user()
        due = make_order(customer, status="completed", completed_at=now - timedelta(hours=23, minutes=30))
        make_order(customer, status="completed", completed_at=now - timedelta(hours=30))
        make_order(customer, status="completed", completed_at=now - timedelta(hours=2))
        svc = OrderAutomationService(db, clock=clock)

        first = svc.send_pickup_reminders()
        second = svc.send_pickup_reminders()

        assert first.ids == [due.id]
        assert second.count == 0
        reminder = db.query(Notification).filter(Notification.user_id == customer.id).one()
        assert REMINDER_MARKER in reminder.title
        assert reminder.action_url == f"/orders/{due.id}"


class TestRunAndStats:
    def test_run_summarizes_all_passes(self, db, make_user, make_order, admin, now, clock):
        customer = make_user()
        timed_out = make_order(customer, age=timedelta(hours=49))
        stalled = make_order(customer, status="in_progress", updated_at=now - timedelta(hours=80))
        picked = make_order(customer, status="completed", completed_at=now - timedelta(hours=23, minutes=45))

        summary = OrderAutomationService(db, clock=clock).run()

        assert summary.cancelled_orders.ids == [timed_out.id]
        assert summary.warning_orders.ids == [stalled.id]
        assert summary.reminders.ids == [picked.id]
        assert summary.model_dump()["reminders"] == {"count": 1, "ids": [picked.id]}

    def test_failed_pass_does_not_skip_others(self, db, make_user, make_order, now, clock):
        customer = make_user()
        picked = make_order(customer, status="completed", completed_at=now - timedelta(hours=23, minutes=45))
        svc = OrderAutomationService(db, clock=clock)

        with patch.object(svc, "cancel_timed_out_orders", side_effect=RuntimeError("db down")):
            summary = svc.run()

        assert summary.cancelled_orders.count == 0
        assert summary.reminders.ids == [picked.id]

    def test_stats(self, db, make_user, make_order, now, clock):
        customer = make_user()
        make_order(customer, age=timedelta(hours=1))
        make_order(customer, age=timedelta(hours=40))
        make_order(customer, status="in_progress", updated_at=now - timedelta(hours=1))
        make_order(customer, status="in_progress", updated_at=now - timedelta(hours=80))
        make_order(customer, status="completed", completed_at=now - timedelta(days=2))
        make_order(customer, status="completed", completed_at=now - timedelta(days=9))

        stats = OrderAutomationService(db, clock=clock).get_stats()

        assert stats.pending_orders_count == 2
        assert stats.pending_orders_near_timeout == 1
        assert stats.in_progress_orders_count == 2
        assert stats.in_progress_orders_overdue == 1
        assert stats.completed_awaiting_pickup == 1


class TestInjectedClock:
    def test_warning_dedupe_follows_service_clock(self, db, make_user, make_order, admin, now):
        later = now + timedelta(days=10)
        customer = make_user()
        order = make_order(customer, status="in_progress", updated_at=later - timedelta(hours=100))
        svc = OrderAutomationService(db, clock=lambda: later)

        first = svc.check_in_progress_warnings()
        second = svc.check_in_progress_warnings()

        assert first.ids == [order.id]
        assert second.count == 0
        warning = db.query(Notification).filter(Notification.user_id == admin.id).one()
        assert ensure_utc(warning.created_at) == later

    def test_reminder_dedupe_follows_service_clock(self, db, make_user, make_order, now):
        later = now + timedelta(days=10)
        customer = make_user()
        make_order(customer, status="completed", completed_at=later - timedelta(hours=23, minutes=30))
        svc = OrderAutomationService(db, clock=lambda: later)

        assert svc.send_pickup_reminders().count == 1
        assert svc.send_pickup_reminders().count == 0


class TestDedupeLookupFailures:
    def test_failed_warning_lookup_skips_only_that_order(self, db, make_user, make_order, admin, now, clock):
        customer = make_user()
        for _ in range(2):
            make_order(customer, status="in_progress", updated_at=now - timedelta(hours=100))
        svc = OrderAutomationService(db, clock=clock)

        with patch.object(svc.notifications, "exists", side_effect=[RuntimeError("db down"), False]):
            result = svc.check_in_progress_warnings()

        assert result.count == 1
        assert db.query(Notification).filter(Notification.user_id == admin.id).count() == 1

    def test_failed_reminder_lookup_skips_only_that_order(self, db, make_user, make_order, now, clock):
        customer = make_user()
        for _ in range(2):
            make_order(customer, status="completed", completed_at=now - timedelta(hours=23, minutes=30))
        svc = OrderAutomationService(db, clock=clock)

        with patch.object(svc.notifications, "exists", side_effect=[RuntimeError("db down"), False]):
            result = svc.send_pickup_reminders()

        assert result.count == 1
        assert db.query(Notification).filter(Notification.user_id == customer.id).count() == 1
