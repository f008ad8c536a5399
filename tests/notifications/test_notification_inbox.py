"""Tests for NotificationService — admin fan-out, dedupe lookups, inbox."""
from datetime import timedelta

import pytest

from app.core.errors import NotFound
from app.services.notifications.service import NotificationService


def test_notify_admins_targets_admin_roles_only(db, make_user, admin):
    super_admin = make_user(role="super_admin")
    make_user(role="customer")
    svc = NotificationService(db)

    rows = svc.notify_admins("payment", "Payment proof uploaded", "Order #1", "/admin/payments")
    db.commit()

    assert {r.user_id for r in rows} == {admin.id, super_admin.id}


def test_exists_matches_title_fragment_and_link(db, make_user, now):
    user = make_user()
    svc = NotificationService(db)
    svc.notify(user.id, "order", "🏸 Pickup reminder", "Ready", "/orders/o1")
    db.commit()

    assert svc.exists("Pickup reminder", "/orders/o1", user_id=user.id) is True
    assert svc.exists("Pickup reminder", "/orders/o2", user_id=user.id) is False
    assert svc.exists("Pickup reminder", "/orders/o1", since=now + timedelta(hours=1)) is False


def test_inbox_read_flow(db, make_user):
    user, other = make_user(), make_user()
    svc = NotificationService(db)
    first = svc.notify(user.id, "payment", "Payment confirmed", "ok", "/orders/o1")
    svc.notify(user.id, "order", "Order completed", "ready", "/orders/o1")
    db.commit()

    items, unread = svc.list_for_user(user.id)
    assert len(items) == 2
    assert unread == 2

    svc.mark_read(user.id, first.id)
    assert svc.list_for_user(user.id, unread_only=True)[1] == 1

    with pytest.raises(NotFound):
        svc.mark_read(other.id, first.id)

    assert svc.mark_all_read(user.id) == 1
    assert svc.list_for_user(user.id)[1] == 0
