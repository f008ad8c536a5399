"""Tests for settings validation, error taxonomy, money helpers and JSON logging."""
import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import BadRequest, Conflict, ErrorKind, Forbidden, InsufficientBalance, LedgerError, NotFound
from app.core.logging import JsonFormatter
from app.schemas.payments import PaymentTarget
from app.schemas.users import Caller
from app.utils.currency import format_amount, to_money

REQUIRED = {
    "database_url": "sqlite://",
    "redis_url": "redis://localhost:6379/0",
    "celery_broker_url": "redis://localhost:6379/1",
    "celery_result_backend": "redis://localhost:6379/2",
}


class TestSettings:
    def test_defaults(self):
        s = Settings(**REQUIRED)
        assert s.order_pending_timeout_hours == 48
        assert s.order_in_progress_warning_hours == 72
        assert s.order_completion_reminder_hours == 24
        assert s.admin_roles_set == {"admin", "super_admin"}

    def test_non_positive_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, order_pending_timeout_hours=0)

    def test_negative_reward_rate_rejected(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, points_reward_rate=-0.1)

    def test_empty_admin_roles_rejected(self):
        with pytest.raises(ValidationError):
            Settings(**REQUIRED, admin_roles=" , ")

    def test_admin_roles_normalized(self):
        s = Settings(**REQUIRED, admin_roles="Admin, Reviewer")
        assert s.admin_roles_set == {"admin", "reviewer"}


class TestErrors:
    @pytest.mark.parametrize(
        "exc_cls,kind,status",
        [
            (NotFound, ErrorKind.NOT_FOUND, 404),
            (Forbidden, ErrorKind.FORBIDDEN, 403),
            (Conflict, ErrorKind.CONFLICT, 409),
            (BadRequest, ErrorKind.BAD_REQUEST, 400),
            (InsufficientBalance, ErrorKind.INSUFFICIENT_BALANCE, 409),
        ],
    )
    def test_kinds_and_status(self, exc_cls, kind, status):
        err = exc_cls("nope")
        assert isinstance(err, LedgerError)
        assert err.kind is kind
        assert err.status_code == status
        assert err.as_dict() == {"code": kind.value, "message": "nope"}
        assert str(err) == "nope"


class TestMoney:
    def test_to_money_rounds_half_up(self):
        assert to_money("12.345") == Decimal("12.35")
        assert to_money(10) == Decimal("10.00")
        assert to_money(0.1) == Decimal("0.10")

    def test_to_money_invalid(self):
        with pytest.raises(ValueError):
            to_money("twelve")

    def test_format_amount(self):
        assert format_amount(Decimal("12.5")) == "RM 12.50"
        assert format_amount(None) == "RM 0.00"


class TestIdentityAndTargets:
    def test_caller_admin_roles(self):
        assert Caller(id="a", role="admin").is_admin is True
        assert Caller(id="a", role="SUPER_ADMIN").is_admin is True
        assert Caller(id="c").is_admin is False

    def test_payment_target_links(self):
        assert PaymentTarget.for_order("o1").action_url == "/orders/o1"
        assert PaymentTarget.for_package("p1").action_url == "/profile/packages"
        assert PaymentTarget.none().kind == "none"


def test_json_formatter_includes_whitelisted_extras():
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "payment_confirmed", None, None)
    record.payment_id = "p1"
    record.amount = Decimal("10.00")
    record.secret = "hidden"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "payment_confirmed"
    assert payload["payment_id"] == "p1"
    assert payload["amount"] == "10.00"
    assert "secret" not in payload
