"""
Order automation policy — typed wrappers over app.core.config.settings.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_FLOOR, Decimal

from app.core.config import settings

# Pending orders this close to the timeout count as "near timeout" in stats
NEAR_TIMEOUT_MARGIN = timedelta(hours=12)
PICKUP_STATS_WINDOW = timedelta(days=7)
TASK_LOCK_MARGIN_SECONDS = 5


def get_pending_timeout() -> timedelta:
    return timedelta(hours=settings.order_pending_timeout_hours)


def get_in_progress_warning() -> timedelta:
    return timedelta(hours=settings.order_in_progress_warning_hours)


def get_completion_reminder() -> timedelta:
    return timedelta(hours=settings.order_completion_reminder_hours)


def get_reminder_window() -> timedelta:
    return timedelta(minutes=settings.order_reminder_window_minutes)


def get_lock_ttl_seconds() -> int:
    return settings.order_automation_lock_ttl_seconds


def get_task_time_limits() -> tuple[int, int]:
    """(soft, hard) task time limits; the hard limit ends a run before its lock expires."""
    ttl = get_lock_ttl_seconds()
    hard = max(ttl - TASK_LOCK_MARGIN_SECONDS, 1)
    soft = max(hard - TASK_LOCK_MARGIN_SECONDS, 1)
    return soft, hard


def get_reward_rate() -> float:
    return settings.points_reward_rate


def calc_reward_points(amount) -> int:
    """Points earned for a completed order: floor(amount * reward rate), never negative."""
    if amount is None:
        return 0
    points = int((Decimal(str(amount)) * Decimal(str(get_reward_rate()))).to_integral_value(rounding=ROUND_FLOOR))
    return max(points, 0)
