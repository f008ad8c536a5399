"""
Celery beat task: order lifecycle automation (timeouts, stall warnings, pickup reminders).
Runs single-flight: an overlapping trigger is skipped while a run holds the lock.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.orders.config import get_lock_ttl_seconds, get_task_time_limits
from app.services.idempotency import RunLock
from app.services.orders.automation import OrderAutomationService

logger = logging.getLogger(__name__)

LOCK_NAME = "order_automation"
SOFT_TIME_LIMIT, TIME_LIMIT = get_task_time_limits()


@celery_app.task(
    name="app.workers.tasks.order_automation.run_order_automation",
    time_limit=TIME_LIMIT,
    soft_time_limit=SOFT_TIME_LIMIT,
)
def run_order_automation() -> dict:
    """Run all automation passes and return {cancelled_orders, warning_orders, reminders}."""
    lock = RunLock(LOCK_NAME, get_lock_ttl_seconds())
    if not lock.acquire():
        logger.info("order_automation_skipped", extra={"reason": "already_running"})
        return {"ok": True, "skipped": "already_running"}

    db = SessionLocal()
    try:
        summary = OrderAutomationService(db).run()
        return {"ok": True, **summary.model_dump()}
    except Exception:
        db.rollback()
        logger.exception("order_automation_error")
        return {"ok": False, "error": "exception"}
    finally:
        db.close()
        lock.release()
