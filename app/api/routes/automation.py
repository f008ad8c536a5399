"""
Order automation trigger for external cron services.
POST runs the passes now (single-flight, same as the beat task); GET returns stats.
"""
import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.services.orders.automation import OrderAutomationService
from app.utils.time import utcnow
from app.workers.tasks.order_automation import run_order_automation

router = APIRouter(prefix="/admin/cron", tags=["automation"])


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    secret = settings.cron_secret
    if not secret or not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/order-automation", dependencies=[Depends(verify_cron_secret)])
def trigger_order_automation() -> dict:
    results = run_order_automation()
    return {
        "ok": results.get("ok", False),
        "message": "Order automation completed",
        "results": results,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/order-automation", dependencies=[Depends(verify_cron_secret)])
def order_automation_stats(db: Session = Depends(get_db)) -> dict:
    stats = OrderAutomationService(db).get_stats()
    return {"ok": True, "stats": stats.model_dump(), "timestamp": utcnow().isoformat()}
