import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFound
from app.models.notification import Notification
from app.models.user import User
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Creates Notification rows in the caller's session, so they commit or roll back
    together with the ledger mutation that produced them. Delivery (push/SMS) is external.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        action_url: str | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            read=False,
            created_at=self.clock(),
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def admin_ids(self) -> list[str]:
        rows = (
            self.db.query(User.id)
            .filter(func.lower(User.role).in_(settings.admin_roles_set))
            .order_by(User.created_at)
            .all()
        )
        return [row.id for row in rows]

    def notify_admins(
        self,
        type: str,
        title: str,
        message: str,
        action_url: str | None = None,
        admin_ids: list[str] | None = None,
    ) -> list[Notification]:
        ids = admin_ids if admin_ids is not None else self.admin_ids()
        return [self.notify(admin_id, type, title, message, action_url) for admin_id in ids]

    def exists(
        self,
        title_contains: str,
        action_url: str,
        user_id: str | None = None,
        since: datetime | None = None,
    ) -> bool:
        """Dedupe guard: has a matching notification already been created?"""
        q = self.db.query(Notification.id).filter(
            Notification.title.contains(title_contains),
            Notification.action_url == action_url,
        )
        if user_id is not None:
            q = q.filter(Notification.user_id == user_id)
        if since is not None:
            q = q.filter(Notification.created_at > since)
        return q.first() is not None

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int | None = None
    ) -> tuple[list[Notification], int]:
        """Return (notifications newest first, unread count)."""
        q = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            q = q.filter(Notification.read.is_(False))
        q = q.order_by(Notification.created_at.desc())
        if limit:
            q = q.limit(limit)
        unread = (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .scalar()
            or 0
        )
        return q.all(), unread

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .one_or_none()
        )
        if not notification:
            raise NotFound("Notification not found")
        notification.read = True
        self.db.add(notification)
        self.db.commit()
        return notification

    def mark_all_read(self, user_id: str) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
        self.db.commit()
        logger.info("notifications_marked_read", extra={"user_id": user_id, "count": updated})
        return updated
