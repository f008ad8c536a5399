import logging

import redis
from redis.exceptions import LockError

from app.core.config import settings

logger = logging.getLogger(__name__)


class RunLock:
    """Single-flight lock for periodic jobs, backed by redis-py's token lock (atomic Lua release)."""

    def __init__(self, name: str, ttl_seconds: int, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.lock = self.client.lock(self.key, timeout=ttl_seconds, blocking=False)

    def acquire(self) -> bool:
        return bool(self.lock.acquire(blocking=False))

    def release(self) -> None:
        try:
            self.lock.release()
        except LockError:
            # Expired and possibly taken by the next run; that holder keeps it
            logger.warning("run_lock_lost", extra={"kind": self.key})
