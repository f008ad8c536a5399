"""
Role checks for already-authenticated callers. Identity itself is issued elsewhere.
"""
from app.core.errors import Forbidden
from app.schemas.users import Caller


def require_admin(caller: Caller | None) -> Caller:
    """Raise Forbidden unless the caller holds an admin role."""
    if caller is None or not caller.is_admin:
        raise Forbidden("Admin privileges required")
    return caller


def require_owner_or_admin(caller: Caller, owner_id: str | None) -> None:
    if caller.is_admin:
        return
    if owner_id is None or caller.id != owner_id:
        raise Forbidden("Forbidden")
