from pydantic import BaseModel

from app.core.config import settings


class Caller(BaseModel):
    """Authenticated identity passed explicitly into every core operation."""

    id: str
    role: str = "customer"
    full_name: str | None = None

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role.lower() in settings.admin_roles_set
