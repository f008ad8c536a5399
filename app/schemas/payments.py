"""
Payment DTOs: PaymentTarget (what a payment funds) and the pending-review page.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class PaymentTarget(BaseModel):
    """Tagged target of a payment: an order, a package purchase, or nothing (store credit)."""

    kind: Literal["order", "package", "none"]
    id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def for_order(cls, order_id: str) -> "PaymentTarget":
        return cls(kind="order", id=order_id)

    @classmethod
    def for_package(cls, package_id: str) -> "PaymentTarget":
        return cls(kind="package", id=package_id)

    @classmethod
    def none(cls) -> "PaymentTarget":
        return cls(kind="none")

    @property
    def action_url(self) -> str:
        """Where the owner is sent from a payment notification."""
        if self.kind == "order":
            return f"/orders/{self.id}"
        return "/profile/packages"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PendingPaymentsPage(BaseModel):
    payments: list[Any] = Field(default_factory=list, description="Payment rows awaiting review")
    pagination: Pagination

    model_config = {"arbitrary_types_allowed": True}
