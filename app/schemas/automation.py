from pydantic import BaseModel, Field


class PassResult(BaseModel):
    """Outcome of one automation pass: how many orders were acted upon, and which."""

    count: int = 0
    ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_ids(cls, ids: list[str]) -> "PassResult":
        return cls(count=len(ids), ids=list(ids))


class AutomationSummary(BaseModel):
    cancelled_orders: PassResult
    warning_orders: PassResult
    reminders: PassResult


class AutomationStats(BaseModel):
    pending_orders_count: int
    pending_orders_near_timeout: int
    in_progress_orders_count: int
    in_progress_orders_overdue: int
    completed_awaiting_pickup: int
