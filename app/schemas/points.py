from datetime import datetime

from pydantic import BaseModel


class PointsLogOut(BaseModel):
    id: str
    amount: int
    type: str
    reference_id: str | None = None
    description: str
    balance_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class PointsSummary(BaseModel):
    balance: int
    logs: list[PointsLogOut]


class PointsStats(BaseModel):
    total_points: int
    earned_this_month: int
    redeemed_this_month: int
    total_earned: int
    total_spent: int
