from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel


class RedeemableVoucher(BaseModel):
    id: str
    code: str
    name: str
    discount_type: str  # fixed / percentage
    discount_value: Decimal
    min_purchase: Decimal
    points_cost: int
    valid_from: datetime
    valid_until: datetime
    owned_count: int
    max_per_user: int
    remaining_redemptions: int

    @property
    def can_redeem(self) -> bool:
        return self.remaining_redemptions > 0


class RedemptionResult(BaseModel):
    """Grant created by a redemption, plus the points balance after it."""

    user_voucher: Any
    voucher_name: str
    points_spent: int
    balance: int

    model_config = {"arbitrary_types_allowed": True}


class VoucherStats(BaseModel):
    total: int
    used: int
    active: int
    expired: int
    usage_rate: int  # percent
