from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

GATEWAYS = ("VNPAY", "ZALOPAY", "MOMO")
Gateway = Literal["VNPAY", "ZALOPAY", "MOMO"]

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"
TERMINAL_STATUSES = (SUCCESS, FAILED)
OrderStatus = Literal["PENDING", "SUCCESS", "FAILED"]


class RechargeOrder(Document):
    """One attempt to buy coins through a payment gateway.

    order_code is the correlation key sent to the gateway and never changes.
    status leaves PENDING exactly once, through a conditional update.
    """
    user_id: PydanticObjectId
    credit_amount: int = Field(gt=0)
    fiat_amount: int = Field(gt=0)  # VND
    gateway: Gateway
    order_code: Indexed(str, unique=True)
    status: OrderStatus = PENDING
    # request/response at creation, callback payload, error; audit only
    gateway_metadata: dict[str, Any] = Field(default_factory=dict)
    ledger_entry_id: PydanticObjectId | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "recharge_orders"
        indexes = [
            [("status", 1), ("created_at", 1)],
            [("user_id", 1), ("created_at", -1)],
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
