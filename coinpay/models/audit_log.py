from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

from coinpay.models.recharge_order import Gateway

AuditEvent = Literal["payment_captured", "payment_failed", "signature_invalid"]


class AuditLog(Document):
    """Payment or gateway-security event, kept apart from orders and the ledger."""
    event_type: AuditEvent
    gateway: Gateway
    order_code: str | None = None
    user_id: PydanticObjectId | None = None  # None when the callback could not be trusted
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("event_type", 1), ("created_at", -1)],
            [("order_code", 1)],
        ]
