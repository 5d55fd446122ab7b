import uuid
from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

DEPOSIT = "DEPOSIT"
USAGE = "USAGE"
TRANSACTION_TYPES = (DEPOSIT, USAGE)

TRANSACTION_CATEGORIES = (
    "RECHARGE",
    "JOB_POST",
    "JOB_VIEW",
    "PROFILE_UNLOCK",
    "CV_UNLOCK",
    "REFUND",
    "ADJUSTMENT",
)


def _random_key() -> str:
    return f"auto:{uuid.uuid4()}"


class CreditTransaction(Document):
    """Append-only ledger entry. Never updated; corrections are new entries."""
    user_id: PydanticObjectId
    type: Literal["DEPOSIT", "USAGE"]
    category: str
    amount: int  # > 0 for DEPOSIT, < 0 for USAGE
    balance_after: int = Field(ge=0)
    description: str = ""
    reference_id: str | None = None
    reference_type: str | None = None  # RechargeOrder, Job, CandidateProfile, ...
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Always set so the unique index never sees two nulls
    idempotency_key: Indexed(str, unique=True) = Field(default_factory=_random_key)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("reference_type", 1), ("reference_id", 1)],
        ]
