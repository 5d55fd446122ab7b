"""Dead-letter: worker sweeps (order expiry, ledger repair) that raised."""

from datetime import datetime

from beanie import Document
from pydantic import Field


class FailedJob(Document):
    job_name: str  # expire_pending_orders | repair_recharge_ledger
    job_id: str
    attempt: int = 1  # arq job_try
    error_type: str = ""
    reason: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("created_at", -1)]]
