from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field

ROLES = ("candidate", "recruiter", "admin")


class User(Document):
    """Account aggregate. coin_balance is only changed through atomic $inc updates."""
    email: Indexed(str, unique=True)
    role: Literal["candidate", "recruiter", "admin"] = "candidate"
    coin_balance: int = Field(default=0, ge=0)
    # Ledger idempotency keys whose amount is already in coin_balance
    applied_keys: list[str] = Field(default_factory=list)
    active: bool = True
    session_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
