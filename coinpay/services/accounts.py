"""Account store: the user's coin balance and role.

coin_balance is only ever changed here, through single-document $inc updates.
Keyed changes also record their ledger key on the user in the same write, so a
retried credit or debit can tell whether it already happened.
"""

from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import AddToSet, Inc, Set

from coinpay.core.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from coinpay.models.user import User


async def get_user(user_id: PydanticObjectId) -> User:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def get_balance(user_id: PydanticObjectId) -> int:
    return (await get_user(user_id)).coin_balance


async def get_role(user_id: PydanticObjectId) -> str:
    return (await get_user(user_id)).role


async def increment_balance(user_id: PydanticObjectId, delta: int) -> int:
    """Atomically add `delta` (positive) and return the new balance."""
    if delta <= 0:
        raise ValidationError("Balance increment must be positive", details={"delta": delta})
    user = await User.find_one(User.id == user_id).update(
        Inc({User.coin_balance: delta}),
        Set({User.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if user is None:
        raise NotFoundError("User not found")
    return user.coin_balance


async def decrement_balance(user_id: PydanticObjectId, amount: int) -> int:
    """Atomically subtract `amount` only if the balance covers it; return the new balance."""
    if amount <= 0:
        raise ValidationError("Balance decrement must be positive", details={"amount": amount})
    user = await User.find_one(
        User.id == user_id,
        User.coin_balance >= amount,
    ).update(
        Inc({User.coin_balance: -amount}),
        Set({User.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if user is None:
        current = await get_balance(user_id)
        raise InsufficientCreditsError(
            f"Insufficient credits: need {amount}, have {current}",
            details={"required": amount, "balance": current},
        )
    return user.coin_balance


async def apply_keyed_change(user_id: PydanticObjectId, delta: int, key: str) -> tuple[int, bool]:
    """Apply `delta` to the balance at most once per ledger key.

    Returns (balance, applied). applied is False when an earlier call already
    applied the key; the balance is then the current one. Debits still require
    the balance to cover them.
    """
    if delta == 0:
        raise ValidationError("Balance change must not be zero", details={"delta": delta})
    filters = [User.id == user_id, User.applied_keys != key]
    if delta < 0:
        filters.append(User.coin_balance >= -delta)
    user = await User.find_one(*filters).update(
        Inc({User.coin_balance: delta}),
        AddToSet({User.applied_keys: key}),
        Set({User.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if user is not None:
        return user.coin_balance, True
    current = await get_user(user_id)
    if key in current.applied_keys:
        return current.coin_balance, False
    if delta > 0:
        raise NotFoundError("User not found")
    raise InsufficientCreditsError(
        f"Insufficient credits: need {-delta}, have {current.coin_balance}",
        details={"required": -delta, "balance": current.coin_balance},
    )
