"""Credit ledger: append-only transactions, history and summaries."""

from datetime import date, datetime, time
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from coinpay.core.exceptions import NotFoundError, ValidationError
from coinpay.core.logging import get_logger
from coinpay.core.pagination import page_meta, paginate
from coinpay.models.credit_transaction import (
    DEPOSIT,
    TRANSACTION_CATEGORIES,
    TRANSACTION_TYPES,
    USAGE,
    CreditTransaction,
)
from coinpay.models.recharge_order import RechargeOrder
from coinpay.models.user import User
from coinpay.services import accounts

log = get_logger(__name__)


def recharge_key(order: RechargeOrder) -> str:
    return f"recharge:{order.id}"


def _validate_entry(type: str, category: str, amount: int) -> None:
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"Invalid transaction type: {type}")
    if category not in TRANSACTION_CATEGORIES:
        raise ValidationError(f"Invalid transaction category: {category}")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer", details={"amount": amount})
    if type == DEPOSIT and amount <= 0:
        raise ValidationError("Deposit amount must be positive", details={"amount": amount})
    if type == USAGE and amount >= 0:
        raise ValidationError("Usage amount must be negative", details={"amount": amount})


async def find_by_idempotency_key(key: str) -> CreditTransaction | None:
    return await CreditTransaction.find_one(CreditTransaction.idempotency_key == key)


async def record(
    user_id: PydanticObjectId,
    type: str,
    category: str,
    amount: int,
    description: str = "",
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    balance_after: int | None = None,
) -> CreditTransaction:
    """
    Append one ledger entry. The balance must already include this entry's effect.
    balance_after defaults to the live coin_balance; callers that just changed the
    balance pass the value their atomic update returned.
    With an idempotency_key, an existing entry for the key is returned instead.
    """
    _validate_entry(type, category, amount)
    if idempotency_key:
        existing = await find_by_idempotency_key(idempotency_key)
        if existing:
            return existing
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    entry = CreditTransaction(
        user_id=user_id,
        type=type,
        category=category,
        amount=amount,
        balance_after=user.coin_balance if balance_after is None else balance_after,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
        metadata=metadata or {},
    )
    if idempotency_key:
        entry.idempotency_key = idempotency_key
    try:
        await entry.insert()
    except DuplicateKeyError:
        existing = await find_by_idempotency_key(entry.idempotency_key)
        if existing is None:
            raise
        return existing
    log.info(
        "ledger_entry_recorded",
        user_id=str(user_id),
        type=type,
        category=category,
        amount=amount,
        balance_after=entry.balance_after,
    )
    return entry


async def record_recharge_deposit(order: RechargeOrder, balance_after: int | None = None) -> CreditTransaction:
    """DEPOSIT/RECHARGE entry for a paid order; at most one per order."""
    return await record(
        order.user_id,
        DEPOSIT,
        "RECHARGE",
        order.credit_amount,
        description=f"Recharged {order.credit_amount} coins via {order.gateway}",
        reference_id=str(order.id),
        reference_type="RechargeOrder",
        metadata={
            "gateway": order.gateway,
            "fiat_amount": order.fiat_amount,
            "order_code": order.order_code,
        },
        idempotency_key=recharge_key(order),
        balance_after=balance_after,
    )


async def spend(
    user_id: PydanticObjectId,
    amount: int,
    category: str,
    description: str = "",
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
) -> CreditTransaction:
    """Debit `amount` coins (positive) with a conditional decrement, then log a USAGE entry.

    With an idempotency_key the debit is claimed on the user document under that
    key, so concurrent or retried calls debit once and share one entry.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Spend amount must be a positive integer", details={"amount": amount})
    _validate_entry(USAGE, category, -amount)
    if idempotency_key:
        existing = await find_by_idempotency_key(idempotency_key)
        if existing:
            return existing
        balance, applied = await accounts.apply_keyed_change(user_id, -amount, idempotency_key)
        if not applied:
            # Debited by an earlier call; its entry may still be on the way
            balance = None
    else:
        balance = await accounts.decrement_balance(user_id, amount)
    return await record(
        user_id,
        USAGE,
        category,
        -amount,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
        metadata=metadata,
        idempotency_key=idempotency_key,
        balance_after=balance,
    )


def _as_start(value: date | datetime) -> datetime:
    return value if isinstance(value, datetime) else datetime.combine(value, time.min)


def _as_end_of_day(value: date | datetime) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


def _date_filters(start_date: date | datetime | None, end_date: date | datetime | None) -> list:
    filters = []
    start = _as_start(start_date) if start_date else None
    end = _as_end_of_day(end_date) if end_date else None
    if start and end and start > end:
        raise ValidationError("Start date cannot be after end date")
    if start:
        filters.append(CreditTransaction.created_at >= start)
    if end:
        filters.append(CreditTransaction.created_at <= end)
    return filters


def entry_dict(e: CreditTransaction) -> dict[str, Any]:
    return {
        "id": str(e.id),
        "type": e.type,
        "category": e.category,
        "amount": e.amount,
        "balance_after": e.balance_after,
        "description": e.description,
        "reference_id": e.reference_id,
        "reference_type": e.reference_type,
        "metadata": e.metadata,
        "created_at": e.created_at.isoformat(),
    }


async def history(
    user_id: PydanticObjectId,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    category: str | None = None,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
) -> dict[str, Any]:
    """Entries newest first. Unknown type/category filters are ignored."""
    page, limit, skip = paginate(page, limit)
    filters = [CreditTransaction.user_id == user_id]
    if type in TRANSACTION_TYPES:
        filters.append(CreditTransaction.type == type)
    if category in TRANSACTION_CATEGORIES:
        filters.append(CreditTransaction.category == category)
    filters += _date_filters(start_date, end_date)
    total = await CreditTransaction.find(*filters).count()
    entries = (
        await CreditTransaction.find(*filters)
        .sort(-CreditTransaction.created_at)
        .skip(skip)
        .limit(limit)
        .to_list()
    )
    return {
        "transactions": [entry_dict(e) for e in entries],
        "pagination": page_meta(page, limit, total),
    }


async def summary(
    user_id: PydanticObjectId,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
) -> dict[str, Any]:
    """Totals for a date range; current_balance is always the live value."""
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    filters = [CreditTransaction.user_id == user_id, *_date_filters(start_date, end_date)]

    totals = await CreditTransaction.find(*filters).aggregate([
        {"$group": {"_id": "$type", "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
    ]).to_list()
    categories = await CreditTransaction.find(*filters).aggregate([
        {"$group": {"_id": "$category", "count": {"$sum": 1}, "total_amount": {"$sum": "$amount"}}},
        {"$sort": {"total_amount": -1}},
    ]).to_list()

    by_type = {row["_id"]: row for row in totals}
    total_deposits = by_type.get(DEPOSIT, {}).get("total", 0)
    total_usage = abs(by_type.get(USAGE, {}).get("total", 0))
    return {
        "current_balance": user.coin_balance,
        "total_deposits": total_deposits,
        "total_usage": total_usage,
        "transaction_count": sum(row["count"] for row in totals),
        "category_breakdown": [
            {"category": row["_id"], "count": row["count"], "total_amount": row["total_amount"]}
            for row in categories
        ],
        "period_start": start_date.isoformat() if start_date else None,
        "period_end": end_date.isoformat() if end_date else None,
    }
