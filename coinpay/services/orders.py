"""Recharge order store: creation, lookup and conditional status transitions."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set
from pymongo.errors import DuplicateKeyError

from coinpay.core.exceptions import (
    AlreadyTerminalError,
    DuplicateOrderCodeError,
    NotFoundError,
    ValidationError,
)
from coinpay.core.logging import get_logger
from coinpay.core.pagination import page_meta, paginate
from coinpay.models.recharge_order import GATEWAYS, PENDING, SUCCESS, TERMINAL_STATUSES, RechargeOrder

log = get_logger(__name__)

SORT_FIELDS = ("created_at", "-created_at", "fiat_amount", "-fiat_amount")


async def create(order: RechargeOrder) -> RechargeOrder:
    """Insert a new PENDING order. Raises DuplicateOrderCodeError if the code is taken."""
    if order.status != PENDING:
        raise ValidationError("New orders must be PENDING", details={"status": order.status})
    if await RechargeOrder.find_one(RechargeOrder.order_code == order.order_code):
        raise DuplicateOrderCodeError(order.order_code)
    try:
        await order.insert()
    except DuplicateKeyError as e:
        # Lost a race with a concurrent insert of the same code
        raise DuplicateOrderCodeError(order.order_code) from e
    log.info(
        "order_created",
        order_code=order.order_code,
        gateway=order.gateway,
        credit_amount=order.credit_amount,
        fiat_amount=order.fiat_amount,
    )
    return order


async def find_by_order_code(order_code: str) -> RechargeOrder:
    order = await RechargeOrder.find_one(RechargeOrder.order_code == order_code)
    if not order:
        raise NotFoundError(f"Recharge order not found: {order_code}")
    return order


async def transition(
    order_code: str,
    to_status: str,
    metadata: dict[str, Any] | None = None,
    from_status: str = PENDING,
    metadata_key: str = "callback",
) -> RechargeOrder:
    """Move an order from `from_status` to a terminal status in one conditional write.

    Only the caller whose filter still matches wins. Everyone else gets
    AlreadyTerminalError carrying the status the order ended up in.
    """
    if to_status not in TERMINAL_STATUSES:
        raise ValidationError(f"Invalid target status: {to_status}")
    now = datetime.utcnow()
    changes: dict[Any, Any] = {
        RechargeOrder.status: to_status,
        RechargeOrder.updated_at: now,
        RechargeOrder.completed_at: now,
    }
    if metadata is not None:
        changes[f"gateway_metadata.{metadata_key}"] = metadata
    updated = await RechargeOrder.find_one(
        RechargeOrder.order_code == order_code,
        RechargeOrder.status == from_status,
    ).update(Set(changes), response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await find_by_order_code(order_code)
        raise AlreadyTerminalError(order_code, current.status)
    log.info("order_transitioned", order_code=order_code, from_status=from_status, to_status=to_status)
    return updated


async def attach_gateway_response(order: RechargeOrder, request: dict[str, Any], response: dict[str, Any]) -> None:
    """Keep what was sent to and returned by the gateway, for audit/debug."""
    await RechargeOrder.find_one(RechargeOrder.id == order.id).update(
        Set({
            "gateway_metadata.request": request,
            "gateway_metadata.response": response,
            RechargeOrder.updated_at: datetime.utcnow(),
        })
    )
    order.gateway_metadata = {**order.gateway_metadata, "request": request, "response": response}


async def mark_ledger_recorded(order: RechargeOrder, entry_id: PydanticObjectId) -> None:
    await RechargeOrder.find_one(RechargeOrder.id == order.id).update(
        Set({RechargeOrder.ledger_entry_id: entry_id})
    )
    order.ledger_entry_id = entry_id


async def find_stale_pending(cutoff: datetime, limit: int) -> list[RechargeOrder]:
    """PENDING orders created before `cutoff`, oldest first."""
    return (
        await RechargeOrder.find(
            RechargeOrder.status == PENDING,
            RechargeOrder.created_at < cutoff,
        )
        .sort(+RechargeOrder.created_at)
        .limit(limit)
        .to_list()
    )


async def find_unrecorded_successes(cutoff: datetime, limit: int) -> list[RechargeOrder]:
    """SUCCESS orders without a ledger entry, completed before `cutoff`."""
    return (
        await RechargeOrder.find(
            RechargeOrder.status == SUCCESS,
            RechargeOrder.ledger_entry_id == None,  # noqa: E711
            RechargeOrder.completed_at < cutoff,
        )
        .limit(limit)
        .to_list()
    )


async def list_orders(
    user_id: PydanticObjectId | None = None,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    gateway: str | None = None,
    sort: str = "-created_at",
) -> dict[str, Any]:
    """Paginated recharge orders; per user for the billing page, unscoped for admins."""
    page, limit, skip = paginate(page, limit)
    if sort not in SORT_FIELDS:
        raise ValidationError(f"Invalid sort: {sort}", details={"allowed": list(SORT_FIELDS)})
    query: dict[str, Any] = {}
    if user_id is not None:
        query["user_id"] = user_id
    if status:
        if status not in (PENDING, *TERMINAL_STATUSES):
            raise ValidationError(f"Invalid status: {status}")
        query["status"] = status
    if gateway:
        if gateway not in GATEWAYS:
            raise ValidationError(f"Unsupported payment gateway: {gateway}")
        query["gateway"] = gateway
    total = await RechargeOrder.find(query).count()
    orders = await RechargeOrder.find(query).sort(sort).skip(skip).limit(limit).to_list()
    return {
        "orders": [order_summary(o) for o in orders],
        "pagination": page_meta(page, limit, total),
    }


def order_summary(order: RechargeOrder) -> dict[str, Any]:
    return {
        "id": str(order.id),
        "user_id": str(order.user_id),
        "order_code": order.order_code,
        "gateway": order.gateway,
        "credit_amount": order.credit_amount,
        "fiat_amount": order.fiat_amount,
        "status": order.status,
        "created_at": order.created_at.isoformat(),
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
    }
