"""Order store: creation, lookup, conditional transitions and listing."""

import asyncio
from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from coinpay.core.exceptions import AlreadyTerminalError, DuplicateOrderCodeError, NotFoundError, ValidationError
from coinpay.models.recharge_order import FAILED, PENDING, SUCCESS, RechargeOrder
from coinpay.services import orders as orders_service

pytestmark = pytest.mark.asyncio


def _pending(order_code: str, user_id: PydanticObjectId | None = None, **kwargs) -> RechargeOrder:
    return RechargeOrder(
        user_id=user_id or PydanticObjectId(),
        credit_amount=kwargs.pop("credit_amount", 500),
        fiat_amount=kwargs.pop("fiat_amount", 50_000),
        gateway=kwargs.pop("gateway", "VNPAY"),
        order_code=order_code,
        **kwargs,
    )


async def test_create_and_find(db):
    await orders_service.create(_pending("A1"))
    found = await orders_service.find_by_order_code("A1")
    assert found.status == PENDING
    assert found.completed_at is None
    assert not found.is_terminal


async def test_create_rejects_duplicate_code(db):
    await orders_service.create(_pending("A1"))
    with pytest.raises(DuplicateOrderCodeError):
        await orders_service.create(_pending("A1", credit_amount=10, fiat_amount=1000))
    assert await RechargeOrder.find(RechargeOrder.order_code == "A1").count() == 1


async def test_create_requires_pending(db):
    with pytest.raises(ValidationError):
        await orders_service.create(_pending("A1", status=SUCCESS))


async def test_find_unknown_code(db):
    with pytest.raises(NotFoundError):
        await orders_service.find_by_order_code("nope")


async def test_transition_is_final(db):
    await orders_service.create(_pending("A1"))
    order = await orders_service.transition("A1", SUCCESS, {"vnp_ResponseCode": "00"})
    assert order.status == SUCCESS
    assert order.completed_at is not None
    assert order.gateway_metadata["callback"] == {"vnp_ResponseCode": "00"}

    with pytest.raises(AlreadyTerminalError) as exc:
        await orders_service.transition("A1", FAILED)
    assert exc.value.current_status == SUCCESS
    with pytest.raises(AlreadyTerminalError):
        await orders_service.transition("A1", SUCCESS)
    assert (await orders_service.find_by_order_code("A1")).status == SUCCESS


async def test_concurrent_transitions_have_one_winner(db):
    await orders_service.create(_pending("A1"))
    results = await asyncio.gather(
        *(orders_service.transition("A1", SUCCESS if i % 2 else FAILED) for i in range(6)),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, RechargeOrder)]
    losers = [r for r in results if isinstance(r, AlreadyTerminalError)]
    assert len(winners) == 1
    assert len(losers) == 5
    assert all(e.current_status == winners[0].status for e in losers)


async def test_transition_rejects_non_terminal_target(db):
    await orders_service.create(_pending("A1"))
    with pytest.raises(ValidationError):
        await orders_service.transition("A1", PENDING)


async def test_transition_unknown_code(db):
    with pytest.raises(NotFoundError):
        await orders_service.transition("missing", SUCCESS)


async def test_find_stale_pending(db):
    now = datetime.utcnow()
    await orders_service.create(_pending("OLD", created_at=now - timedelta(minutes=30)))
    await orders_service.create(_pending("NEW", created_at=now))
    await orders_service.create(_pending("DONE", created_at=now - timedelta(minutes=30)))
    await orders_service.transition("DONE", SUCCESS)

    stale = await orders_service.find_stale_pending(now - timedelta(minutes=15), limit=10)
    assert [o.order_code for o in stale] == ["OLD"]


async def test_list_orders_scoped_and_filtered(db):
    owner = PydanticObjectId()
    now = datetime.utcnow()
    for i in range(3):
        await orders_service.create(_pending(f"U{i}", user_id=owner, created_at=now - timedelta(minutes=i)))
    await orders_service.create(_pending("OTHER", gateway="MOMO"))
    await orders_service.transition("U0", FAILED)

    mine = await orders_service.list_orders(user_id=owner, limit=2)
    assert [o["order_code"] for o in mine["orders"]] == ["U0", "U1"]
    assert mine["pagination"]["total_records"] == 3
    assert mine["pagination"]["has_next_page"] is True

    failed = await orders_service.list_orders(status=FAILED)
    assert [o["order_code"] for o in failed["orders"]] == ["U0"]

    momo = await orders_service.list_orders(gateway="MOMO")
    assert [o["order_code"] for o in momo["orders"]] == ["OTHER"]

    with pytest.raises(ValidationError):
        await orders_service.list_orders(sort="user_id")
    with pytest.raises(ValidationError):
        await orders_service.list_orders(status="REFUNDED")
