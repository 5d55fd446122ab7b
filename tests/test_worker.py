"""Cron jobs: pending-order expiry and recharge ledger repair."""

from datetime import datetime, timedelta

import pytest

from coinpay.models.credit_transaction import CreditTransaction
from coinpay.models.failed_job import FailedJob
from coinpay.models.recharge_order import FAILED, PENDING, SUCCESS, RechargeOrder
from coinpay.services import accounts, orders
from coinpay.services import payments as payments_service
from coinpay.worker import tasks
from coinpay.worker.cron import run_expire_pending_orders, run_repair_recharge_ledger
from gateway_payloads import vnpay_params

pytestmark = pytest.mark.asyncio


async def _order(user, code: str, age: timedelta, credit_amount: int = 100) -> RechargeOrder:
    return await orders.create(RechargeOrder(
        user_id=user.id,
        credit_amount=credit_amount,
        fiat_amount=credit_amount * 100,
        gateway="VNPAY",
        order_code=code,
        created_at=datetime.utcnow() - age,
    ))


async def test_expire_fails_only_stale_pending(make_user):
    user = await make_user()
    await _order(user, "STALE", timedelta(minutes=16))
    await _order(user, "FRESH", timedelta(minutes=2))

    assert await run_expire_pending_orders() == 1

    stale = await orders.find_by_order_code("STALE")
    assert stale.status == FAILED
    assert stale.gateway_metadata["expiry"] == {"reason": "timeout"}
    assert (await orders.find_by_order_code("FRESH")).status == PENDING
    assert await run_expire_pending_orders() == 0


async def test_late_success_after_expiry_does_not_credit(make_user):
    user = await make_user()
    await _order(user, "LATE", timedelta(hours=1), credit_amount=250)
    await run_expire_pending_orders()

    hint = await payments_service.reconcile("VNPAY", vnpay_params("LATE", 25_000))

    assert hint.duplicate is True
    assert hint.outcome == FAILED
    assert await accounts.get_balance(user.id) == 0
    assert await CreditTransaction.find(CreditTransaction.user_id == user.id).count() == 0


async def test_expire_leaves_settled_orders(make_user):
    user = await make_user()
    await _order(user, "PAID", timedelta(hours=1))
    await payments_service.reconcile("VNPAY", vnpay_params("PAID", 10_000))

    assert await run_expire_pending_orders() == 0
    assert (await orders.find_by_order_code("PAID")).status == SUCCESS


async def test_repair_appends_missing_deposit(make_user):
    user = await make_user()
    order = await _order(user, "GAP", timedelta(minutes=5), credit_amount=300)
    # Settled and credited, but the ledger append never happened
    settled = await orders.transition("GAP", SUCCESS)
    await payments_service.credit_paid_order(settled)

    assert await run_repair_recharge_ledger(now=datetime.utcnow()) == 0  # too recent
    later = datetime.utcnow() + timedelta(minutes=2)
    assert await run_repair_recharge_ledger(now=later) == 1

    entries = await CreditTransaction.find(CreditTransaction.user_id == user.id).to_list()
    assert len(entries) == 1
    assert entries[0].amount == 300
    assert entries[0].balance_after == 300
    assert entries[0].idempotency_key == f"recharge:{order.id}"
    repaired = await orders.find_by_order_code("GAP")
    assert repaired.ledger_entry_id == entries[0].id
    assert await run_repair_recharge_ledger(now=later) == 0


async def test_repair_after_deferred_ledger_write(make_user, monkeypatch):
    user = await make_user()
    await _order(user, "DEFER", timedelta(minutes=5), credit_amount=120)

    async def unavailable(*args, **kwargs):
        raise ConnectionError("ledger down")

    with monkeypatch.context() as m:
        m.setattr(payments_service.credits, "record_recharge_deposit", unavailable)
        await payments_service.reconcile("VNPAY", vnpay_params("DEFER", 12_000))

    assert await run_repair_recharge_ledger(now=datetime.utcnow() + timedelta(minutes=2)) == 1
    entries = await CreditTransaction.find(CreditTransaction.user_id == user.id).to_list()
    assert [(e.category, e.amount, e.balance_after) for e in entries] == [("RECHARGE", 120, 120)]
    assert await accounts.get_balance(user.id) == 120


async def test_repair_credits_order_whose_increment_failed(make_user, monkeypatch):
    user = await make_user()
    await _order(user, "NOCREDIT", timedelta(minutes=5), credit_amount=500)
    params = vnpay_params("NOCREDIT", 50_000)

    async def storage_down(*args, **kwargs):
        raise ConnectionError("mongo unavailable")

    with monkeypatch.context() as m:
        m.setattr(accounts, "apply_keyed_change", storage_down)
        hint = await payments_service.reconcile("VNPAY", params)
    assert hint.outcome == SUCCESS
    assert await accounts.get_balance(user.id) == 0

    # The gateway retries; the order is already settled
    assert (await payments_service.reconcile("VNPAY", params)).duplicate is True

    later = datetime.utcnow() + timedelta(minutes=2)
    assert await run_repair_recharge_ledger(now=later) == 1
    entries = await CreditTransaction.find(CreditTransaction.user_id == user.id).to_list()
    assert [(e.amount, e.balance_after) for e in entries] == [(500, 500)]
    assert sum(e.amount for e in entries) == await accounts.get_balance(user.id) == 500
    assert await run_repair_recharge_ledger(now=later) == 0
    assert await accounts.get_balance(user.id) == 500


async def test_repair_never_credits_twice(make_user, monkeypatch):
    user = await make_user()
    order = await _order(user, "TWICE", timedelta(minutes=5), credit_amount=80)

    async def unavailable(*args, **kwargs):
        raise ConnectionError("ledger down")

    with monkeypatch.context() as m:
        m.setattr(payments_service.credits, "record_recharge_deposit", unavailable)
        await payments_service.reconcile("VNPAY", vnpay_params("TWICE", 8_000))
        # Credit still applied, ledger still down: the sweep fails this order and moves on
        assert await run_repair_recharge_ledger(now=datetime.utcnow() + timedelta(minutes=2)) == 0

    assert await accounts.get_balance(user.id) == 80
    assert await run_repair_recharge_ledger(now=datetime.utcnow() + timedelta(minutes=2)) == 1
    assert await accounts.get_balance(user.id) == 80
    assert (await orders.find_by_order_code("TWICE")).ledger_entry_id is not None
    user_doc = await accounts.get_user(user.id)
    assert user_doc.applied_keys == [f"recharge:{order.id}"]


async def test_repair_skips_a_broken_order_and_continues(make_user):
    ghost = await make_user()
    user = await make_user()
    await _order(ghost, "GHOST", timedelta(minutes=10), credit_amount=100)
    await _order(user, "GOOD", timedelta(minutes=5), credit_amount=200)
    await orders.transition("GHOST", SUCCESS)
    await orders.transition("GOOD", SUCCESS)
    await ghost.delete()

    later = datetime.utcnow() + timedelta(minutes=2)
    assert await run_repair_recharge_ledger(now=later) == 1

    entries = await CreditTransaction.find(CreditTransaction.user_id == user.id).to_list()
    assert [(e.amount, e.balance_after) for e in entries] == [(200, 200)]
    assert await accounts.get_balance(user.id) == 200
    assert (await orders.find_by_order_code("GHOST")).ledger_entry_id is None


async def test_failed_job_goes_to_dead_letter(db, monkeypatch):
    async def broken(now=None):
        raise RuntimeError("mongo unavailable")

    monkeypatch.setattr("coinpay.worker.cron.run_expire_pending_orders", broken)
    with pytest.raises(RuntimeError):
        await tasks.expire_pending_orders({"job_id": "cron:expire:1", "job_try": 2})

    dead = await FailedJob.find_one(FailedJob.job_name == "expire_pending_orders")
    assert dead.job_id == "cron:expire:1"
    assert dead.attempt == 2
    assert dead.error_type == "RuntimeError"
    assert "mongo unavailable" in dead.reason
