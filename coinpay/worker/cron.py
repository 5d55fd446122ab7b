"""Cron: fail abandoned recharge orders, finish paid orders missing their credit or ledger entry."""

from datetime import datetime, timedelta

from coinpay.core.config import get_settings
from coinpay.core.exceptions import AlreadyTerminalError
from coinpay.core.logging import get_logger
from coinpay.models.recharge_order import FAILED
from coinpay.services import credits, orders, payments

log = get_logger(__name__)

LEDGER_REPAIR_MIN_AGE = timedelta(minutes=1)


async def run_expire_pending_orders(now: datetime | None = None) -> int:
    """FAIL every PENDING order older than the recharge timeout. Returns how many were failed."""
    settings = get_settings()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=settings.recharge_timeout_minutes)
    stale = await orders.find_stale_pending(cutoff, settings.reaper_batch_size)
    expired = 0
    for order in stale:
        try:
            await orders.transition(order.order_code, FAILED, {"reason": "timeout"}, metadata_key="expiry")
            expired += 1
        except AlreadyTerminalError as e:
            # A callback settled it between the query and the update
            log.info("expire_skipped", order_code=order.order_code, status=e.current_status)
    if stale:
        log.info("orders_expired", count=expired, scanned=len(stale), cutoff=cutoff.isoformat())
    return expired


async def run_repair_recharge_ledger(now: datetime | None = None) -> int:
    """Finish SUCCESS orders whose credit or ledger write did not land. Returns how many were repaired.

    The credit is re-applied only if the order's ledger key is not yet on the
    user, so an order that was already credited only gets its ledger entry.
    """
    settings = get_settings()
    now = now or datetime.utcnow()
    pending = await orders.find_unrecorded_successes(now - LEDGER_REPAIR_MIN_AGE, settings.reaper_batch_size)
    repaired = 0
    for order in pending:
        try:
            balance, applied = await payments.credit_paid_order(order)
            entry = await credits.record_recharge_deposit(order, balance_after=balance if applied else None)
            await orders.mark_ledger_recorded(order, entry.id)
        except Exception:
            log.exception("ledger_repair_failed", order_code=order.order_code)
            continue
        repaired += 1
        log.warning("ledger_entry_repaired", order_code=order.order_code, entry_id=str(entry.id), credited=applied)
    return repaired
