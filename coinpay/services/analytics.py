"""Admin recharge statistics."""

from datetime import datetime, time, timedelta
from typing import Any

from coinpay.core.config import get_settings
from coinpay.models.recharge_order import FAILED, PENDING, SUCCESS, RechargeOrder


def report_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime, str]:
    """Start/end (naive UTC) of the current day in the reporting timezone, plus its date."""
    offset = timedelta(hours=get_settings().report_utc_offset_hours)
    local_now = (now or datetime.utcnow()) + offset
    local_start = datetime.combine(local_now.date(), time.min)
    start = local_start - offset
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end, local_now.date().isoformat()


async def today_recharge_stats(now: datetime | None = None) -> dict[str, Any]:
    start, end, day = report_day_bounds(now)
    rows = await RechargeOrder.find(
        RechargeOrder.created_at >= start,
        RechargeOrder.created_at <= end,
    ).aggregate([
        {
            "$group": {
                "_id": "$status",
                "count": {"$sum": 1},
                "fiat_amount": {"$sum": "$fiat_amount"},
                "credit_amount": {"$sum": "$credit_amount"},
            }
        },
    ]).to_list()
    by_status = {row["_id"]: row for row in rows}
    succeeded = by_status.get(SUCCESS, {})
    total = sum(row["count"] for row in rows)
    success_count = succeeded.get("count", 0)
    revenue = succeeded.get("fiat_amount", 0)
    return {
        "date": day,
        "today_revenue": revenue,
        "total_transactions": total,
        "successful_transactions": success_count,
        "pending_transactions": by_status.get(PENDING, {}).get("count", 0),
        "failed_transactions": by_status.get(FAILED, {}).get("count", 0),
        "total_coins_recharged": succeeded.get("credit_amount", 0),
        "average_transaction_value": round(revenue / success_count, 2) if success_count else 0,
        "success_rate": round(success_count / total * 100, 2) if total else 0,
    }
