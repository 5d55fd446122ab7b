from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, Query

from coinpay.core.exceptions import ValidationError
from coinpay.deps import require_admin
from coinpay.models.user import User
from coinpay.services import analytics as analytics_service
from coinpay.services import orders as orders_service

router = APIRouter()


@router.get("/recharges")
async def admin_recharges(
    user: User = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    gateway: str | None = None,
    user_id: str | None = None,
    sort: str = "-created_at",
):
    """Admin: all recharge orders, filterable by status, gateway and user."""
    owner = None
    if user_id:
        try:
            owner = PydanticObjectId(user_id)
        except InvalidId as e:
            raise ValidationError("Invalid user_id") from e
    return await orders_service.list_orders(
        user_id=owner,
        page=page,
        limit=limit,
        status=status,
        gateway=gateway,
        sort=sort,
    )


@router.get("/recharges/stats/today")
async def admin_recharge_stats_today(user: User = Depends(require_admin)):
    """Admin: today's recharge revenue and status counts (reporting timezone)."""
    return await analytics_service.today_recharge_stats()
