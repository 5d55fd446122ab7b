from datetime import date

from fastapi import APIRouter, Depends, Query

from coinpay.deps import get_current_user
from coinpay.models.user import User
from coinpay.services import credits as credits_service

router = APIRouter()


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    """Return current coin balance."""
    return {"balance": user.coin_balance}


@router.get("/history")
async def credits_history(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: str | None = None,
    category: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
):
    """Ledger entries for the current user (newest first)."""
    return await credits_service.history(
        user.id,
        page=page,
        limit=limit,
        type=type,
        category=category,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/summary")
async def credits_summary(
    user: User = Depends(get_current_user),
    start_date: date | None = None,
    end_date: date | None = None,
):
    """Deposits, usage and per-category totals for a date range, plus the live balance."""
    return await credits_service.summary(user.id, start_date=start_date, end_date=end_date)
