from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from coinpay.core.exceptions import AppError, NotFoundError, SignatureInvalidError, ValidationError
from coinpay.core.logging import get_logger
from coinpay.deps import get_client_context, get_current_user
from coinpay.models.recharge_order import FAILED
from coinpay.models.user import User
from coinpay.services import orders as orders_service
from coinpay.services import payments as payments_service
from coinpay.services.payments import redirect_url_for

router = APIRouter()
log = get_logger(__name__)


class CreateOrderRequest(BaseModel):
    credit_amount: int  # coins
    gateway: str = "ZALOPAY"  # VNPAY | ZALOPAY | MOMO


async def _browser_return(gateway: str, request: Request) -> RedirectResponse:
    """Settle from the browser return and send the payer to the result page.

    The payer always lands on a frontend page; rejected returns go to the failure page.
    """
    try:
        hint = await payments_service.reconcile(gateway, dict(request.query_params))
    except AppError as e:
        log.warning("browser_return_rejected", gateway=gateway, code=e.code, error=e.message)
        return RedirectResponse(redirect_url_for(None, FAILED), status_code=status.HTTP_302_FOUND)
    return RedirectResponse(redirect_url_for(hint.role, hint.outcome), status_code=status.HTTP_302_FOUND)


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Callback body must be JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Callback body must be a JSON object")
    return body


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    request: Request,
    user: User = Depends(get_current_user),
):
    """Create a recharge order; the client sends the user to redirect_url to pay."""
    return await payments_service.create_order(
        user.id,
        body.credit_amount,
        body.gateway,
        get_client_context(request),
    )


@router.get("/orders")
async def list_my_orders(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    gateway: str | None = None,
):
    """Recharge history of the current user (newest first)."""
    return await orders_service.list_orders(user_id=user.id, page=page, limit=limit, status=status, gateway=gateway)


@router.get("/vnpay/return")
async def vnpay_return(request: Request):
    """VNPay browser return: settle, then send the user to the result page."""
    return await _browser_return("VNPAY", request)


@router.get("/vnpay/ipn")
async def vnpay_ipn(request: Request):
    """VNPay server notification; answered in VNPay's RspCode format."""
    try:
        hint = await payments_service.reconcile("VNPAY", dict(request.query_params))
    except SignatureInvalidError:
        return {"RspCode": "97", "Message": "Invalid signature"}
    except NotFoundError:
        return {"RspCode": "01", "Message": "Order not found"}
    except ValidationError:
        return {"RspCode": "04", "Message": "Invalid amount"}
    except AppError as e:
        log.warning("vnpay_ipn_unhandled", code=e.code, error=e.message)
        return {"RspCode": "99", "Message": "Unknown error"}
    if hint.duplicate:
        return {"RspCode": "02", "Message": "Order already confirmed"}
    return {"RspCode": "00", "Message": "Confirm Success"}


@router.get("/zalopay/redirect")
async def zalopay_redirect(request: Request):
    """ZaloPay browser redirect (checksum signed with key2)."""
    return await _browser_return("ZALOPAY", request)


@router.post("/zalopay/callback")
async def zalopay_callback(request: Request):
    """ZaloPay server callback {data, mac, type}; answered with return_code."""
    body = await _json_body(request)
    try:
        hint = await payments_service.reconcile("ZALOPAY", body)
    except SignatureInvalidError:
        return {"return_code": -1, "return_message": "mac not equal"}
    except (NotFoundError, ValidationError) as e:
        return {"return_code": 0, "return_message": e.message}
    if hint.duplicate:
        return {"return_code": 2, "return_message": "already processed"}
    return {"return_code": 1, "return_message": "success"}


@router.get("/momo/redirect")
async def momo_redirect(request: Request):
    """MoMo browser redirect."""
    return await _browser_return("MOMO", request)


@router.post("/momo/ipn", status_code=status.HTTP_204_NO_CONTENT)
async def momo_ipn(request: Request):
    """MoMo IPN; MoMo expects 204 once the notification is accepted."""
    body = await _json_body(request)
    await payments_service.reconcile("MOMO", body)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
