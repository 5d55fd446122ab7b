"""Recharge orchestration: open gateway orders and settle gateway callbacks exactly once."""

from contextlib import suppress
from typing import Any, Literal, Mapping

from beanie import PydanticObjectId
from pydantic import BaseModel

from coinpay.core import audit
from coinpay.core.config import get_settings
from coinpay.core.exceptions import (
    AlreadyTerminalError,
    DuplicateOrderCodeError,
    GatewayUnavailableError,
    NotFoundError,
    SignatureInvalidError,
    ValidationError,
)
from coinpay.core.logging import bind_payment_context, get_logger
from coinpay.gateways.base import ClientContext, GatewayAdapter, get_adapter
from coinpay.models.recharge_order import FAILED, SUCCESS, RechargeOrder
from coinpay.services import accounts, credits, orders
from coinpay.services.conversion import validate_gateway, validate_recharge

log = get_logger(__name__)

MAX_ORDER_CODE_ATTEMPTS = 5


class RedirectHint(BaseModel):
    order_code: str
    outcome: Literal["SUCCESS", "FAILED"]
    role: str | None = None
    duplicate: bool = False


async def _persist_pending(
    user_id: PydanticObjectId,
    credit_amount: int,
    fiat_amount: int,
    adapter: GatewayAdapter,
) -> RechargeOrder:
    code = ""
    for _ in range(MAX_ORDER_CODE_ATTEMPTS):
        code = adapter.generate_order_code()
        try:
            return await orders.create(
                RechargeOrder(
                    user_id=user_id,
                    credit_amount=credit_amount,
                    fiat_amount=fiat_amount,
                    gateway=adapter.gateway,
                    order_code=code,
                )
            )
        except DuplicateOrderCodeError:
            log.warning("order_code_collision", gateway=adapter.gateway, order_code=code)
    raise DuplicateOrderCodeError(code)


async def _fail_unplaced(order: RechargeOrder, error: Exception) -> None:
    """Compensate an order the gateway never accepted."""
    with suppress(AlreadyTerminalError):
        await orders.transition(order.order_code, FAILED, {"message": str(error)[:500]}, metadata_key="error")
    log.warning("order_creation_failed", error=str(error)[:500])


async def create_order(
    user_id: PydanticObjectId,
    credit_amount: int,
    gateway: str,
    context: ClientContext | None = None,
    adapter: GatewayAdapter | None = None,
) -> dict[str, Any]:
    """Open a PENDING order and ask the gateway where to send the user.

    Any gateway failure fails the order before the error reaches the caller,
    so creation never leaves a PENDING order behind.
    """
    fiat_amount = validate_recharge(credit_amount, gateway)
    await accounts.get_user(user_id)
    adapter = adapter or get_adapter(gateway)
    if not adapter.configured:
        raise GatewayUnavailableError(gateway, message=f"{gateway} is not configured")

    order = await _persist_pending(user_id, credit_amount, fiat_amount, adapter)
    bind_payment_context(gateway=gateway, order_code=order.order_code)
    try:
        target = await adapter.build_order_request(order, context or ClientContext())
    except GatewayUnavailableError as e:
        await _fail_unplaced(order, e)
        raise
    except Exception as e:
        log.exception("gateway_adapter_error")
        await _fail_unplaced(order, e)
        raise GatewayUnavailableError(gateway) from e

    await orders.attach_gateway_response(order, target.request, target.response)
    return {
        "order_code": order.order_code,
        "redirect_url": target.redirect_url,
        "gateway": gateway,
        "credit_amount": credit_amount,
        "fiat_amount": fiat_amount,
    }


async def credit_paid_order(order: RechargeOrder) -> tuple[int, bool]:
    """Add the order's coins to the balance once, keyed by the order's ledger key."""
    balance, applied = await accounts.apply_keyed_change(order.user_id, order.credit_amount, credits.recharge_key(order))
    if applied:
        log.info("balance_credited", user_id=str(order.user_id), amount=order.credit_amount, balance=balance)
    return balance, applied


async def _settle_success(order: RechargeOrder) -> None:
    """Credit the user once the order has won its SUCCESS transition.

    Either phase may fail; the ledger repair sweep finishes the order later
    (the credit is keyed, so it never lands twice).
    """
    try:
        balance, applied = await credit_paid_order(order)
    except Exception:
        log.exception("balance_credit_deferred", user_id=str(order.user_id))
        return
    try:
        entry = await credits.record_recharge_deposit(order, balance_after=balance if applied else None)
        await orders.mark_ledger_recorded(order, entry.id)
    except Exception:
        log.exception("ledger_append_deferred", user_id=str(order.user_id))


async def _resolve_role(user_id: PydanticObjectId) -> str | None:
    try:
        return await accounts.get_role(user_id)
    except Exception as e:
        log.warning("role_lookup_failed", user_id=str(user_id), error=str(e))
        return None


async def reconcile(
    gateway: str,
    params: Mapping[str, Any],
    adapter: GatewayAdapter | None = None,
) -> RedirectHint:
    """Apply a gateway callback (IPN, server callback or browser return).

    Unverified payloads change nothing. Repeated deliveries are no-ops that
    report the outcome already recorded.
    """
    validate_gateway(gateway)
    adapter = adapter or get_adapter(gateway)
    payload = dict(params)
    try:
        # Without its secret a gateway's signatures would verify against an empty key
        if not adapter.configured:
            raise SignatureInvalidError(gateway, message=f"{gateway} is not configured")
        result = adapter.verify_callback(payload)
    except SignatureInvalidError:
        log.warning("callback_signature_invalid", gateway=gateway)
        await audit.log_signature_rejected(gateway, payload)
        raise

    bind_payment_context(gateway=gateway, order_code=result.order_code)
    try:
        order = await orders.find_by_order_code(result.order_code)
    except NotFoundError:
        log.warning("callback_order_not_found")
        raise
    if order.gateway != gateway:
        raise ValidationError("Callback gateway does not match the order", details={"order_gateway": order.gateway})
    if result.verified_amount is not None and result.verified_amount != order.fiat_amount:
        log.warning("callback_amount_mismatch", expected=order.fiat_amount, received=result.verified_amount)
        raise ValidationError(
            "Callback amount does not match the order",
            details={"expected": order.fiat_amount, "received": result.verified_amount},
        )

    try:
        order = await orders.transition(order.order_code, result.outcome, payload)
    except AlreadyTerminalError as e:
        log.info("callback_duplicate", status=e.current_status, reported_outcome=result.outcome)
        return RedirectHint(
            order_code=order.order_code,
            outcome=e.current_status,
            role=await _resolve_role(order.user_id),
            duplicate=True,
        )

    if order.status == SUCCESS:
        await _settle_success(order)
    await audit.log_settlement(order, result.gateway_transaction_id)
    return RedirectHint(
        order_code=order.order_code,
        outcome=order.status,
        role=await _resolve_role(order.user_id),
    )


def redirect_url_for(role: str | None, outcome: str) -> str:
    """Frontend page the browser lands on after paying."""
    settings = get_settings()
    base = {
        "candidate": settings.candidate_fe_url,
        "recruiter": settings.recruiter_fe_url,
    }.get(role or "", settings.default_fe_url)
    page = "success" if outcome == SUCCESS else "failure"
    return f"{base.rstrip('/')}/payment/{page}"
