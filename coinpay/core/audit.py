"""Audit trail for settled payments and rejected gateway callbacks (audit_logs collection)."""

from typing import Any

from beanie import PydanticObjectId

from coinpay.models.audit_log import AuditLog
from coinpay.models.recharge_order import SUCCESS, RechargeOrder

# Rejected payloads are untrusted input; keep a bounded sample
_MAX_REJECTED_FIELDS = 20
_MAX_FIELD_LENGTH = 200


async def log_event(
    event_type: str,
    gateway: str,
    order_code: str | None = None,
    user_id: PydanticObjectId | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        event_type=event_type,
        gateway=gateway,
        order_code=order_code,
        user_id=user_id,
        metadata=metadata or {},
    )
    await event.insert()
    return event


async def log_settlement(order: RechargeOrder, gateway_transaction_id: str | None = None) -> AuditLog:
    return await log_event(
        "payment_captured" if order.status == SUCCESS else "payment_failed",
        order.gateway,
        order_code=order.order_code,
        user_id=order.user_id,
        metadata={
            "order_id": str(order.id),
            "credit_amount": order.credit_amount,
            "fiat_amount": order.fiat_amount,
            "gateway_transaction_id": gateway_transaction_id,
        },
    )


async def log_signature_rejected(gateway: str, params: dict[str, Any]) -> AuditLog:
    sample = dict(list(params.items())[:_MAX_REJECTED_FIELDS])
    return await log_event(
        "signature_invalid",
        gateway,
        metadata={"params": {k: str(v)[:_MAX_FIELD_LENGTH] for k, v in sample.items()}},
    )
