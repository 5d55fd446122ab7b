"""VNPay: payment URL signed with HMAC-SHA512 over the sorted vnp_* query."""

from datetime import datetime, timedelta
from typing import Any, Mapping
from urllib.parse import quote_plus

from coinpay.core.exceptions import SignatureInvalidError
from coinpay.core.security import hmac_hex, signatures_match
from coinpay.gateways.base import VN_TZ, CallbackResult, ClientContext, GatewayAdapter, RedirectTarget, text
from coinpay.models.recharge_order import FAILED, SUCCESS, RechargeOrder

VERSION = "2.1.0"
HASH_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")
SUCCESS_CODE = "00"
PAYMENT_EXPIRY_MINUTES = 15


def canonical_query(params: Mapping[str, Any]) -> str:
    """Sorted vnp_* pairs, values form-encoded (space as '+'), hash fields excluded."""
    pairs = sorted(
        (k, v) for k, v in params.items()
        if k.startswith("vnp_") and k not in HASH_FIELDS
    )
    return "&".join(f"{k}={quote_plus(text(v))}" for k, v in pairs)


class VNPayAdapter(GatewayAdapter):
    gateway = "VNPAY"

    @property
    def configured(self) -> bool:
        return bool(self.settings.vnpay_tmn_code and self.settings.vnpay_hash_secret)

    def sign(self, params: Mapping[str, Any]) -> str:
        return hmac_hex(self.settings.vnpay_hash_secret, canonical_query(params), "sha512")

    async def build_order_request(self, order: RechargeOrder, context: ClientContext) -> RedirectTarget:
        # VNPay needs no server call: the signed URL is the order
        now = datetime.now(VN_TZ)
        params = {
            "vnp_Version": VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.settings.vnpay_tmn_code,
            "vnp_Locale": context.locale,
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": order.order_code,
            "vnp_OrderInfo": f"Nap {order.credit_amount} xu vao tai khoan",
            "vnp_OrderType": "other",
            "vnp_Amount": order.fiat_amount * 100,
            "vnp_ReturnUrl": self.settings.vnpay_return_url,
            "vnp_IpAddr": context.ip_address,
            "vnp_CreateDate": now.strftime("%Y%m%d%H%M%S"),
            "vnp_ExpireDate": (now + timedelta(minutes=PAYMENT_EXPIRY_MINUTES)).strftime("%Y%m%d%H%M%S"),
        }
        query = canonical_query(params)
        signature = self.sign(params)
        url = f"{self.settings.vnpay_url}?{query}&vnp_SecureHash={signature}"
        return RedirectTarget(redirect_url=url, request=params)

    def verify_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        received = params.get("vnp_SecureHash")
        if not signatures_match(self.sign(params), text(received) or None):
            raise SignatureInvalidError(self.gateway)
        response_code = text(params.get("vnp_ResponseCode"))
        # Return URL and IPN both carry vnp_TransactionStatus; older terminals omit it
        transaction_status = text(params.get("vnp_TransactionStatus", SUCCESS_CODE))
        paid = response_code == SUCCESS_CODE and transaction_status == SUCCESS_CODE
        raw_amount = text(params.get("vnp_Amount"))
        return CallbackResult(
            order_code=text(params.get("vnp_TxnRef")),
            outcome=SUCCESS if paid else FAILED,
            verified_amount=int(raw_amount) // 100 if raw_amount.isdigit() else None,
            gateway_transaction_id=text(params.get("vnp_TransactionNo")) or None,
        )
