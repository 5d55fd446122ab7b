"""MoMo all-in-one (captureWallet): HMAC-SHA256 over key=value pairs in a fixed order."""

import uuid
from typing import Any, Mapping

from coinpay.core.exceptions import GatewayUnavailableError, SignatureInvalidError
from coinpay.core.security import hmac_hex, signatures_match
from coinpay.gateways.base import CallbackResult, ClientContext, GatewayAdapter, RedirectTarget, text
from coinpay.models.recharge_order import FAILED, SUCCESS, RechargeOrder

REQUEST_TYPE = "captureWallet"

# accessKey is not sent back by MoMo; it is taken from config when signing
CREATE_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
RESULT_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)


class MomoAdapter(GatewayAdapter):
    gateway = "MOMO"

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.momo_partner_code and s.momo_access_key and s.momo_secret_key)

    def sign(self, fields: tuple[str, ...], values: Mapping[str, Any]) -> str:
        values = {**values, "accessKey": self.settings.momo_access_key}
        raw = "&".join(f"{f}={text(values.get(f))}" for f in fields)
        return hmac_hex(self.settings.momo_secret_key, raw)

    async def build_order_request(self, order: RechargeOrder, context: ClientContext) -> RedirectTarget:
        request = {
            "partnerCode": self.settings.momo_partner_code,
            "requestId": str(uuid.uuid4()),
            "amount": order.fiat_amount,
            "orderId": order.order_code,
            "orderInfo": f"Nap {order.credit_amount} xu",
            "redirectUrl": self.settings.momo_redirect_url,
            "ipnUrl": self.settings.momo_ipn_url,
            "extraData": "",
            "requestType": REQUEST_TYPE,
            "lang": "en" if context.locale == "en" else "vi",
        }
        request["signature"] = self.sign(CREATE_SIGNATURE_FIELDS, request)
        response = await self.post(self.settings.momo_api_endpoint, json=request)
        if text(response.get("resultCode")) != "0" or not response.get("payUrl"):
            raise GatewayUnavailableError(
                self.gateway,
                message=f"MoMo rejected the order: {response.get('message', 'unknown error')}",
                details={"response": response},
            )
        return RedirectTarget(redirect_url=response["payUrl"], request=request, response=response)

    def verify_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        # Redirect (query string) and IPN (JSON body) carry the same signed fields
        expected = self.sign(RESULT_SIGNATURE_FIELDS, params)
        if not signatures_match(expected, text(params.get("signature")) or None):
            raise SignatureInvalidError(self.gateway)
        amount = text(params.get("amount"))
        return CallbackResult(
            order_code=text(params.get("orderId")),
            outcome=SUCCESS if text(params.get("resultCode")) == "0" else FAILED,
            verified_amount=int(amount) if amount.isdigit() else None,
            gateway_transaction_id=text(params.get("transId")) or None,
        )
