"""ZaloPay v2: create-order API signed with key1, callbacks signed with key2 (HMAC-SHA256)."""

import json
from datetime import datetime
from typing import Any, Mapping

from coinpay.core.exceptions import GatewayUnavailableError, SignatureInvalidError, ValidationError
from coinpay.core.security import hmac_hex, signatures_match
from coinpay.gateways.base import VN_TZ, CallbackResult, ClientContext, GatewayAdapter, RedirectTarget, text
from coinpay.models.recharge_order import FAILED, SUCCESS, RechargeOrder

# Browser redirect checksum covers these query fields, in this order
REDIRECT_FIELDS = ("appid", "apptransid", "pmcid", "bankcode", "amount", "discountamount", "status")
RETURN_CODE_OK = 1


class ZaloPayAdapter(GatewayAdapter):
    gateway = "ZALOPAY"

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.zalopay_app_id and s.zalopay_key1 and s.zalopay_key2)

    def generate_order_code(self, now: datetime | None = None) -> str:
        # app_trans_id must start with the current date (GMT+7) as yymmdd_
        now = now or datetime.now(VN_TZ)
        return f"{now.astimezone(VN_TZ):%y%m%d}_{super().generate_order_code(now)}"

    def order_mac(self, request: Mapping[str, Any]) -> str:
        fields = ("app_id", "app_trans_id", "app_user", "amount", "app_time", "embed_data", "item")
        return hmac_hex(self.settings.zalopay_key1, "|".join(text(request[f]) for f in fields))

    async def build_order_request(self, order: RechargeOrder, context: ClientContext) -> RedirectTarget:
        request = {
            "app_id": self.settings.zalopay_app_id,
            "app_trans_id": order.order_code,
            "app_user": str(order.user_id),
            "app_time": int(datetime.now(VN_TZ).timestamp() * 1000),
            "amount": order.fiat_amount,
            "item": json.dumps([
                {
                    "itemid": "coin",
                    "itemname": f"Nap {order.credit_amount} xu",
                    "itemprice": order.fiat_amount,
                    "itemquantity": 1,
                }
            ]),
            "description": f"Nap {order.credit_amount} xu (tri gia {order.fiat_amount} VND)",
            "embed_data": json.dumps({"redirecturl": self.settings.zalopay_redirect_url}),
            "bank_code": "",
            "callback_url": self.settings.zalopay_callback_url,
        }
        request["mac"] = self.order_mac(request)
        response = await self.post(self.settings.zalopay_create_order_url, data=request)
        if response.get("return_code") != RETURN_CODE_OK or not response.get("order_url"):
            raise GatewayUnavailableError(
                self.gateway,
                message=f"ZaloPay rejected the order: {response.get('return_message', 'unknown error')}",
                details={"response": response},
            )
        return RedirectTarget(redirect_url=response["order_url"], request=request, response=response)

    def verify_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        if "data" in params and "mac" in params:
            return self._verify_server_callback(params)
        return self._verify_redirect(params)

    def _verify_server_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        """POST {data, mac, type}: mac = HMAC(key2, data). Only sent for paid orders."""
        raw = text(params["data"])
        if not signatures_match(hmac_hex(self.settings.zalopay_key2, raw), text(params["mac"])):
            raise SignatureInvalidError(self.gateway)
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ValidationError("Malformed ZaloPay callback data") from e
        return CallbackResult(
            order_code=text(data.get("app_trans_id")),
            outcome=SUCCESS,
            verified_amount=int(data["amount"]) if "amount" in data else None,
            gateway_transaction_id=text(data.get("zp_trans_id")) or None,
        )

    def _verify_redirect(self, params: Mapping[str, Any]) -> CallbackResult:
        checksum_data = "|".join(text(params.get(f)) for f in REDIRECT_FIELDS)
        expected = hmac_hex(self.settings.zalopay_key2, checksum_data)
        if not signatures_match(expected, text(params.get("checksum")) or None):
            raise SignatureInvalidError(self.gateway)
        amount = text(params.get("amount"))
        return CallbackResult(
            order_code=text(params.get("apptransid")),
            outcome=SUCCESS if text(params.get("status")) == "1" else FAILED,
            verified_amount=int(amount) if amount.isdigit() else None,
        )
