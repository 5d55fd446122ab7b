"""Gateway adapter contract: sign outbound payment requests, verify inbound callbacks."""

import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Mapping

import httpx
from pydantic import BaseModel, Field

from coinpay.core.config import Settings, get_settings
from coinpay.core.exceptions import GatewayUnavailableError
from coinpay.core.logging import get_logger
from coinpay.models.recharge_order import RechargeOrder
from coinpay.services.conversion import validate_gateway

log = get_logger(__name__)

# All three providers date their fields in Vietnam time
VN_TZ = timezone(timedelta(hours=7))


class ClientContext(BaseModel):
    ip_address: str = "127.0.0.1"
    locale: str = "vn"


class RedirectTarget(BaseModel):
    redirect_url: str
    request: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)


class CallbackResult(BaseModel):
    order_code: str
    outcome: Literal["SUCCESS", "FAILED"]
    verified_amount: int | None = None
    gateway_transaction_id: str | None = None


class GatewayAdapter(ABC):
    gateway: str = ""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when credentials for this gateway are present."""
        ...

    @abstractmethod
    async def build_order_request(self, order: RechargeOrder, context: ClientContext) -> RedirectTarget:
        """Sign the order into the provider's request; return where to send the user."""
        ...

    @abstractmethod
    def verify_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        """Check the provider's signature; raise SignatureInvalidError on mismatch."""
        ...

    def generate_order_code(self, now: datetime | None = None) -> str:
        now = now or datetime.now(VN_TZ)
        return f"{int(now.timestamp() * 1000)}{secrets.randbelow(10_000):04d}"

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.gateway_timeout_seconds,
            transport=self._transport,
        )

    async def post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        """POST to the provider and return the decoded JSON body."""
        try:
            async with self.http_client() as client:
                response = await client.post(url, **kwargs)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("gateway_request_failed", gateway=self.gateway, url=url, error=str(e))
            raise GatewayUnavailableError(self.gateway, details={"reason": str(e)[:500]}) from e


def text(value: Any) -> str:
    """Canonical string form of a signed field."""
    return "" if value is None else str(value)


def get_adapter(
    gateway: str,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GatewayAdapter:
    validate_gateway(gateway)
    if gateway == "VNPAY":
        from coinpay.gateways.vnpay import VNPayAdapter
        return VNPayAdapter(settings, transport)
    if gateway == "ZALOPAY":
        from coinpay.gateways.zalopay import ZaloPayAdapter
        return ZaloPayAdapter(settings, transport)
    from coinpay.gateways.momo import MomoAdapter
    return MomoAdapter(settings, transport)
