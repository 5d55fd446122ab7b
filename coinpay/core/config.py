import json
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ("http://localhost:3000", "http://localhost:3100", "http://localhost:5173")


def _parse_cors_origins(raw: str | None) -> List[str]:
    """Comma-separated or JSON list; falls back to the local frontends."""
    raw = (raw or "").strip()
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except ValueError:
            values = []
        if not isinstance(values, list):
            values = []
    else:
        values = raw.split(",")
    origins = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return origins or list(_DEFAULT_CORS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="coinpay", alias="MONGODB_DB_NAME")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default=",".join(_DEFAULT_CORS),
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(self.cors_origins_raw)

    # Recharge
    coin_conversion_rate: int = Field(default=100, alias="COIN_CONVERSION_RATE")  # VND per coin
    recharge_min_credits: int = Field(default=1, alias="RECHARGE_MIN_CREDITS")
    recharge_max_credits: int = Field(default=1_000_000, alias="RECHARGE_MAX_CREDITS")
    recharge_timeout_minutes: int = Field(default=15, alias="RECHARGE_TIMEOUT_MINUTES")
    reaper_batch_size: int = Field(default=200, alias="REAPER_BATCH_SIZE")
    gateway_timeout_seconds: float = Field(default=15.0, alias="GATEWAY_TIMEOUT_SECONDS")
    report_utc_offset_hours: int = Field(default=7, alias="REPORT_UTC_OFFSET_HOURS")

    # Frontends (post-payment redirects)
    candidate_fe_url: str = Field(default="http://localhost:3000", alias="CANDIDATE_FE_URL")
    recruiter_fe_url: str = Field(default="http://localhost:3100", alias="RECRUITER_FE_URL")
    default_fe_url: str = Field(default="http://localhost:3000", alias="DEFAULT_FE_URL")

    # VNPay
    vnpay_tmn_code: str = Field(default="", alias="VNPAY_TMN_CODE")
    vnpay_hash_secret: str = Field(default="", alias="VNPAY_HASH_SECRET")
    vnpay_url: str = Field(
        default="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        alias="VNPAY_URL",
    )
    vnpay_return_url: str = Field(
        default="http://localhost:8000/v1/payments/vnpay/return",
        alias="VNPAY_RETURN_URL",
    )

    # ZaloPay
    zalopay_app_id: str = Field(default="", alias="ZALOPAY_APP_ID")
    zalopay_key1: str = Field(default="", alias="ZALOPAY_KEY1")
    zalopay_key2: str = Field(default="", alias="ZALOPAY_KEY2")
    zalopay_create_order_url: str = Field(
        default="https://sb-openapi.zalopay.vn/v2/create",
        alias="ZALOPAY_CREATE_ORDER_URL",
    )
    zalopay_redirect_url: str = Field(
        default="http://localhost:8000/v1/payments/zalopay/redirect",
        alias="ZALOPAY_REDIRECT_URL",
    )
    zalopay_callback_url: str = Field(
        default="http://localhost:8000/v1/payments/zalopay/callback",
        alias="ZALOPAY_CALLBACK_URL",
    )

    # MoMo
    momo_partner_code: str = Field(default="", alias="MOMO_PARTNER_CODE")
    momo_access_key: str = Field(default="", alias="MOMO_ACCESS_KEY")
    momo_secret_key: str = Field(default="", alias="MOMO_SECRET_KEY")
    momo_api_endpoint: str = Field(
        default="https://test-payment.momo.vn/v2/gateway/api/create",
        alias="MOMO_API_ENDPOINT",
    )
    momo_redirect_url: str = Field(
        default="http://localhost:8000/v1/payments/momo/redirect",
        alias="MOMO_REDIRECT_URL",
    )
    momo_ipn_url: str = Field(
        default="http://localhost:8000/v1/payments/momo/ipn",
        alias="MOMO_IPN_URL",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
