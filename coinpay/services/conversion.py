"""Coin to VND conversion and recharge input checks. Pure; runs before anything is stored."""

from coinpay.core.config import get_settings
from coinpay.core.exceptions import ValidationError
from coinpay.models.recharge_order import GATEWAYS


def to_fiat_amount(credit_amount: int, rate: int) -> int:
    """Exact integer conversion: credit_amount * rate."""
    if isinstance(credit_amount, bool) or not isinstance(credit_amount, int) or credit_amount <= 0:
        raise ValidationError("Credit amount must be a positive integer", details={"credit_amount": credit_amount})
    if isinstance(rate, bool) or not isinstance(rate, int) or rate <= 0:
        raise ValidationError("Conversion rate must be a positive integer", details={"rate": rate})
    return credit_amount * rate


def validate_gateway(gateway: str) -> str:
    if gateway not in GATEWAYS:
        raise ValidationError(
            f"Unsupported payment gateway: {gateway}",
            details={"gateway": gateway, "supported": list(GATEWAYS)},
        )
    return gateway


def validate_recharge(credit_amount: int, gateway: str) -> int:
    """Check a recharge request against configured bounds; return the VND amount."""
    settings = get_settings()
    validate_gateway(gateway)
    fiat_amount = to_fiat_amount(credit_amount, settings.coin_conversion_rate)
    if not settings.recharge_min_credits <= credit_amount <= settings.recharge_max_credits:
        raise ValidationError(
            f"Credit amount must be between {settings.recharge_min_credits} and {settings.recharge_max_credits}",
            details={"credit_amount": credit_amount},
        )
    return fiat_amount
