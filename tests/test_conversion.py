"""Coin to VND conversion and recharge input checks."""

import pytest

from coinpay.core.exceptions import ValidationError
from coinpay.services.conversion import to_fiat_amount, validate_gateway, validate_recharge


def test_to_fiat_amount_is_exact():
    assert to_fiat_amount(500, 100) == 50_000
    assert to_fiat_amount(1, 100) == 100
    assert to_fiat_amount(999_999, 1000) == 999_999_000


@pytest.mark.parametrize("credit_amount", [0, -5, 1.5, "10", True, None])
def test_to_fiat_amount_rejects_non_positive_or_non_integer(credit_amount):
    with pytest.raises(ValidationError):
        to_fiat_amount(credit_amount, 100)


def test_to_fiat_amount_rejects_bad_rate():
    with pytest.raises(ValidationError):
        to_fiat_amount(10, 0)


def test_validate_gateway():
    assert validate_gateway("MOMO") == "MOMO"
    with pytest.raises(ValidationError) as exc:
        validate_gateway("PAYPAL")
    assert exc.value.details["supported"] == ["VNPAY", "ZALOPAY", "MOMO"]


def test_validate_recharge_uses_configured_rate():
    assert validate_recharge(500, "ZALOPAY") == 50_000


def test_validate_recharge_enforces_maximum():
    with pytest.raises(ValidationError):
        validate_recharge(1_000_001, "VNPAY")


def test_validate_recharge_checks_gateway_first():
    with pytest.raises(ValidationError, match="Unsupported payment gateway"):
        validate_recharge(10, "vnpay")
