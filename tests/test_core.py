"""Settings parsing, signature helpers and session cookies."""

import pytest

from coinpay.core.config import Settings, _parse_cors_origins
from coinpay.core.pagination import page_meta, paginate
from coinpay.core.security import create_session_cookie, hmac_hex, load_session_cookie, signatures_match


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://a.vn, https://b.vn", ["https://a.vn", "https://b.vn"]),
        ('["https://a.vn", ""]', ["https://a.vn"]),
        ("", ["http://localhost:3000", "http://localhost:3100", "http://localhost:5173"]),
        ("[not json", ["http://localhost:3000", "http://localhost:3100", "http://localhost:5173"]),
    ],
)
def test_cors_origins(raw, expected):
    assert _parse_cors_origins(raw) == expected


def test_settings_read_env_aliases(monkeypatch):
    monkeypatch.setenv("COIN_CONVERSION_RATE", "250")
    monkeypatch.setenv("RECHARGE_TIMEOUT_MINUTES", "30")
    s = Settings()
    assert s.coin_conversion_rate == 250
    assert s.recharge_timeout_minutes == 30


def test_hmac_hex_known_vectors():
    # RFC 4231 test case 2
    assert hmac_hex("Jefe", "what do ya want for nothing?") == (
        "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
    )
    assert hmac_hex("Jefe", "what do ya want for nothing?", "sha512").startswith("164b7a7bfcf819e2e395fbe73b56e0a3")


def test_signatures_match():
    assert signatures_match("abcdef", "ABCDEF")
    assert signatures_match("abcdef", " abcdef ")
    assert not signatures_match("abcdef", "abcdee")
    assert not signatures_match("abcdef", "")
    assert not signatures_match("abcdef", None)


def test_session_cookie_round_trip_and_tamper():
    cookie = create_session_cookie({"user_id": "u1", "session_version": 0})
    assert load_session_cookie(cookie) == {"user_id": "u1", "session_version": 0}
    assert load_session_cookie(cookie[:-2] + "xx") is None
    assert load_session_cookie("") is None


def test_pagination_clamps():
    assert paginate(0, 500) == (1, 100, 0)
    assert paginate(3, 20) == (3, 20, 40)
    assert page_meta(1, 20, 0)["total_pages"] == 0
    assert page_meta(2, 20, 41) == {
        "current_page": 2,
        "total_pages": 3,
        "total_records": 41,
        "limit": 20,
        "has_next_page": True,
        "has_prev_page": True,
    }
