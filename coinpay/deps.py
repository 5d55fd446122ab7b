"""Shared FastAPI dependencies: the session user, role guards and the payer's client context."""

from typing import Awaitable, Callable

from fastapi import Request

from coinpay.core.exceptions import ForbiddenError, UnauthorizedError
from coinpay.core.security import load_session_cookie
from coinpay.gateways.base import ClientContext
from coinpay.models.user import User

SESSION_COOKIE_NAME = "coinpay_session"


async def get_current_user(request: Request) -> User:
    """Dependency: the active user behind the signed session cookie."""
    payload = load_session_cookie(request.cookies.get(SESSION_COOKIE_NAME) or "")
    if payload is None:
        raise UnauthorizedError("Not authenticated")
    user = await User.get(payload["user_id"]) if payload.get("user_id") else None
    if user is None or not user.active:
        raise UnauthorizedError("User not found")
    # Logging out everywhere bumps session_version
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


def require_role(*roles: str) -> Callable[[Request], Awaitable[User]]:
    async def dependency(request: Request) -> User:
        user = await get_current_user(request)
        if user.role not in roles:
            raise ForbiddenError(f"Requires role: {', '.join(roles)}")
        return user
    return dependency


require_admin = require_role("admin")


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer; IPv4-mapped IPv6 unwrapped."""
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "")
    if ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip or "127.0.0.1"


def get_client_context(request: Request) -> ClientContext:
    """What the gateways need to know about the payer's browser."""
    lang = request.headers.get("accept-language", "").lower()
    return ClientContext(ip_address=client_ip(request), locale="en" if lang.startswith("en") else "vn")
