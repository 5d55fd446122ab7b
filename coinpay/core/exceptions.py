from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from coinpay.core.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ValidationError(AppError):
    """Rejected input; raised before anything is persisted."""

    def __init__(self, message: str = "Invalid input", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InsufficientCreditsError(AppError):
    def __init__(self, message: str = "Insufficient credits", details: dict[str, Any] | None = None):
        super().__init__(message, code="INSUFFICIENT_CREDITS", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class DuplicateOrderCodeError(AppError):
    def __init__(self, order_code: str):
        super().__init__(
            f"Order code already exists: {order_code}",
            code="DUPLICATE_ORDER_CODE",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_code": order_code},
        )
        self.order_code = order_code


class AlreadyTerminalError(AppError):
    """Conditional transition lost: the order already left the expected state."""

    def __init__(self, order_code: str, current_status: str):
        super().__init__(
            f"Order {order_code} is already {current_status}",
            code="ALREADY_TERMINAL",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_code": order_code, "status": current_status},
        )
        self.order_code = order_code
        self.current_status = current_status


class SignatureInvalidError(AppError):
    def __init__(self, gateway: str, message: str = "Invalid callback signature"):
        super().__init__(
            message,
            code="SIGNATURE_INVALID",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"gateway": gateway},
        )
        self.gateway = gateway


class GatewayUnavailableError(AppError):
    """Gateway could not create the payment; safe for the client to retry."""

    def __init__(self, gateway: str, message: str = "Payment gateway unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="GATEWAY_UNAVAILABLE",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"gateway": gateway, "retryable": True, **(details or {})},
        )
        self.gateway = gateway


def _envelope(request: Request, status_code: int, message: str, code: str, details: dict[str, Any]) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details}}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return ORJSONResponse(status_code=status_code, content=body)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    return _envelope(request, exc.status_code, exc.message, exc.code, exc.details)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if exc.status_code >= 500:
        log.warning("app_error", code=exc.code, error=exc.message, path=request.url.path)
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    log.exception("unhandled_exception", path=request.url.path, exc_info=exc)
    return _envelope(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR", {})
