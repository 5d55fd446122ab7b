import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from coinpay.core.config import get_settings
from coinpay.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from coinpay.core.logging import bind_request_id, configure_logging, get_logger
from coinpay.db.init import close_db, init_db
from coinpay.deps import client_ip
from coinpay.gateways.base import get_adapter
from coinpay.models.recharge_order import GATEWAYS
from coinpay.routers import admin, credits, payments

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

# Payment traffic is always logged at info; other requests only at debug or on errors
_CALLBACK_PREFIX = "/v1/payments/"


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    import sentry_sdk
    sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
    log.info("sentry_enabled", environment=settings.env)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_sentry()
    await init_db()
    configured = [g for g in GATEWAYS if get_adapter(g).configured]
    missing = sorted(set(GATEWAYS) - set(configured))
    log.info("startup", gateways=configured)
    if missing:
        log.warning("gateways_not_configured", gateways=missing)
    yield
    close_db()
    log.info("shutdown")


app = FastAPI(
    title="Coin recharge & credit ledger API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id, client_ip=client_ip(request))
    start = time.perf_counter()
    response = await call_next(request)
    emit = log.info if request.url.path.startswith(_CALLBACK_PREFIX) or response.status_code >= 400 else log.debug
    emit(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(payments.router, prefix="/v1/payments", tags=["payments"])
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
