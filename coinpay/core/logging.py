import logging

import structlog

# Shared by our own events and by stdlib records (uvicorn, arq, motor)
_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def configure_logging(debug: bool = False) -> None:
    """Console output in debug, one JSON object per line otherwise; both for structlog and stdlib loggers."""
    log_level = logging.DEBUG if debug else logging.INFO
    tail = [structlog.dev.ConsoleRenderer()] if debug else [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *tail],
        )
    )
    logging.basicConfig(handlers=[handler], level=log_level, force=True)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.processors.StackInfoRenderer(), *tail],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str, **values: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **values)


def bind_payment_context(**values: str) -> None:
    """Attach gateway/order identifiers to every later log line of the current request or job."""
    structlog.contextvars.bind_contextvars(**values)
