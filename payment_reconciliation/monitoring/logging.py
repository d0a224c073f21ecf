"""
Structured logging for the reconciliation service.

Every log line carries the service identity, the request id bound by the API
middleware and, inside a reconciliation, the transaction id of the payment
being worked on. Gateway credentials never reach the output.
"""
import logging
import sys
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from payment_reconciliation import __version__
from payment_reconciliation.config import Settings, get_settings

REDACTED = "***"

# Credential fields as SSLCommerz and the settings name them.
SECRET_FIELDS = frozenset({"store_passwd", "store_password", "sslcommerz_store_password", "password"})

# Chatty libraries; request and gateway calls are already logged by the service.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "aiosqlite", "asyncio")

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def service_context(settings: Settings) -> Processor:
    """Build a processor stamping service name, environment and version."""
    identity = {
        "service": settings.app_name,
        "environment": settings.app_env,
        "version": __version__,
    }

    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in identity.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Mask gateway credentials, including inside logged form bodies.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary

    Returns:
        Dict[str, Any]: Event dictionary with secrets masked
    """
    for key, value in event_dict.items():
        if key in SECRET_FIELDS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict) and SECRET_FIELDS.intersection(value):
            event_dict[key] = {k: REDACTED if k in SECRET_FIELDS else v for k, v in value.items()}
    return event_dict


@contextmanager
def payment_context(
    transaction_id: Optional[str] = None, payment_id: Optional[Any] = None
) -> Iterator[None]:
    """
    Bind a payment's identifiers to every log line emitted inside the block.

    Ledger and repository logs deep inside a reconciliation pick the
    transaction id up without it being passed down.
    """
    bindings = {"transaction_id": transaction_id, "payment_id": payment_id}
    bindings = {k: str(v) for k, v in bindings.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bindings):
        yield


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Renders JSON unless log_json is turned off for local work.
    """
    settings = settings or get_settings()
    json_format = settings.log_json

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="@timestamp"),
        structlog.processors.format_exc_info,
        service_context(settings),
        redact_secrets,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn, alembic and SQLAlchemy log through stdlib.
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
                static_fields={"service": settings.app_name, "environment": settings.app_env},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        json_format=json_format,
    )
