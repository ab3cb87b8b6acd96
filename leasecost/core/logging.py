import sys
import logging
from typing import Any, Optional, cast

import structlog

from leasecost.core.config import get_settings


def setup_logging() -> None:
    settings = get_settings()

    base_processors = [
        structlog.contextvars.merge_contextvars,  # Support async context
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
        min_level = logging.INFO

    structlog.configure(
        processors=cast(Any, processors),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route library logs (botocore, aiobotocore) through the same stream.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )


def component_logger(component: str, logger: Optional[Any] = None) -> Any:
    """
    Return the logger a component should use.

    An injected logger wins; otherwise a fresh structlog logger is bound to the
    service and component names so every event carries both.
    """
    if logger is not None:
        return logger
    return structlog.get_logger(component).bind(
        service=get_settings().APP_NAME, component=component
    )
