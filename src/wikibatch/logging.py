import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from wikibatch.exceptions import ApiWarnings

log = structlog.get_logger(__name__)


def setup_logging(level: int = logging.WARNING) -> None:
    logging.basicConfig(format="%(message)s")
    logging.getLogger("wikibatch").setLevel(level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**required_context: t.Any) -> Iterator[None]:
    current = structlog.contextvars.get_contextvars()
    to_bind = {k: v for k, v in required_context.items() if k not in current}

    if to_bind:
        with structlog.contextvars.bound_contextvars(**to_bind):
            yield
    else:
        yield


def log_api_warning(warning: Exception) -> None:
    """
    Default ``warn`` option handler.

    Parameters
    ----------
    warning : Exception
        An ``ApiWarnings`` instance or another warning such as
        ``DefaultUserAgentWarning``.
    """
    if isinstance(warning, ApiWarnings):
        log.warning(
            event="API returned warnings",
            message=str(warning),
            warning_count=len(warning.warnings),
            warnings=warning.warnings,
        )
    else:
        log.warning(
            event="wikibatch warning",
            category=type(warning).__name__,
            message=str(warning),
        )
