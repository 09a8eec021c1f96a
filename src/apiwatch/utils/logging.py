import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


def setup_logging(level: int = logging.INFO, colors: bool = True) -> None:
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("apiwatch").setLevel(level)
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
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**context: object) -> Iterator[None]:
    """Bind non-empty context values to every log line emitted inside the block."""
    to_bind = {key: value for key, value in context.items() if value not in (None, "")}
    with structlog.contextvars.bound_contextvars(**to_bind):
        yield
