# Core Module - Structured Logging
#
# All CipherGuard modules log through structlog bound loggers that sit on top
# of Python's stdlib logging. Vault events carry ids, counts and phases only:
# never passwords, derived keys, salts or decrypted entry content.

import logging
import sys
from typing import Optional

import structlog

_handler: Optional[logging.Handler] = None


def configure_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """
    Configure structlog + stdlib logging for the process.

    Safe to call more than once: the previous stream handler is replaced,
    so only one is ever installed and it writes to the current sys.stderr.

    Args:
        level: stdlib level name (DEBUG, INFO, WARNING, ...)
        json_output: Render events as JSON lines instead of key=value text
    """
    global _handler

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger("cipherguard")
    if _handler is not None:
        root_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(message)s"))  # structlog handles formatting
    root_logger.addHandler(_handler)
    root_logger.setLevel(numeric_level)


def get_logger(name: Optional[str] = None):
    """
    Return a structlog logger wrapping the stdlib logger ``name``.

    The wrapped logger always routes through stdlib logging, so importing the
    library without calling configure_logging() behaves like any stdlib
    library logger (nothing is printed to stdout).
    """
    return structlog.wrap_logger(
        logging.getLogger(name or "cipherguard"),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
