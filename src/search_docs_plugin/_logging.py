"""
Process-wide logging for the search docs plugin server.

Startup order (see `search_docs_plugin.server.main`):
    1. `setup_global_exception_logging()` routes uncaught synchronous exceptions to the log.
    2. `setup_logging()` configures the root logger before uvicorn starts.
    3. The application lifespan calls `install_loop_exception_handler()` on the loop uvicorn
       is serving on. Uvicorn may run on uvloop, so the handler is attached to the running
       loop instead of hooking loop creation.

The OpenAI SDK logs every HTTP request through httpx at INFO; those loggers are held at
WARNING unless the root level is DEBUG.
"""

import asyncio
import logging
import os
import sys
from types import TracebackType
from typing import Any

__all__ = [
    "LOG_LEVEL_ENV_VAR",
    "setup_logging",
    "setup_global_exception_logging",
    "install_loop_exception_handler",
]

_LOGGER = logging.getLogger(__name__)

LOG_LEVEL_ENV_VAR = "PYTHONLOGLEVEL"
"""str: Environment variable holding the root log level (default INFO)."""

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

_HTTP_CLIENT_LOGGERS = ("httpx", "httpcore", "openai")

_EXC_LOGGING_INSTALLED = False


def setup_logging(level: str | None = None) -> None:
    """
    Configure the root logger on stderr.

    Args:
        level (str | None): Level name. Defaults to the PYTHONLOGLEVEL environment variable,
            else "INFO".
    """
    resolved = (level or os.getenv(LOG_LEVEL_ENV_VAR) or "INFO").upper()
    logging.basicConfig(level=resolved, format=_LOG_FORMAT, stream=sys.stderr, force=True)

    if resolved != "DEBUG":
        for name in _HTTP_CLIENT_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _LOGGER.debug(f"[_logging:setup_logging] Root logging configured at {resolved}")


def _log_uncaught_exception(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        return
    _LOGGER.error(
        f"[_logging:_log_uncaught_exception] Unhandled exception: {exc_type.__name__}: {exc_value}",
        exc_info=(exc_type, exc_value, exc_traceback),
    )


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exception = context.get("exception")
    _LOGGER.error(
        f"[_logging:_log_loop_exception] Unhandled asyncio exception: {context.get('message')}",
        exc_info=(
            (type(exception), exception, exception.__traceback__) if exception else None
        ),
    )


def setup_global_exception_logging() -> None:
    """
    Log uncaught synchronous exceptions (except KeyboardInterrupt) through this module's logger.

    Calling it more than once is a no-op.
    """
    global _EXC_LOGGING_INSTALLED
    if _EXC_LOGGING_INSTALLED:
        return
    _EXC_LOGGING_INSTALLED = True
    sys.excepthook = _log_uncaught_exception


def install_loop_exception_handler(loop: asyncio.AbstractEventLoop | None = None) -> None:
    """
    Log exceptions the event loop would otherwise report only to stderr.

    Args:
        loop (asyncio.AbstractEventLoop | None): Loop to attach to. Defaults to the running loop.

    Raises:
        RuntimeError: If `loop` is None and no loop is running.
    """
    target = loop or asyncio.get_running_loop()
    target.set_exception_handler(_log_loop_exception)
    _LOGGER.debug("[_logging:install_loop_exception_handler] asyncio exception handler installed")
