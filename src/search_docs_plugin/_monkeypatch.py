"""
Monkeypatch utilities for the search docs plugin server.

Uvicorn does not reliably log exceptions that escape an ASGI application. This module
wraps uvicorn's RequestResponseCycle so that any such exception is written as a structured
JSON record before it propagates, which keeps container log collectors able to parse it.

Logging Strategies:
    1. Direct stderr JSON: bypasses Python logging entirely.
    2. Python JSON Logger: a dedicated `json_asgi_errors` logger using pythonjsonlogger.

Usage:
    Call `monkeypatch_uvicorn_exception_handling()` once at process startup.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import json as jsonlogger
from uvicorn.protocols.http.httptools_impl import RequestResponseCycle

_LOGGER = logging.getLogger(__name__)

_JSON_LOGGER_NAME = "json_asgi_errors"


def _setup_json_logging() -> logging.Logger:
    """
    Configure the Python JSON Logger used for unhandled ASGI exceptions.

    Returns:
        logging.Logger: The `json_asgi_errors` logger writing JSON to stderr at ERROR level,
            with propagation disabled so records are not duplicated by the root logger.
    """
    json_logger = logging.getLogger(_JSON_LOGGER_NAME)

    if not json_logger.handlers:
        json_handler = logging.StreamHandler(sys.stderr)
        json_formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S.%fZ",
        )
        json_handler.setFormatter(json_formatter)
        json_logger.addHandler(json_handler)
        json_logger.setLevel(logging.ERROR)

    json_logger.propagate = False
    return json_logger


_json_logger: logging.Logger | None = None


def _get_json_logger() -> logging.Logger:
    """Return the JSON logger, creating it on first use."""
    global _json_logger
    if _json_logger is None:
        _json_logger = _setup_json_logging()
    return _json_logger


def _build_error_record(exc: BaseException) -> dict[str, Any]:
    """
    Build the structured record written for an unhandled ASGI exception.

    Args:
        exc (BaseException): The exception that escaped the application.

    Returns:
        dict[str, Any]: A JSON-serializable record with timestamp, severity, message and exception details.
    """
    exc_type = type(exc)
    full_traceback = "".join(
        traceback.format_exception(exc_type, exc, exc.__traceback__)
    )
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "severity": "ERROR",
        "message": f"Unhandled exception in ASGI application: {exc_type.__name__}: {exc}",
        "exception": {
            "type": exc_type.__name__,
            "module": exc_type.__module__,
            "args": str(getattr(exc, "args", None)),
            "traceback": full_traceback,
        },
    }


def monkeypatch_uvicorn_exception_handling() -> None:
    """
    Monkey-patch uvicorn's RequestResponseCycle so unhandled ASGI exceptions are logged as JSON.

    The original exception is always re-raised after logging so uvicorn's normal 500 handling
    still applies. Call exactly once at process startup.
    """
    _LOGGER.warning(
        "Monkey-patching Uvicorn's RequestResponseCycle to log unhandled ASGI exceptions."
    )
    orig_run_asgi = RequestResponseCycle.run_asgi

    async def my_run_asgi(self: RequestResponseCycle, app: Any) -> None:
        async def wrapped_app(*args: Any) -> Any:
            try:
                return await app(*args)
            except Exception as e:
                record = _build_error_record(e)

                # Strategy #1: direct stderr JSON
                print(json.dumps(record), file=sys.stderr, flush=True)

                # Strategy #2: Python JSON Logger
                try:
                    _get_json_logger().error(
                        record["message"],
                        extra={
                            "severity": "ERROR",
                            "exception_type": record["exception"]["type"],
                            "exception_module": record["exception"]["module"],
                            "exception_message": str(e),
                            "stack_trace": record["exception"]["traceback"],
                        },
                        exc_info=(type(e), e, e.__traceback__),
                    )
                except Exception as json_err:
                    print(f"Python JSON Logger failed: {json_err}", file=sys.stderr)

                raise

        await orig_run_asgi(self, wrapped_app)

    RequestResponseCycle.run_asgi = my_run_asgi  # type: ignore[method-assign]
