"""
Starlette application for the search docs plugin.

Endpoints:
    - GET /health: liveness/readiness probe.
    - POST /search_docs: run a documentation search and return a plugin result.

Plugin result contract (always HTTP 200):
    {
        "ok": bool,
        "tokensUsed": int,
        "artifacts": [],
        "result": "<JSON string>",
        "error": "<message>"        # only when ok is false
    }

Domain failures never produce a non-2xx status; callers key off `ok` and `error`.

The `DocsSearchService` lives on `app.state.search_service`. It is either passed to
`create_app` or built by the application lifespan from a `ConfigManager`.
"""

import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .._exceptions import InternalError
from .._logging import install_loop_exception_handler
from ..config import ConfigManager
from ..search import DocsSearchService

__all__ = ["SERVICE_NAME", "QUERY_REQUIRED", "create_app", "plugin_result"]

_LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "search-docs-plugin"
"""str: Service name reported by the health endpoint."""

QUERY_REQUIRED = "query is required"


def plugin_result(
    ok: bool,
    result: dict[str, Any],
    tokens_used: int = 0,
    error: str | None = None,
) -> dict[str, Any]:
    """
    Build a plugin result body.

    Args:
        ok (bool): Whether the search succeeded.
        result (dict[str, Any]): Payload, serialized into the `result` JSON string.
        tokens_used (int): Tokens consumed by the remote run.
        error (str | None): Error message; included only when given.

    Returns:
        dict[str, Any]: The response body.
    """
    body: dict[str, Any] = {
        "ok": ok,
        "tokensUsed": tokens_used,
        "artifacts": [],
        "result": json.dumps(result),
    }
    if error is not None:
        body["error"] = error
    return body


def _error_result(message: str) -> dict[str, Any]:
    return plugin_result(False, {"error": message}, error=message)


def _utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a 'Z' suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint.

    Returns:
        JSONResponse: HTTP 200 with {"status": "healthy", "service": "search-docs-plugin", "timestamp": ...}.
    """
    _LOGGER.debug("[server:health_check] Health check requested")
    return JSONResponse(
        {"status": "healthy", "service": SERVICE_NAME, "timestamp": _utc_timestamp()}
    )


async def search_docs(request: Request) -> JSONResponse:
    """
    Documentation search endpoint.

    Request body:
        {
            "context": {"sessionId": str, "projectId": str?, "accountId": str, "step": int},
            "args": {"query": str, "context": str?}
        }

    Returns:
        JSONResponse: HTTP 200 with a plugin result. On success `result` decodes to
        {"query": ..., "context": ... (only when supplied), "answer": {...}}.
    """
    start_time = time.monotonic()

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        _LOGGER.error(f"[search_docs] invalid request body: {e}")
        return JSONResponse(_error_result(f"Invalid JSON request body: {e}"))

    try:
        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        args = body.get("args") or {}
        if not isinstance(args, dict):
            raise ValueError("args must be an object")

        query = args.get("query")
        context = args.get("context")

        if not query or not isinstance(query, str) or not query.strip():
            return JSONResponse(_error_result(QUERY_REQUIRED))
        if context is not None and not isinstance(context, str):
            raise ValueError("args.context must be a string")

        request_context = body.get("context")
        session_id = (
            request_context.get("sessionId")
            if isinstance(request_context, dict)
            else None
        )
        _LOGGER.info(f'[search_docs] session={session_id} query="{query}"')

        service: DocsSearchService | None = getattr(
            request.app.state, "search_service", None
        )
        if service is None:
            raise InternalError("Search service is not initialized")
        outcome = await service.search(query, context)

        result: dict[str, Any] = {"query": query}
        if context is not None:
            result["context"] = context
        result["answer"] = outcome.answer.to_dict()

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        _LOGGER.info(
            f"[search_docs] completed in {elapsed_ms}ms, tokens={outcome.tokens_used}"
        )
        return JSONResponse(plugin_result(True, result, tokens_used=outcome.tokens_used))

    except Exception as e:
        _LOGGER.error(f"[search_docs] error: {e}", exc_info=True)
        return JSONResponse(_error_result(str(e)))


def create_app(
    search_service: DocsSearchService | None = None,
    config_manager: ConfigManager | None = None,
) -> Starlette:
    """
    Create the Starlette application.

    Args:
        search_service (DocsSearchService | None): Service to use. When None, the lifespan builds one
            from `config_manager` at startup.
        config_manager (ConfigManager | None): Configuration source for the lifespan-built service.
            Defaults to a manager reading the process environment.

    Returns:
        Starlette: The application.
    """
    manager = config_manager or ConfigManager()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        _LOGGER.info("[server:lifespan] search docs plugin starting up")
        install_loop_exception_handler()
        if getattr(app.state, "search_service", None) is None:
            app.state.search_service = await DocsSearchService.create(manager)
        config = await manager.get_config()
        _LOGGER.info(f"[server:lifespan] Search Docs Plugin running on port {config.port}")
        _LOGGER.info(
            f"[server:lifespan] Vector Store ID: {config.vector_store_id or 'NOT SET'}"
        )
        _LOGGER.info(
            f"[server:lifespan] OpenAI API Key: {'SET' if config.openai_api_key else 'NOT SET'}"
        )
        try:
            yield
        finally:
            _LOGGER.info("[server:lifespan] search docs plugin shutting down")

    app = Starlette(
        routes=[
            Route("/health", health_check, methods=["GET"]),
            Route("/search_docs", search_docs, methods=["POST"]),
        ],
        lifespan=lifespan,
    )
    app.state.search_service = search_service
    return app
