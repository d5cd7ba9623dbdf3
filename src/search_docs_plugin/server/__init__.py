"""
search_docs_plugin.server package.

Entrypoint for the search docs plugin HTTP server. The Starlette application and its routes are
implemented in the internal module `_app.py`.

Exports:
    - create_app: Build the Starlette application.
    - run_server: Configure logging and serve the application with uvicorn.
    - main: Command-line entry point (`search-docs-plugin`).

Usage:
    from search_docs_plugin.server import run_server
    run_server()
"""

import asyncio
import logging

import uvicorn

from .._logging import setup_global_exception_logging, setup_logging
from .._monkeypatch import monkeypatch_uvicorn_exception_handling
from ..config import ConfigManager
from ._app import create_app

__all__ = ["create_app", "run_server", "main"]

_LOGGER = logging.getLogger(__name__)


def run_server(host: str | None = None, port: int | None = None) -> None:
    """
    Start the HTTP server.

    Host and port default to the HOST and PORT values of the loaded configuration.

    Args:
        host (str | None): Interface to bind, overriding the configuration.
        port (int | None): Port to bind, overriding the configuration.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    setup_logging()

    config_manager = ConfigManager()
    config = asyncio.run(config_manager.get_config())
    bind_host = host or config.host
    bind_port = port or config.port

    app = create_app(config_manager=config_manager)
    try:
        _LOGGER.warning(
            f"Starting search docs plugin server (host={bind_host}, port={bind_port})"
        )
        uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)
    finally:
        _LOGGER.info("Search docs plugin server stopped.")


def main() -> None:
    """
    Command-line entry point for the search docs plugin server.

    Arguments:
        --host: Interface to bind. Default: HOST environment variable, else 0.0.0.0.
        --port: Port to bind. Default: PORT environment variable, else 8080.
    """
    import argparse

    setup_global_exception_logging()
    parser = argparse.ArgumentParser(description="Start the search docs plugin server.")
    parser.add_argument(
        "--host",
        default=None,
        help="Interface to bind. Default: HOST environment variable, else 0.0.0.0",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind. Default: PORT environment variable, else 8080",
    )
    args = parser.parse_args()
    _LOGGER.info(f"CLI args: {args}")
    monkeypatch_uvicorn_exception_handling()
    run_server(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
