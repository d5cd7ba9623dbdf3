"""
Search Docs Plugin

Documentation search for OpenSCAD and its libraries (BOSL2, threads-scad, ...), backed by an
OpenAI assistant with file search over a vector store. The HTTP service answers each query with a
fixed structured shape (signature, parameters, examples, notes, sources) for upstream agents.

Modules:
    - search: DocsSearchService, the search orchestrator
    - assistant: lookup/creation of the remote assistant
    - cache: query key normalization and the TTL answer cache
    - answer: the Answer type and reply parsing
    - config: environment and tuning file configuration
    - server: the Starlette HTTP application and CLI entry point

To run the server, use `search_docs_plugin.server.main` (the `search-docs-plugin` command).
"""

import logging

from ._version import version as __version__

__all__ = ["__version__"]

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())
