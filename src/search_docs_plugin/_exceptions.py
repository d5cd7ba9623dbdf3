"""Custom exception types for the search docs plugin.

Defines the exception hierarchy used across the service. Most failure modes of a
documentation search are business outcomes that turn into a descriptive answer
(missing configuration, an empty query, a run that did not complete, a reply that
is not JSON). The exceptions below cover the cases that must travel up to the
request boundary instead, plus the parser signal that triggers the fallback answer.

Exception Hierarchy:
    - SearchDocsError (base for all plugin exceptions)
        - InternalError (also RuntimeError)
        - ConfigurationError
        - RemoteCallError
            - AssistantCreationError
        - ResponseParseError (also ValueError)

Usage Example:
    ```python
    from search_docs_plugin._exceptions import RemoteCallError

    try:
        result = await service.search("cuboid")
    except RemoteCallError as e:
        logger.error(f"Backend call failed: {e}")
        raise
    ```
"""

__all__ = [
    "SearchDocsError",
    "InternalError",
    "ConfigurationError",
    "RemoteCallError",
    "AssistantCreationError",
    "ResponseParseError",
]


class SearchDocsError(Exception):
    """Base exception for all search docs plugin errors.

    Callers that only need to know "the plugin failed" can catch this single type
    while more specific handlers catch the subclasses.
    """

    pass


class InternalError(SearchDocsError, RuntimeError):
    """Internal errors indicating a bug in the plugin rather than a usage or backend problem."""

    pass


class ConfigurationError(SearchDocsError):
    """Raised when the plugin configuration file or environment is invalid.

    A missing vector store id is NOT a configuration error: the service answers
    with a descriptive "not configured" result instead.
    """

    pass


class RemoteCallError(SearchDocsError):
    """Raised when a call to the remote assistant backend fails.

    Covers network, authentication and API errors raised by the OpenAI SDK while
    creating threads, running them, or listing their messages. The HTTP layer turns
    this into an ``ok: false`` plugin result.
    """

    pass


class AssistantCreationError(RemoteCallError):
    """Raised when the documentation search assistant cannot be found or created."""

    pass


class ResponseParseError(SearchDocsError, ValueError):
    """Raised when assistant reply text does not contain a structured JSON answer.

    The search service catches this and substitutes the raw-text fallback answer,
    so it never reaches the HTTP caller.
    """

    def __init__(self, message: str, raw: str):
        """Initialize the exception.

        Args:
            message (str): Description of why parsing failed.
            raw (str): The reply text that could not be parsed.
        """
        super().__init__(message)
        self.raw = raw
