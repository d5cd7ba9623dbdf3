"""
Documentation search orchestration.

`DocsSearchService` turns a query into a structured `Answer`:

    1. No vector store configured  -> "not configured" answer, no remote call.
    2. Empty query                 -> "query is required" answer, no remote call.
    3. Cache hit                   -> cached answer, zero tokens.
    4. Cache miss                  -> resolve the assistant, run a one-message thread to
                                      completion, parse the reply, delete the thread,
                                      cache the answer.

Runs that end in a non-completed status and replies that are not JSON produce descriptive
answers rather than errors. Failures talking to the backend raise `RemoteCallError` (or
its subclass `AssistantCreationError`) for the HTTP layer to report.

A fresh `openai.AsyncOpenAI` client is opened per cache miss and closed afterwards, so no
connection pool outlives a request.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import openai

from ._exceptions import RemoteCallError, ResponseParseError
from .answer import (
    Answer,
    not_configured_answer,
    not_documented_answer,
    parse_answer,
    query_required_answer,
    run_failed_answer,
    unparseable_answer,
)
from .assistant import AssistantRegistrar
from .cache import QueryCache, normalize_cache_key
from .config import VECTOR_STORE_ENV_VAR, ConfigManager, SearchDocsConfig

__all__ = [
    "ClientFactory",
    "DocsSearchService",
    "SearchResult",
    "build_search_prompt",
    "default_client_factory",
]

_LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[SearchDocsConfig], openai.AsyncOpenAI]


def default_client_factory(config: SearchDocsConfig) -> openai.AsyncOpenAI:
    """
    Create the OpenAI client for one search.

    When `openai_api_key` is None the SDK falls back to its own environment lookup and raises
    `openai.OpenAIError` if no key is found.
    """
    return openai.AsyncOpenAI(
        api_key=config.openai_api_key, base_url=config.openai_base_url
    )


def build_search_prompt(query: str, context: str | None = None) -> str:
    """
    Build the user message sent to the assistant.

    Example:
        >>> build_search_prompt("cuboid", "BOSL2 v2")
        'cuboid\\n\\nContext: BOSL2 v2'
    """
    if context:
        return f"{query}\n\nContext: {context}"
    return query


@dataclass(frozen=True)
class SearchResult:
    """
    Outcome of a documentation search.

    Attributes:
        answer (Answer): The structured answer.
        tokens_used (int): Tokens reported by the remote run; 0 for cached and early-return results.
        cached (bool): True when the answer came from the cache.
    """

    answer: Answer
    tokens_used: int = 0
    cached: bool = False


@dataclass(frozen=True)
class _RemoteOutcome:
    answer: Answer
    tokens_used: int
    succeeded: bool


class DocsSearchService:
    """
    Search orchestrator owning the answer cache and the assistant registrar.

    One instance is created at startup and shared by all requests.

    Args:
        config_manager (ConfigManager): Source of the plugin configuration, read on every search.
        cache (QueryCache): Answer cache.
        registrar (AssistantRegistrar | None): Assistant registrar; a new one is created when None.
        client_factory (ClientFactory): Builds the per-search OpenAI client.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        cache: QueryCache,
        registrar: AssistantRegistrar | None = None,
        client_factory: ClientFactory = default_client_factory,
    ) -> None:
        self._config_manager = config_manager
        self._cache = cache
        self._registrar = registrar or AssistantRegistrar()
        self._client_factory = client_factory

    @classmethod
    async def create(
        cls,
        config_manager: ConfigManager,
        client_factory: ClientFactory = default_client_factory,
    ) -> "DocsSearchService":
        """Build a service whose cache TTL comes from the loaded configuration."""
        config = await config_manager.get_config()
        return cls(
            config_manager,
            QueryCache(ttl_seconds=config.cache_ttl_seconds),
            client_factory=client_factory,
        )

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def registrar(self) -> AssistantRegistrar:
        return self._registrar

    async def search(self, query: str, context: str | None = None) -> SearchResult:
        """
        Answer a documentation query.

        Args:
            query (str): What to look up, e.g. "BOSL2 cuboid".
            context (str | None): Optional free text appended to the prompt and the cache key.

        Returns:
            SearchResult: The answer and the tokens the remote run consumed.

        Raises:
            RemoteCallError: If the OpenAI client cannot be created or a thread/run/message call fails.
            AssistantCreationError: If the assistant cannot be found or created.
            ConfigurationError: If the configuration cannot be loaded.
        """
        config = await self._config_manager.get_config()

        if not config.vector_store_id:
            _LOGGER.warning(
                f"[DocsSearchService:search] {VECTOR_STORE_ENV_VAR} is not set; returning configuration notice"
            )
            return SearchResult(answer=not_configured_answer(VECTOR_STORE_ENV_VAR))

        if not query.strip():
            return SearchResult(answer=query_required_answer())

        key = normalize_cache_key(query, context)
        cached = self._cache.get(key)
        if cached is not None:
            _LOGGER.info(f"[DocsSearchService:search] Cache hit for query: {query}")
            return SearchResult(answer=cached, cached=True)

        outcome = await self._search_remote(config, config.vector_store_id, query, context)

        if outcome.succeeded or config.cache_failed_results:
            self._cache.set(key, outcome.answer)
        else:
            _LOGGER.debug(
                f"[DocsSearchService:search] Not caching unsuccessful answer for query: {query}"
            )

        return SearchResult(answer=outcome.answer, tokens_used=outcome.tokens_used)

    async def _search_remote(
        self,
        config: SearchDocsConfig,
        vector_store_id: str,
        query: str,
        context: str | None,
    ) -> _RemoteOutcome:
        """Run one remote search on a fresh client and return its outcome."""
        try:
            client = self._client_factory(config)
        except openai.OpenAIError as e:
            _LOGGER.error(f"[DocsSearchService:_search_remote] OpenAI client creation failed: {e}")
            raise RemoteCallError(f"OpenAI client creation failed: {e}") from e

        async with client:
            assistant_id = await self._registrar.ensure_assistant(
                client,
                vector_store_id,
                name=config.assistant_name,
                model=config.model,
            )

            _LOGGER.info(f"[DocsSearchService:_search_remote] Processing search query: {query}")
            start_time = time.monotonic()
            prompt = build_search_prompt(query, context)

            try:
                thread = await client.beta.threads.create(
                    messages=[{"role": "user", "content": prompt}]
                )
            except openai.OpenAIError as e:
                _LOGGER.error(
                    f"[DocsSearchService:_search_remote] Thread creation failed: {e}",
                    exc_info=True,
                )
                raise RemoteCallError(f"OpenAI API call failed: {e}") from e

            try:
                outcome = await self._run_thread(client, config, thread.id, assistant_id)
            except openai.OpenAIError as e:
                _LOGGER.error(
                    f"[DocsSearchService:_search_remote] Search run failed: {e}",
                    exc_info=True,
                )
                raise RemoteCallError(f"OpenAI API call failed: {e}") from e
            finally:
                await self._delete_thread(client, thread.id)

            elapsed = time.monotonic() - start_time
            _LOGGER.info(
                f"[DocsSearchService:_search_remote] Search finished | thread_id={thread.id} | "
                f"tokens={outcome.tokens_used} | elapsed={elapsed:.3f}s"
            )
            return outcome

    async def _run_thread(
        self,
        client: openai.AsyncOpenAI,
        config: SearchDocsConfig,
        thread_id: str,
        assistant_id: str,
    ) -> _RemoteOutcome:
        """Run the thread to a terminal state and turn the result into an answer."""
        run = await client.beta.threads.runs.create_and_poll(
            thread_id=thread_id,
            assistant_id=assistant_id,
            temperature=config.temperature,
            top_p=config.top_p,
        )
        tokens_used = _total_tokens(run)

        if run.status != "completed":
            _LOGGER.warning(
                f"[DocsSearchService:_run_thread] Run ended with status: {run.status}"
            )
            return _RemoteOutcome(run_failed_answer(str(run.status)), tokens_used, False)

        raw = await self._first_assistant_text(client, thread_id)
        if raw is None:
            _LOGGER.warning(
                f"[DocsSearchService:_run_thread] Completed run has no assistant text | thread_id={thread_id}"
            )
            return _RemoteOutcome(not_documented_answer(), tokens_used, False)

        try:
            answer = parse_answer(raw)
        except ResponseParseError as e:
            _LOGGER.warning(f"[DocsSearchService:_run_thread] Failed to parse structured answer: {e}")
            return _RemoteOutcome(unparseable_answer(e.raw), tokens_used, False)
        return _RemoteOutcome(answer, tokens_used, True)

    async def _first_assistant_text(
        self, client: openai.AsyncOpenAI, thread_id: str
    ) -> str | None:
        """Return the text of the first assistant message in the thread, if it starts with text."""
        page = await client.beta.threads.messages.list(thread_id=thread_id)
        for message in page.data:
            if message.role != "assistant":
                continue
            if message.content and message.content[0].type == "text":
                return str(message.content[0].text.value)
            return None
        return None

    async def _delete_thread(self, client: openai.AsyncOpenAI, thread_id: str) -> None:
        """Delete the thread; failures are logged and swallowed."""
        try:
            await client.beta.threads.delete(thread_id)
        except Exception as e:
            _LOGGER.warning(
                f"[DocsSearchService:_delete_thread] Failed to delete thread {thread_id}: {e}"
            )


def _total_tokens(run: Any) -> int:
    """Return the total tokens reported by a run, or 0 when usage is unavailable."""
    usage = getattr(run, "usage", None)
    total = getattr(usage, "total_tokens", None) if usage is not None else None
    return int(total) if total else 0
