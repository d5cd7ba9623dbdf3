"""
Lookup and creation of the remote documentation search assistant.

The plugin uses one OpenAI assistant configured with the `file_search` tool and bound to the
documentation vector store. `AssistantRegistrar` resolves its id once per vector store id and
reuses it for every later search, without asking the backend again, until the configured
vector store id changes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import openai

from ._exceptions import AssistantCreationError

__all__ = ["ASSISTANT_INSTRUCTIONS", "AssistantHandle", "AssistantRegistrar"]

_LOGGER = logging.getLogger(__name__)

_ASSISTANT_LIST_LIMIT = 100

ASSISTANT_INSTRUCTIONS = """You are a documentation search assistant for OpenSCAD and its libraries (BOSL2, threads-scad, etc.).

When a user searches for documentation:
1. Search the vector store for relevant documentation
2. Return a structured JSON response with:
   - signature: The function/module signature
   - parameters: Parameter descriptions
   - examples: Code examples
   - notes: Important usage notes
   - sources: Array of source references

Always respond with valid JSON only. No markdown, no explanations outside the JSON."""


@dataclass(frozen=True)
class AssistantHandle:
    """
    A resolved remote assistant and the vector store id it was resolved for.

    Attributes:
        assistant_id (str): Remote assistant id.
        vector_store_id (str): Vector store id the handle is valid for.
    """

    assistant_id: str
    vector_store_id: str


class AssistantRegistrar:
    """
    Resolves and caches the documentation search assistant.

    Handle resolution is serialized with an asyncio.Lock, so concurrent first calls in one
    process perform a single list/create sequence.
    """

    def __init__(self) -> None:
        self._handle: AssistantHandle | None = None
        self._lock = asyncio.Lock()

    @property
    def handle(self) -> AssistantHandle | None:
        """The current handle, or None before the first resolution."""
        return self._handle

    def _reset(self) -> None:
        """PRIVATE: Forget the current handle so the next call resolves again (for tests)."""
        self._handle = None

    async def ensure_assistant(
        self,
        client: openai.AsyncOpenAI,
        vector_store_id: str,
        *,
        name: str,
        model: str,
    ) -> str:
        """
        Return the id of the documentation search assistant for `vector_store_id`.

        Resolution order:
            1. The current handle, if it is bound to `vector_store_id` (no remote call).
            2. An existing remote assistant named `name`.
            3. A newly created assistant with `file_search` attached to `vector_store_id`.

        Args:
            client (openai.AsyncOpenAI): Client used for remote calls.
            vector_store_id (str): Vector store the assistant must search.
            name (str): Well-known assistant name.
            model (str): Model for a newly created assistant.

        Returns:
            str: The assistant id.

        Raises:
            AssistantCreationError: If listing or creating assistants fails. No retry is attempted.
        """
        handle = self._handle
        if handle is not None and handle.vector_store_id == vector_store_id:
            return handle.assistant_id

        async with self._lock:
            # Another request may have resolved the handle while we waited
            handle = self._handle
            if handle is not None and handle.vector_store_id == vector_store_id:
                return handle.assistant_id

            try:
                assistant_id = await self._find_assistant(client, name)
                if assistant_id is not None:
                    _LOGGER.info(
                        f"[AssistantRegistrar:ensure_assistant] Found existing search assistant: {assistant_id}"
                    )
                else:
                    assistant_id = await self._create_assistant(
                        client, vector_store_id, name=name, model=model
                    )
                    _LOGGER.info(
                        f"[AssistantRegistrar:ensure_assistant] Created search assistant: {assistant_id}"
                    )
            except openai.OpenAIError as e:
                _LOGGER.error(
                    f"[AssistantRegistrar:ensure_assistant] Assistant lookup/creation failed: {e}",
                    exc_info=True,
                )
                raise AssistantCreationError(
                    f"Failed to find or create search assistant: {e}"
                ) from e
            except Exception as e:
                _LOGGER.error(
                    f"[AssistantRegistrar:ensure_assistant] Unexpected error: {e}",
                    exc_info=True,
                )
                raise AssistantCreationError(f"Unexpected error: {e}") from e

            self._handle = AssistantHandle(
                assistant_id=assistant_id, vector_store_id=vector_store_id
            )
            return assistant_id

    async def _find_assistant(self, client: openai.AsyncOpenAI, name: str) -> str | None:
        """Return the id of the first remote assistant called `name`, or None."""
        page = await client.beta.assistants.list(limit=_ASSISTANT_LIST_LIMIT)
        for assistant in page.data:
            if assistant.name == name:
                return str(assistant.id)
        return None

    async def _create_assistant(
        self,
        client: openai.AsyncOpenAI,
        vector_store_id: str,
        *,
        name: str,
        model: str,
    ) -> str:
        """Create the assistant with `file_search` bound to `vector_store_id` and return its id."""
        _LOGGER.info(
            f"[AssistantRegistrar:_create_assistant] Creating search assistant with vector store: {vector_store_id}"
        )
        tool_resources: dict[str, Any] = {
            "file_search": {"vector_store_ids": [vector_store_id]}
        }
        assistant = await client.beta.assistants.create(
            name=name,
            model=model,
            instructions=ASSISTANT_INSTRUCTIONS,
            tools=[{"type": "file_search"}],
            tool_resources=tool_resources,
        )
        return str(assistant.id)
