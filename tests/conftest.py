"""Shared test doubles for the OpenAI Assistants API surface used by the plugin."""

import types
from collections import Counter

import openai
import pytest

from search_docs_plugin.cache import QueryCache
from search_docs_plugin.config import ConfigManager
from search_docs_plugin.search import DocsSearchService

CUBOID_REPLY = (
    '{"signature":"cuboid(size)","parameters":"size: vector",'
    '"examples":"cuboid([10,10,10]);","notes":"","sources":["BOSL2/shapes.scad"]}'
)


class DummyOpenAIError(openai.OpenAIError):
    pass


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class DummyAssistants:
    def __init__(self, parent):
        self.parent = parent
        self.created = []

    async def list(self, **kwargs):
        self.parent._record("assistants.list", kwargs)
        return types.SimpleNamespace(
            data=[
                types.SimpleNamespace(id=assistant_id, name=name)
                for assistant_id, name in self.parent.existing_assistants
            ]
        )

    async def create(self, **kwargs):
        self.parent._record("assistants.create", kwargs)
        self.created.append(kwargs)
        return types.SimpleNamespace(id=f"asst_created_{len(self.created)}")


class DummyRuns:
    def __init__(self, parent):
        self.parent = parent

    async def create_and_poll(self, **kwargs):
        self.parent._record("runs.create_and_poll", kwargs)
        usage = (
            types.SimpleNamespace(total_tokens=self.parent.total_tokens)
            if self.parent.total_tokens is not None
            else None
        )
        return types.SimpleNamespace(status=self.parent.run_status, usage=usage)


class DummyMessages:
    def __init__(self, parent):
        self.parent = parent

    async def list(self, **kwargs):
        self.parent._record("messages.list", kwargs)
        return types.SimpleNamespace(data=self.parent.messages())


class DummyThreads:
    def __init__(self, parent):
        self.parent = parent
        self.runs = DummyRuns(parent)
        self.messages = DummyMessages(parent)
        self.created = []

    async def create(self, **kwargs):
        self.parent._record("threads.create", kwargs)
        self.created.append(kwargs)
        return types.SimpleNamespace(id=f"thread_{len(self.created)}")

    async def delete(self, thread_id):
        self.parent._record("threads.delete", {"thread_id": thread_id})
        return types.SimpleNamespace(id=thread_id, deleted=True)


class DummyAsyncOpenAI:
    """Stand-in for openai.AsyncOpenAI covering beta.assistants and beta.threads."""

    def __init__(
        self,
        reply_text=CUBOID_REPLY,
        run_status="completed",
        total_tokens=321,
        existing_assistants=(),
    ):
        self.reply_text = reply_text
        self.run_status = run_status
        self.total_tokens = total_tokens
        self.existing_assistants = list(existing_assistants)
        self.fail_on = set()
        self.calls = Counter()
        self.requests = {}
        self.open_count = 0
        self.close_count = 0
        self.beta = types.SimpleNamespace(
            assistants=DummyAssistants(self), threads=DummyThreads(self)
        )

    def _record(self, name, kwargs):
        self.calls[name] += 1
        self.requests.setdefault(name, []).append(kwargs)
        if name in self.fail_on:
            raise DummyOpenAIError(f"Simulated failure in {name}")

    def messages(self):
        if self.reply_text is None:
            return []
        return [
            types.SimpleNamespace(
                role="assistant",
                content=[
                    types.SimpleNamespace(
                        type="text",
                        text=types.SimpleNamespace(value=self.reply_text),
                    )
                ],
            ),
            types.SimpleNamespace(
                role="user",
                content=[
                    types.SimpleNamespace(
                        type="text", text=types.SimpleNamespace(value="query")
                    )
                ],
            ),
        ]

    @property
    def remote_searches(self):
        return self.calls["runs.create_and_poll"]

    async def __aenter__(self):
        self.open_count += 1
        return self

    async def __aexit__(self, *exc_info):
        self.close_count += 1
        return None


CONFIGURED_ENV = {
    "OPENAI_API_KEY": "sk-test",
    "OPENSCAD_VECTOR_STORE_ID": "vs_docs",
}


@pytest.fixture
def dummy_client():
    return DummyAsyncOpenAI()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_service(dummy_client, clock):
    """Build a DocsSearchService over the dummy client with an injectable environment."""

    def _make(environ=None, client=None, ttl_seconds=1800.0):
        client = client or dummy_client
        manager = ConfigManager(
            environ=dict(CONFIGURED_ENV if environ is None else environ)
        )
        return DocsSearchService(
            manager,
            QueryCache(ttl_seconds=ttl_seconds, clock=clock),
            client_factory=lambda config: client,
        )

    return _make


@pytest.fixture
def make_client():
    """Factory for DummyAsyncOpenAI instances with custom replies or statuses."""
    return DummyAsyncOpenAI


@pytest.fixture
def cuboid_reply():
    return CUBOID_REPLY


@pytest.fixture
def openai_error():
    return DummyOpenAIError
