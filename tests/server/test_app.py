import json
import re

import pytest
from starlette.testclient import TestClient

from search_docs_plugin.config import ConfigManager
from search_docs_plugin.search import DocsSearchService
from search_docs_plugin.server import create_app
from search_docs_plugin.server._app import QUERY_REQUIRED, plugin_result

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")

REQUEST_CONTEXT = {
    "sessionId": "sess-1",
    "projectId": "proj-1",
    "accountId": "acct-1",
    "step": 3,
}


@pytest.fixture
def app_client(make_service):
    """TestClient over an app wired to the dummy OpenAI client (lifespan not started)."""

    def _make(**service_kwargs):
        service = make_service(**service_kwargs)
        return TestClient(create_app(search_service=service))

    return _make


def _search(client, args, context=REQUEST_CONTEXT):
    response = client.post("/search_docs", json={"context": context, "args": args})
    assert response.status_code == 200
    return response.json()


def test_plugin_result_omits_error_on_success():
    body = plugin_result(True, {"query": "q"}, tokens_used=5)
    assert body == {
        "ok": True,
        "tokensUsed": 5,
        "artifacts": [],
        "result": '{"query": "q"}',
    }


def test_health(app_client):
    response = app_client().get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "search-docs-plugin"
    assert TIMESTAMP_RE.match(body["timestamp"])


def test_search_docs_end_to_end(app_client, dummy_client):
    body = _search(app_client(), {"query": "BOSL2 cuboid"})

    assert body["ok"] is True
    assert body["tokensUsed"] == 321
    assert body["artifacts"] == []
    assert "error" not in body
    result = json.loads(body["result"])
    assert result == {
        "query": "BOSL2 cuboid",
        "answer": {
            "signature": "cuboid(size)",
            "parameters": "size: vector",
            "examples": "cuboid([10,10,10]);",
            "notes": "",
            "sources": ["BOSL2/shapes.scad"],
        },
    }
    assert dummy_client.remote_searches == 1


def test_search_docs_includes_context(app_client, dummy_client):
    body = _search(app_client(), {"query": "cuboid", "context": "rounded edges"})

    result = json.loads(body["result"])
    assert result["context"] == "rounded edges"
    prompt = dummy_client.requests["threads.create"][0]["messages"][0]["content"]
    assert prompt.endswith("Context: rounded edges")


def test_repeat_search_is_cached(app_client, dummy_client):
    client = app_client()
    first = _search(client, {"query": "BOSL2 cuboid"})
    second = _search(client, {"query": "bosl2 cuboid "})

    assert second["ok"] is True
    assert second["tokensUsed"] == 0
    assert json.loads(second["result"])["answer"] == json.loads(first["result"])["answer"]
    assert dummy_client.remote_searches == 1


@pytest.mark.parametrize("args", [{}, {"query": ""}, {"query": "   "}, {"query": 42}])
def test_missing_query(app_client, dummy_client, args):
    body = _search(app_client(), args)

    assert body["ok"] is False
    assert body["error"] == QUERY_REQUIRED
    assert body["tokensUsed"] == 0
    assert json.loads(body["result"]) == {"error": QUERY_REQUIRED}
    assert sum(dummy_client.calls.values()) == 0


def test_missing_args(app_client):
    response = app_client().post("/search_docs", json={"context": REQUEST_CONTEXT})
    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is False
    assert body["error"] == QUERY_REQUIRED


def test_invalid_json_body(app_client):
    response = app_client().post(
        "/search_docs",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert "Invalid JSON" in body["error"]


def test_non_string_context_rejected(app_client):
    body = _search(app_client(), {"query": "cuboid", "context": {"lib": "BOSL2"}})
    assert body["ok"] is False
    assert "context" in body["error"]


def test_remote_failure_reported_as_error(app_client, make_client):
    failing = make_client()
    failing.fail_on.add("runs.create_and_poll")
    body = _search(app_client(client=failing), {"query": "cuboid"})

    assert body["ok"] is False
    assert "Simulated failure" in body["error"]
    assert json.loads(body["result"]) == {"error": body["error"]}


def test_unconfigured_vector_store_is_ok_with_notice(app_client, dummy_client):
    body = _search(app_client(environ={}), {"query": "cuboid"})

    assert body["ok"] is True
    assert body["tokensUsed"] == 0
    answer = json.loads(body["result"])["answer"]
    assert "OPENSCAD_VECTOR_STORE_ID" in answer["parameters"]
    assert sum(dummy_client.calls.values()) == 0


def test_search_without_service_reports_error():
    client = TestClient(create_app())
    body = _search(client, {"query": "cuboid"})
    assert body["ok"] is False
    assert "not initialized" in body["error"]


def test_lifespan_builds_service_from_config():
    manager = ConfigManager(environ={})
    app = create_app(config_manager=manager)

    with TestClient(app) as client:
        assert isinstance(app.state.search_service, DocsSearchService)
        assert client.get("/health").status_code == 200


def test_lifespan_uses_configured_ttl(tmp_path):
    config_file = tmp_path / "search_docs.json"
    config_file.write_text(json.dumps({"cache_ttl_seconds": 5}))
    manager = ConfigManager(environ={"SEARCH_DOCS_CONFIG_FILE": str(config_file)})
    app = create_app(config_manager=manager)

    with TestClient(app):
        assert app.state.search_service.cache.ttl_seconds == 5
