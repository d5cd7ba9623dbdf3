import asyncio
import json
import logging
from unittest.mock import MagicMock, patch

import pytest


def test_monkeypatch_uvicorn_exception_handling_warns_and_patches(caplog):
    with patch("search_docs_plugin._monkeypatch.RequestResponseCycle") as MockCycle:
        import search_docs_plugin._monkeypatch as monkeypatch_mod

        dummy_orig_run_asgi = MagicMock()
        MockCycle.run_asgi = dummy_orig_run_asgi
        with caplog.at_level("WARNING"):
            monkeypatch_mod.monkeypatch_uvicorn_exception_handling()
        assert any(
            "Monkey-patching Uvicorn's RequestResponseCycle" in r.message
            for r in caplog.records
        )
        assert MockCycle.run_asgi != dummy_orig_run_asgi


def test_wrapped_app_logs_json_and_reraises(capsys):
    with (
        patch("search_docs_plugin._monkeypatch.RequestResponseCycle") as MockCycle,
        patch("search_docs_plugin._monkeypatch._get_json_logger") as MockGetJsonLogger,
    ):
        import search_docs_plugin._monkeypatch as monkeypatch_mod

        async def dummy_orig_run_asgi(self, app):
            await app("scope")

        MockCycle.run_asgi = dummy_orig_run_asgi
        mock_json_logger = MagicMock()
        MockGetJsonLogger.return_value = mock_json_logger

        monkeypatch_mod.monkeypatch_uvicorn_exception_handling()
        run_asgi = MockCycle.run_asgi

        async def bad_app(*args, **kwargs):
            raise ValueError("fail!")

        with pytest.raises(ValueError):
            asyncio.run(run_asgi(MagicMock(), bad_app))

    stderr_lines = [
        line for line in capsys.readouterr().err.splitlines() if line.startswith("{")
    ]
    record = json.loads(stderr_lines[-1])
    assert record["severity"] == "ERROR"
    assert record["exception"]["type"] == "ValueError"
    assert "fail!" in record["exception"]["traceback"]

    mock_json_logger.error.assert_called_once()
    error_call = mock_json_logger.error.call_args
    assert "Unhandled exception in ASGI application" in error_call[0][0]
    assert error_call[1]["extra"]["exception_type"] == "ValueError"
    assert error_call[1]["extra"]["exception_message"] == "fail!"
    assert "stack_trace" in error_call[1]["extra"]


def test_json_logger_failure_is_reported_and_original_reraised(capsys):
    with (
        patch("search_docs_plugin._monkeypatch.RequestResponseCycle") as MockCycle,
        patch("search_docs_plugin._monkeypatch._get_json_logger") as MockGetJsonLogger,
    ):
        import search_docs_plugin._monkeypatch as monkeypatch_mod

        async def dummy_orig_run_asgi(self, app):
            await app("scope")

        MockCycle.run_asgi = dummy_orig_run_asgi
        mock_json_logger = MagicMock()
        mock_json_logger.error.side_effect = Exception("handler closed")
        MockGetJsonLogger.return_value = mock_json_logger

        monkeypatch_mod.monkeypatch_uvicorn_exception_handling()
        run_asgi = MockCycle.run_asgi

        async def bad_app(*args, **kwargs):
            raise KeyError("missing")

        with pytest.raises(KeyError):
            asyncio.run(run_asgi(MagicMock(), bad_app))

    assert "Python JSON Logger failed: handler closed" in capsys.readouterr().err


def test_wrapped_app_passes_through_on_success():
    with patch("search_docs_plugin._monkeypatch.RequestResponseCycle") as MockCycle:
        import search_docs_plugin._monkeypatch as monkeypatch_mod

        seen = []

        async def dummy_orig_run_asgi(self, app):
            seen.append(await app("scope"))

        MockCycle.run_asgi = dummy_orig_run_asgi
        monkeypatch_mod.monkeypatch_uvicorn_exception_handling()

        async def good_app(*args):
            return "ok"

        asyncio.run(MockCycle.run_asgi(MagicMock(), good_app))
        assert seen == ["ok"]


def test_setup_json_logging_configures_dedicated_logger():
    import search_docs_plugin._monkeypatch as monkeypatch_mod

    json_logger = monkeypatch_mod._setup_json_logging()
    assert json_logger.name == "json_asgi_errors"
    assert json_logger.level == logging.ERROR
    assert json_logger.propagate is False
    handler_count = len(json_logger.handlers)
    assert handler_count >= 1

    # Calling again does not stack handlers
    monkeypatch_mod._setup_json_logging()
    assert len(json_logger.handlers) == handler_count


def test_build_error_record_shape():
    import search_docs_plugin._monkeypatch as monkeypatch_mod

    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        record = monkeypatch_mod._build_error_record(e)

    assert record["message"] == (
        "Unhandled exception in ASGI application: RuntimeError: boom"
    )
    assert record["exception"]["module"] == "builtins"
    assert "boom" in record["exception"]["traceback"]
    json.dumps(record)
