"""Tests for the summarization daemon."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from summawise.errors import AllAttemptsFailedError, ErrorKind
from summawise.model_spec import parse_model_spec
from summawise.models import DispatchResult, ModelMeta, SelectionMode
from summawise.server import app


def _result(text: str = "Server summary.", already_emitted: bool = False) -> DispatchResult:
    return DispatchResult(
        summary_text=text,
        already_emitted=already_emitted,
        model_meta=ModelMeta(provider="anthropic", canonical_id="anthropic/claude-sonnet-4.5"),
        used_attempt=parse_model_spec("anthropic/claude-sonnet-4.5"),
    )


def _events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = block.split("\n")
        name = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((name, data))
    return events


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


class TestHealthEndpoint:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data


class TestListModels:
    def test_list_models(self, client):
        resp = client.get("/v1/models")
        assert resp.status_code == 200
        data = resp.json()
        assert data["object"] == "list"
        by_id = {m["id"]: m for m in data["data"]}
        assert by_id["openai/gpt-5-mini"]["provider"] == "openai"
        assert by_id["openai/gpt-5-mini"]["max_output_tokens"] > 0


class TestSummarize:
    def test_buffered(self, client):
        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            resp = client.post(
                "/v1/summarize",
                json={"text": "Long text.", "models": ["anthropic/claude-sonnet-4.5"]},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"] == "Server summary."
        assert data["model"] == "anthropic/claude-sonnet-4.5"
        assert data["provider"] == "anthropic"
        args, kwargs = mock_cls.return_value.dispatch.call_args
        assert args[2] is SelectionMode.FIXED
        assert kwargs["allow_streaming"] is False

    def test_mode_defaults_to_auto_for_several_models(self, client):
        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            client.post(
                "/v1/summarize",
                json={"text": "x", "models": ["openai/gpt-5-mini", "cli/claude"]},
            )
        assert mock_cls.return_value.dispatch.call_args.args[2] is SelectionMode.AUTO

    def test_max_output_tokens_applied_to_settings(self, client):
        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            client.post(
                "/v1/summarize",
                json={"text": "x", "models": ["openai/gpt-5-mini"], "max_output_tokens": 321},
            )
        engine = mock_cls.call_args.args[0]
        assert engine.settings.max_output_tokens == 321

    def test_invalid_model_spec(self, client):
        resp = client.post("/v1/summarize", json={"text": "x", "models": ["bogus"]})
        assert resp.status_code == 400

    def test_validation_error(self, client):
        resp = client.post("/v1/summarize", json={"text": "", "models": []})
        assert resp.status_code == 422

    @pytest.mark.parametrize(
        "kind,status",
        [(ErrorKind.MISSING_CREDENTIAL, 400), (ErrorKind.TIMEOUT, 502)],
    )
    def test_error_status(self, client, kind, status):
        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(
                side_effect=AllAttemptsFailedError("it failed", kind=kind)
            )
            resp = client.post("/v1/summarize", json={"text": "x", "models": ["cli/claude"]})
        assert resp.status_code == status
        assert resp.json()["detail"] == "it failed"

    def test_streaming(self, client):
        async def _dispatch(attempts, prompt, mode, *, sink=None, **kwargs):
            sink.on_appended("Hello")
            sink.on_appended(" there.")
            sink.on_done("Hello there.")
            return _result(text="Hello there.", already_emitted=True)

        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = _dispatch
            resp = client.post(
                "/v1/summarize",
                json={"text": "x", "models": ["openai/gpt-5-mini"], "stream": True},
            )

        assert resp.status_code == 200
        assert "text/event-stream" in resp.headers["content-type"]
        events = _events(resp.text)
        assert events[:2] == [("chunk", {"text": "Hello"}), ("chunk", {"text": " there."})]
        name, data = events[-1]
        assert name == "done"
        assert data["summary"] == "Hello there."
        assert data["already_emitted"] is True

    def test_streaming_error_event(self, client):
        with patch("summawise.server.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(
                side_effect=AllAttemptsFailedError("nothing worked", kind=ErrorKind.EMPTY_RESULT)
            )
            resp = client.post(
                "/v1/summarize",
                json={"text": "x", "models": ["openai/gpt-5-mini"], "stream": True},
            )
        events = _events(resp.text)
        assert events == [
            ("error", {"message": "nothing worked", "kind": "empty-result", "status": 502})
        ]
