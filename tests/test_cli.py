"""Tests for CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from summawise.cli import app, build_prompt
from summawise.errors import AllAttemptsFailedError, ErrorKind
from summawise.ledger_store import LedgerStore
from summawise.model_spec import parse_model_spec
from summawise.models import (
    Attachment,
    DispatchResult,
    ModelMeta,
    SelectionMode,
    TokenUsage,
    UsageRecord,
)

runner = CliRunner()


def _result(text: str = "The short version.", already_emitted: bool = False) -> DispatchResult:
    return DispatchResult(
        summary_text=text,
        already_emitted=already_emitted,
        model_meta=ModelMeta(provider="openai", canonical_id="openai/gpt-5-mini"),
        used_attempt=parse_model_spec("openai/gpt-5-mini"),
        usage_records=[
            UsageRecord(
                provider="openai",
                model_id="openai/gpt-5-mini",
                usage=TokenUsage(prompt_tokens=100, completion_tokens=20),
                cost_usd=0.0001,
            )
        ],
    )


@pytest.fixture
def ledger_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "ledger.jsonl"
    monkeypatch.setenv("SUMMAWISE_LEDGER_PATH", str(path))
    return path


@pytest.fixture
def source(tmp_path: Path) -> Path:
    doc = tmp_path / "article.md"
    doc.write_text("# Article\n\nA long article body.")
    return doc


class TestCLI:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "SummaWise" in result.output

    @pytest.mark.parametrize("command", ["summarize", "models", "ledger", "serve"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


class TestSummarize:
    def test_prints_summary(self, source: Path, ledger_path: Path):
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            result = runner.invoke(app, ["summarize", str(source), "-m", "openai/gpt-5-mini"])

        assert result.exit_code == 0, result.output
        assert "The short version." in result.output
        args, kwargs = mock_cls.return_value.dispatch.call_args
        attempts, prompt, mode = args
        assert [a.user_model_id for a in attempts] == ["openai/gpt-5-mini"]
        assert mode is SelectionMode.FIXED
        assert "A long article body." in prompt.user_text

        saved = LedgerStore(path=ledger_path).load()
        assert saved[0]["success"] is True
        assert saved[0]["model"] == "openai/gpt-5-mini"

    def test_already_emitted_is_not_reprinted(self, source: Path, ledger_path: Path):
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(
                return_value=_result(text="Streamed once.", already_emitted=True)
            )
            result = runner.invoke(app, ["summarize", str(source), "-m", "openai/gpt-5-mini"])
        assert result.exit_code == 0
        assert "Streamed once." not in result.output

    def test_multiple_models_use_auto(self, source: Path, ledger_path: Path):
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            result = runner.invoke(
                app,
                ["summarize", str(source), "-m", "openai/gpt-5-mini", "-m", "cli/claude"],
            )
        assert result.exit_code == 0
        _, _, mode = mock_cls.return_value.dispatch.call_args.args
        assert mode is SelectionMode.AUTO

    def test_json_output(self, source: Path, ledger_path: Path):
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            result = runner.invoke(
                app, ["summarize", str(source), "-m", "openai/gpt-5-mini", "--json"]
            )
        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["summary"] == "The short version."
        assert payload["provider"] == "openai"
        assert payload["total_cost"] == pytest.approx(0.0001)
        assert mock_cls.return_value.dispatch.call_args.kwargs["sink"] is None

    def test_reads_stdin(self, ledger_path: Path):
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            result = runner.invoke(
                app, ["summarize", "-", "-m", "openai/gpt-5-mini"], input="Piped text."
            )
        assert result.exit_code == 0
        prompt = mock_cls.return_value.dispatch.call_args.args[1]
        assert "Piped text." in prompt.user_text
        assert LedgerStore(path=ledger_path).load()[0]["source"] == "stdin"

    def test_failure_exits_nonzero_and_is_recorded(self, source: Path, ledger_path: Path):
        error = AllAttemptsFailedError(
            "Missing OPENAI_API_KEY for models: openai/gpt-5-mini. "
            "Set the env var(s) or choose a different --model.",
            kind=ErrorKind.MISSING_CREDENTIAL,
        )
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(side_effect=error)
            result = runner.invoke(app, ["summarize", str(source), "-m", "openai/gpt-5-mini"])

        assert result.exit_code == 1
        assert "Missing OPENAI_API_KEY" in result.output
        saved = LedgerStore(path=ledger_path).load()
        assert saved[0]["success"] is False
        assert saved[0]["error"].startswith("Missing OPENAI_API_KEY")

    def test_invalid_model_spec(self, source: Path, ledger_path: Path):
        result = runner.invoke(app, ["summarize", str(source), "-m", "nonsense"])
        assert result.exit_code == 1
        assert "nonsense" in result.output

    def test_invalid_length(self, source: Path, ledger_path: Path):
        result = runner.invoke(app, ["summarize", str(source), "--length", "huge"])
        assert result.exit_code != 0

    def test_attachment_sets_local_tool_options(
        self, source: Path, ledger_path: Path, tmp_path: Path
    ):
        pdf = tmp_path / "paper.pdf"
        pdf.write_bytes(b"%PDF-1.7")
        with patch("summawise.cli.Dispatcher") as mock_cls:
            mock_cls.return_value.dispatch = AsyncMock(return_value=_result())
            result = runner.invoke(
                app, ["summarize", str(source), "-m", "cli/claude", "--attach", str(pdf)]
            )
        assert result.exit_code == 0, result.output
        kwargs = mock_cls.return_value.dispatch.call_args.kwargs
        options = kwargs["local_tool_options"]
        assert options.allow_tools is True
        assert str(pdf.resolve()) in options.prompt_override
        prompt = mock_cls.return_value.dispatch.call_args.args[1]
        assert prompt.attachments[0].media_type == "application/pdf"


class TestBuildPrompt:
    def test_length_guidance(self):
        prompt = build_prompt("  Body text  ", "short", [])
        assert prompt.user_text.startswith("Summarize the following content. Keep it to")
        assert prompt.user_text.endswith("Body text")
        assert prompt.system

    def test_attachments_kept(self):
        attachment = Attachment(media_type="image/png", data=b"\x89PNG")
        prompt = build_prompt("x", None, [attachment])
        assert prompt.attachments == (attachment,)
        assert not prompt.is_text_only


class TestModelsAndLedger:
    def test_models_lists_bundled_catalog(self):
        result = runner.invoke(app, ["models", "--provider", "openai", "--limit", "100"])
        assert result.exit_code == 0
        assert "openai/gpt-5-mini" in result.output
        assert "anthropic/" not in result.output

    def test_ledger_empty(self, ledger_path: Path):
        result = runner.invoke(app, ["ledger"])
        assert result.exit_code == 0
        assert "No ledger entries found." in result.output

    def test_ledger_summary(self, ledger_path: Path):
        LedgerStore(path=ledger_path).save("doc.md", "openai/gpt-5-mini", True, [])
        result = runner.invoke(app, ["ledger", "--summary"])
        assert result.exit_code == 0
        assert "Total runs:        1" in result.output
