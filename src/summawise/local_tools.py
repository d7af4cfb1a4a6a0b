"""Runner for local command-line LLM tools (claude, codex, gemini)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from summawise.config import LocalToolsConfig
from summawise.errors import LLMTimeoutError, ProviderError
from summawise.models import LocalTool, TokenUsage

logger = logging.getLogger(__name__)

_STDERR_SNIPPET_CHARS = 500


@dataclass
class LocalToolResult:
    """Text (and optional usage/cost) produced by a local tool run."""

    text: str
    usage: TokenUsage | None = None
    cost_usd: float | None = None


def is_tool_disabled(tool: LocalTool | str, config: LocalToolsConfig | None) -> bool:
    """Whether configuration turns *tool* off."""
    if config is None:
        return False
    name = LocalTool(tool).value
    if config.enabled is not None and name not in config.enabled:
        return True
    if config.disabled is not None and name in config.disabled:
        return True
    return not config.for_tool(name).enabled


def resolve_binary(tool: LocalTool | str, config: LocalToolsConfig | None) -> str:
    """Config binary, else ``SUMMAWISE_CLI_<TOOL>``, else the tool name."""
    name = LocalTool(tool).value
    if config is not None:
        binary = config.for_tool(name).binary
        if binary and binary.strip():
            return binary.strip()
    env_binary = os.environ.get(f"SUMMAWISE_CLI_{name.upper()}", "").strip()
    return env_binary or name


def _parse_json_output(stdout: str) -> LocalToolResult:
    """Parse ``--output-format json`` output, falling back to plain text."""
    try:
        parsed: Any = json.loads(stdout)
    except json.JSONDecodeError:
        return LocalToolResult(text=stdout)
    if not isinstance(parsed, dict):
        return LocalToolResult(text=stdout)

    text = parsed.get("result")
    if not isinstance(text, str) or not text.strip():
        text = parsed.get("response")
    if not isinstance(text, str) or not text.strip():
        return LocalToolResult(text=stdout)

    usage = TokenUsage.from_openai(parsed.get("usage"))
    cost = parsed.get("total_cost_usd")
    if not isinstance(cost, (int, float)) or isinstance(cost, bool):
        cost = None
    return LocalToolResult(text=text, usage=usage, cost_usd=cost)


class LocalToolRunner:
    """Runs a local CLI tool with the prompt on stdin."""

    def __init__(self, config: LocalToolsConfig | None = None) -> None:
        self.config = config or LocalToolsConfig()

    def build_args(
        self,
        tool: LocalTool,
        *,
        model: str | None,
        extra_args: list[str] | None,
        allow_tools: bool,
        output_path: str | None = None,
    ) -> list[str]:
        args = list(self.config.for_tool(tool.value).extra_args)
        if extra_args:
            args.extend(extra_args)

        if tool is LocalTool.CODEX:
            args += ["exec", "--output-last-message", output_path or "", "--skip-git-repo-check"]
            if model and model.strip():
                args += ["-m", model.strip()]
            return args

        if model and model.strip():
            args += ["--model", model.strip()]
        args += ["--output-format", "json"]
        if allow_tools:
            if tool is LocalTool.CLAUDE:
                args += ["--tools", "Read", "--dangerously-skip-permissions"]
            elif tool is LocalTool.GEMINI:
                args.append("--yolo")
        return args

    async def run(
        self,
        tool: LocalTool,
        prompt: str,
        *,
        model: str | None = None,
        timeout: float = 120.0,
        cwd: str | None = None,
        extra_args: list[str] | None = None,
        allow_tools: bool = False,
    ) -> LocalToolResult:
        """Run *tool* and return its (untrimmed) text output."""
        binary = resolve_binary(tool, self.config)

        if tool is LocalTool.CODEX:
            with tempfile.TemporaryDirectory(prefix="summawise-codex-") as tmp:
                output_path = Path(tmp) / "last-message.txt"
                args = self.build_args(
                    tool,
                    model=model,
                    extra_args=extra_args,
                    allow_tools=allow_tools,
                    output_path=str(output_path),
                )
                stdout = await self._exec(binary, args, prompt, timeout=timeout, cwd=cwd)
                if stdout.strip():
                    return LocalToolResult(text=stdout)
                if output_path.exists():
                    return LocalToolResult(text=output_path.read_text(encoding="utf-8"))
                return LocalToolResult(text="")

        args = self.build_args(tool, model=model, extra_args=extra_args, allow_tools=allow_tools)
        stdout = await self._exec(binary, args, prompt, timeout=timeout, cwd=cwd)
        if not stdout.strip():
            return LocalToolResult(text="")
        return _parse_json_output(stdout.strip())

    async def _exec(
        self,
        binary: str,
        args: list[str],
        stdin_text: str,
        *,
        timeout: float,
        cwd: str | None,
    ) -> str:
        logger.debug("Running local tool: %s %s", binary, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise ProviderError(f"{binary} not found: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin_text.encode("utf-8")), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise LLMTimeoutError(f"{binary} timed out after {timeout:g}s") from exc

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()[:_STDERR_SNIPPET_CHARS]
            message = f"{binary} exited with code {proc.returncode}"
            if err:
                message = f"{message}: {err}"
            raise ProviderError(message, body=err)
        return stdout.decode("utf-8", errors="replace")
