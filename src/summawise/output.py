"""Output sinks that receive reconciled stream text."""

from __future__ import annotations

import asyncio
import sys
import time
from collections.abc import Callable
from typing import Any, Protocol, TextIO

from rich.console import Console
from rich.markdown import Markdown


class OutputSink(Protocol):
    """Receives appended slices while streaming and the final text once."""

    writes_output: bool

    def on_appended(self, text: str) -> None: ...

    def on_done(self, final_text: str, raw_text: str = "") -> None: ...


class PlainStreamSink:
    """Writes each appended slice straight to a text stream."""

    writes_output = True

    def __init__(self, file: TextIO | None = None) -> None:
        self._file = file or sys.stdout
        self._started = False

    def on_appended(self, text: str) -> None:
        if not self._started:
            text = text.lstrip("\n")
            if not text:
                return
            self._started = True
        self._file.write(text)
        self._file.flush()

    def on_done(self, final_text: str, raw_text: str = "") -> None:
        # Appended slices are always suffixes of the raw text, so its tail is what was written.
        if self._started and not (raw_text or final_text).endswith("\n"):
            self._file.write("\n")
            self._file.flush()


def _is_fence(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith("```") or stripped.startswith("~~~")


class LiveMarkdownSink:
    """Renders complete Markdown blocks with rich as they become safe to render.

    A block is flushed at a blank line outside a code fence, or at a line
    boundary once ``flush_interval`` seconds passed since the last flush.
    Table rows are never split from the rest of their table.
    """

    writes_output = True

    def __init__(
        self,
        console: Console | None = None,
        *,
        flush_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.console = console or Console()
        self.flush_interval = flush_interval
        self._clock = clock
        self._pending = ""
        self._last_flush = clock()

    def _safe_cut(self) -> int:
        """Index just past the last safe boundary in the pending text, or 0."""
        in_fence = False
        blank_cut = 0
        line_cut = 0
        pos = 0
        for line in self._pending.splitlines(keepends=True):
            if not line.endswith("\n"):
                break
            pos += len(line)
            if _is_fence(line):
                in_fence = not in_fence
            if in_fence:
                continue
            if not line.strip():
                blank_cut = pos
            elif not line.lstrip().startswith("|"):
                line_cut = pos
        if blank_cut:
            return blank_cut
        if line_cut and self._clock() - self._last_flush >= self.flush_interval:
            return line_cut
        return 0

    def _render(self, text: str) -> None:
        if text.strip():
            self.console.print(Markdown(text))
        self._last_flush = self._clock()

    def on_appended(self, text: str) -> None:
        self._pending += text
        cut = self._safe_cut()
        if cut:
            block, self._pending = self._pending[:cut], self._pending[cut:]
            self._render(block)

    def on_done(self, final_text: str, raw_text: str = "") -> None:
        rest, self._pending = self._pending, ""
        self._render(rest)


class BufferedMarkdownSink:
    """Renders the final text once, as Markdown."""

    writes_output = True

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def on_appended(self, text: str) -> None:
        pass

    def on_done(self, final_text: str, raw_text: str = "") -> None:
        if final_text:
            self.console.print(Markdown(final_text))


class QueueSink:
    """Forwards appended slices to an asyncio queue (used by the daemon)."""

    writes_output = True

    def __init__(self, queue: asyncio.Queue[Any]) -> None:
        self.queue = queue

    def on_appended(self, text: str) -> None:
        if text:
            self.queue.put_nowait(("chunk", text))

    def on_done(self, final_text: str, raw_text: str = "") -> None:
        pass
