"""Reconciliation of streamed text deltas.

Providers do not agree on what a streaming "delta" is. Most send plain
increments, some resend the full text generated so far on every event, and a
few occasionally re-stream a corrected copy of recent text. ``merge_streaming_chunk``
folds any of these into a single monotonically growing string and reports the
slice that is new, so output sinks never render the same text twice.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NamedTuple

from summawise.config import StreamMergeConfig
from summawise.errors import LLMTimeoutError, ProviderError

_DEFAULT_MERGE_CONFIG = StreamMergeConfig()

_STREAMING_UNSUPPORTED_MARKERS = (
    "streamgeneratecontent",
    "streaming is not supported",
    "stream is not supported",
    "does not support streaming",
)


class StreamMerge(NamedTuple):
    """Result of merging one chunk: the new state and the newly visible slice."""

    next: str
    appended: str


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _common_prefix_len(a: str, b: str, limit: int) -> int:
    bound = min(len(a), len(b), limit)
    i = 0
    while i < bound and a[i] == b[i]:
        i += 1
    return i


def _is_word_start(text: str, index: int) -> bool:
    return index == 0 or text[index - 1].isspace() or text[index].isspace()


def _suffix_prefix_overlap(previous: str, chunk: str, config: StreamMergeConfig) -> int:
    """Length of the longest suffix of *previous* that is a prefix of *chunk*."""
    window = min(len(previous), len(chunk), config.overlap_window_chars)
    min_len = max(config.min_overlap_chars, 1)
    if window < min_len:
        return 0

    tail_start = len(previous) - window
    tail = previous[tail_start:]
    probe = chunk[:min_len]
    # Leftmost match in the tail gives the longest overlap.
    pos = tail.find(probe)
    while pos != -1:
        k = window - pos
        if chunk.startswith(tail[pos:]) and _is_word_start(previous, tail_start + pos):
            return k
        pos = tail.find(probe, pos + 1)
    return 0


def merge_streaming_chunk(
    previous: str,
    chunk: str,
    config: StreamMergeConfig | None = None,
) -> StreamMerge:
    """Merge *chunk* into the accumulated *previous* text."""
    if not chunk:
        return StreamMerge(previous, "")
    cfg = config or _DEFAULT_MERGE_CONFIG
    chunk = _normalize_newlines(chunk)

    if chunk.startswith(previous):
        return StreamMerge(chunk, chunk[len(previous):])
    if previous.startswith(chunk):
        return StreamMerge(previous, "")

    if len(chunk) >= len(previous):
        p = _common_prefix_len(previous, chunk, cfg.prefix_scan_chars)
        required = max(
            len(previous) - cfg.rewrite_tail_chars,
            math.ceil(cfg.rewrite_ratio * len(previous)),
        )
        if p >= required:
            return StreamMerge(chunk, chunk[p:])

    k = _suffix_prefix_overlap(previous, chunk, cfg)
    if k:
        return StreamMerge(previous + chunk[k:], chunk[k:])

    return StreamMerge(previous + chunk, chunk)


@dataclass
class StreamAccumulator:
    """Mutable state for one attempt's stream consumption.

    ``raw`` is the untrimmed text handed to output sinks; ``accumulated`` is
    trimmed once by :meth:`finish`. A chunk ending in ``\\r`` is held back
    until the next chunk shows whether it was half of a ``\\r\\n`` pair.
    """

    config: StreamMergeConfig = field(default_factory=StreamMergeConfig)
    accumulated: str = ""
    raw: str = ""
    last_error: Callable[[], BaseException | None] = lambda: None
    _pending_cr: bool = field(default=False, init=False, repr=False)

    def _merge(self, chunk: str) -> str:
        merged = merge_streaming_chunk(self.accumulated, chunk, self.config)
        self.accumulated = merged.next
        self.raw = merged.next
        return merged.appended

    def _release_cr(self) -> str:
        # The held "\r" ended the previous chunk, so it lands right after it.
        self._pending_cr = False
        self.accumulated += "\n"
        self.raw = self.accumulated
        return "\n"

    def feed(self, delta: str) -> str:
        """Merge one delta and return the slice that should be emitted."""
        if not delta:
            return ""
        appended = ""
        if self._pending_cr:
            if delta.startswith("\n"):
                self._pending_cr = False
            else:
                appended = self._release_cr()
        if delta.endswith("\r"):
            delta = delta[:-1]
            self._pending_cr = True
        return appended + self._merge(delta)

    def finish(self) -> str:
        """Trim once, at stream completion; the trimmed text is canonical."""
        if self._pending_cr:
            self._release_cr()
        self.accumulated = self.accumulated.strip()
        return self.accumulated


def is_streaming_timeout_error(exc: BaseException) -> bool:
    return isinstance(exc, LLMTimeoutError)


def is_google_streaming_unsupported_error(exc: BaseException) -> bool:
    """Whether Google rejected ``streamGenerateContent`` for this model."""
    if not isinstance(exc, ProviderError):
        return False
    if exc.status_code not in (None, 400, 404, 405, 501):
        return False
    text = f"{exc} {exc.body}".lower()
    if "streamgeneratecontent" in text and (
        "not supported" in text or "not found" in text or "unsupported" in text
    ):
        return True
    return any(marker in text for marker in _STREAMING_UNSUPPORTED_MARKERS[1:])
