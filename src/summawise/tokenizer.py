"""Token counting for input-limit pre-flight checks."""

from __future__ import annotations

from functools import lru_cache

import tiktoken

_ENCODING_NAME = "cl100k_base"


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(_ENCODING_NAME)


def count_tokens(text: str) -> int:
    """Count *text* with the GPT tokenizer."""
    if not text:
        return 0
    return len(_encoding().encode(text, disallowed_special=()))
