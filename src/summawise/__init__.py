"""SummaWise — multi-provider LLM summarization with streaming and fallback."""

from importlib.metadata import version

from summawise.dispatch import Dispatcher
from summawise.engine import LocalToolOptions, SummaryEngine
from summawise.models import (
    Attachment,
    DispatchResult,
    GatewayAttempt,
    LocalToolAttempt,
    NativeAttempt,
    Prompt,
    SelectionMode,
)
from summawise.model_spec import parse_model_spec
from summawise.streaming import merge_streaming_chunk

__version__ = version("summawise-llm")
__all__ = [
    "Attachment",
    "DispatchResult",
    "Dispatcher",
    "GatewayAttempt",
    "LocalToolAttempt",
    "LocalToolOptions",
    "NativeAttempt",
    "Prompt",
    "SelectionMode",
    "SummaryEngine",
    "__version__",
    "merge_streaming_chunk",
    "parse_model_spec",
]
