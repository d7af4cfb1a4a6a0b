"""FastAPI summarization daemon."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from starlette.responses import StreamingResponse

from summawise.catalog import ModelCatalog
from summawise.config import get_settings
from summawise.dispatch import Dispatcher
from summawise.engine import SummaryEngine
from summawise.errors import ErrorKind, SummaryError
from summawise.model_spec import parse_model_specs
from summawise.models import (
    AttemptDescriptor,
    DispatchResult,
    Prompt,
    SelectionMode,
    SummarizeRequest,
    SummarizeResponse,
)
from summawise.output import QueueSink
from summawise.providers import ProviderResolver

logger = logging.getLogger(__name__)

# Error kinds caused by the request itself rather than the upstream model
_CLIENT_ERROR_KINDS = {
    ErrorKind.MISSING_CREDENTIAL,
    ErrorKind.UNSUPPORTED_ATTACHMENT,
    ErrorKind.INPUT_TOKEN_LIMIT_EXCEEDED,
}


class _State:
    """Mutable application state managed by the lifespan."""

    http_client: httpx.AsyncClient
    catalog: ModelCatalog
    resolver: ProviderResolver


state = _State()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle — create/destroy shared HTTP client."""
    settings = get_settings()
    state.http_client = httpx.AsyncClient(timeout=settings.timeout)
    state.catalog = ModelCatalog(settings=settings)
    state.resolver = ProviderResolver(settings, http_client=state.http_client)
    yield
    await state.http_client.aclose()


app = FastAPI(
    title="SummaWise Daemon",
    description="Summarize text with multi-provider model fallback",
    version="0.1.0",
    lifespan=lifespan,
)


def _status_for(exc: SummaryError) -> int:
    return 400 if exc.kind in _CLIENT_ERROR_KINDS else 502


def _build_dispatcher(request: SummarizeRequest) -> Dispatcher:
    settings = get_settings()
    if request.max_output_tokens is not None:
        settings = settings.model_copy(update={"max_output_tokens": request.max_output_tokens})
    engine = SummaryEngine(settings, catalog=state.catalog, resolver=state.resolver)
    return Dispatcher(engine)


def _parse_request(request: SummarizeRequest) -> tuple[list[AttemptDescriptor], SelectionMode]:
    try:
        attempts = parse_model_specs(request.models)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    mode = request.mode or (SelectionMode.FIXED if len(attempts) == 1 else SelectionMode.AUTO)
    return attempts, mode


def _response_for(result: DispatchResult) -> SummarizeResponse:
    return SummarizeResponse(
        summary=result.summary_text,
        model=result.model_meta.canonical_id,
        provider=result.model_meta.provider,
        already_emitted=result.already_emitted,
        usage=result.usage_records,
        total_cost=result.total_cost,
    )


def _sse(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@app.get("/v1/models")
async def list_models() -> dict[str, Any]:
    """List catalog entries with their limits and pricing."""
    return {
        "object": "list",
        "data": [m.model_dump() | {"provider": m.provider} for m in state.catalog.list_all()],
    }


@app.post("/v1/summarize", response_model=None)
async def summarize(request: SummarizeRequest) -> SummarizeResponse | StreamingResponse:
    """Summarize ``text`` with the first model that succeeds."""
    attempts, mode = _parse_request(request)
    prompt = Prompt(user_text=request.text, system=request.system)
    dispatcher = _build_dispatcher(request)

    if request.stream:
        return StreamingResponse(
            _stream_summary(dispatcher, attempts, prompt, mode),
            media_type="text/event-stream",
        )

    try:
        result = await dispatcher.dispatch(attempts, prompt, mode, allow_streaming=False)
    except SummaryError as e:
        logger.info("Summary failed: %s", e)
        raise HTTPException(status_code=_status_for(e), detail=str(e))
    return _response_for(result)


async def _stream_summary(
    dispatcher: Dispatcher,
    attempts: list[AttemptDescriptor],
    prompt: Prompt,
    mode: SelectionMode,
) -> AsyncIterator[str]:
    """Run the dispatch in the background and relay its output as SSE frames."""
    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
    sink = QueueSink(queue)

    async def _run() -> None:
        try:
            result = await dispatcher.dispatch(attempts, prompt, mode, sink=sink)
        except SummaryError as e:
            queue.put_nowait(
                ("error", {"message": str(e), "kind": e.kind.value, "status": _status_for(e)})
            )
        except Exception as e:
            logger.exception("Unexpected failure while summarizing")
            queue.put_nowait(("error", {"message": str(e), "kind": "internal", "status": 500}))
        else:
            queue.put_nowait(("done", _response_for(result).model_dump(mode="json")))

    task = asyncio.create_task(_run())
    try:
        while True:
            event, payload = await queue.get()
            if event == "chunk":
                payload = {"text": payload}
            yield _sse(event, payload)
            if event in ("done", "error"):
                break
    finally:
        if not task.done():
            task.cancel()


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    from summawise import __version__

    return {"status": "ok", "version": __version__}
