"""Typer CLI for SummaWise."""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from summawise.catalog import ModelCatalog
from summawise.config import Settings, get_settings
from summawise.dispatch import Dispatcher
from summawise.engine import LocalToolOptions, SummaryEngine
from summawise.errors import SummaryError
from summawise.ledger_store import LedgerStore
from summawise.model_spec import parse_model_specs
from summawise.models import (
    Attachment,
    DispatchEvent,
    DispatchResult,
    Prompt,
    SelectionMode,
    UsageRecord,
)
from summawise.output import BufferedMarkdownSink, LiveMarkdownSink, OutputSink, PlainStreamSink

app = typer.Typer(
    name="summawise",
    help="SummaWise — summarize text with multi-provider model fallback",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
err_console = Console(stderr=True)

# Tried in order when no --model is given
_DEFAULT_MODELS = [
    "google/gemini-2.5-flash",
    "openai/gpt-5-mini",
    "anthropic/claude-haiku-4.5",
    "xai/grok-4-fast",
    "openrouter/openai/gpt-5-mini",
    "cli/claude",
    "cli/gemini",
    "cli/codex",
]

_LENGTH_GUIDANCE = {
    "short": "Keep it to a few sentences (about 100 words).",
    "medium": "Aim for roughly 250 words.",
    "long": "Aim for roughly 600 words, with short sections.",
    "xl": "Be thorough: roughly 1200 words, organized with headings.",
}

_SYSTEM_PROMPT = (
    "You summarize documents for a busy reader. Write in Markdown. Lead with the main "
    "point, keep the author's claims distinct from your own wording, and do not invent facts."
)

_RENDER_MODES = ("plain", "live", "buffered")


def _ledger_store(settings: Settings) -> LedgerStore:
    store_path = Path(settings.ledger_path).expanduser() if settings.ledger_path else None
    return LedgerStore(path=store_path)


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        raise typer.BadParameter(f"{source} is not a file", param_hint="SOURCE")
    return path.read_text(encoding="utf-8", errors="replace")


def _load_attachment(path: Path) -> Attachment:
    media_type, _ = mimetypes.guess_type(path.name)
    return Attachment(
        media_type=media_type or "application/octet-stream",
        data=path.read_bytes(),
        filename=path.name,
    )


def build_prompt(text: str, length: str | None, attachments: list[Attachment]) -> Prompt:
    """Wrap the source text in summary instructions."""
    instructions = "Summarize the following content."
    if length:
        instructions = f"{instructions} {_LENGTH_GUIDANCE[length]}"
    return Prompt(
        user_text=f"{instructions}\n\n{text.strip()}",
        system=_SYSTEM_PROMPT,
        attachments=tuple(attachments),
    )


def _local_tool_options(prompt: Prompt, attach: list[Path]) -> LocalToolOptions | None:
    """Point local tools at attachment files instead of inlining them."""
    if prompt.is_text_only:
        return None
    listing = "\n".join(f"- {p.resolve()}" for p in attach)
    return LocalToolOptions(
        prompt_override=f"{prompt.full_text()}\n\nRead and include these attached files:\n{listing}",
        cwd=str(Path.cwd()),
        allow_tools=True,
    )


def _make_sink(render: str) -> OutputSink:
    if render == "plain":
        return PlainStreamSink()
    if render == "buffered":
        return BufferedMarkdownSink(console)
    return LiveMarkdownSink(console)


def _print_event(event: DispatchEvent) -> None:
    err_console.print(f"[dim]{event.kind.value} {event.attempt_id}: {event.message}[/dim]")


def _usage_table(records: list[UsageRecord]) -> Table:
    table = Table(title="LLM Calls")
    table.add_column("Provider", style="magenta")
    table.add_column("Model", style="cyan")
    table.add_column("In Tokens", justify="right")
    table.add_column("Out Tokens", justify="right")
    table.add_column("Cost", justify="right", style="green")
    for r in records:
        usage = r.usage
        table.add_row(
            r.provider,
            r.model_id,
            str(usage.prompt_tokens) if usage and usage.prompt_tokens is not None else "-",
            str(usage.completion_tokens) if usage and usage.completion_tokens is not None else "-",
            f"${r.cost_usd:.6f}" if r.cost_usd is not None else "-",
        )
    return table


@app.command()
def summarize(
    source: str = typer.Argument(help="File to summarize, or '-' for stdin"),
    model: list[str] = typer.Option(
        [], "--model", "-m", help="Model spec (repeatable), e.g. openai/gpt-5-mini or cli/claude"
    ),
    auto: bool = typer.Option(
        False, "--auto", help="Fall through to the next model on failure"
    ),
    attach: list[Path] = typer.Option([], "--attach", "-a", help="Attach a file (repeatable)"),
    length: str | None = typer.Option(None, "--length", "-l", help="short, medium, long or xl"),
    stream: bool | None = typer.Option(None, "--stream/--no-stream", help="Stream output"),
    render: str | None = typer.Option(
        None, "--render", "-r", help="plain, live or buffered (default: live on a terminal)"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Per-call timeout in seconds"),
    retries: int | None = typer.Option(None, "--retries", help="Retries on timeout/empty output"),
    max_output_tokens: int | None = typer.Option(
        None, "--max-output-tokens", help="Requested output token cap"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show diagnostics on stderr"),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Summarize a file (or stdin) with the first model that succeeds."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )
    if length is not None and length not in _LENGTH_GUIDANCE:
        raise typer.BadParameter(f"must be one of: {', '.join(_LENGTH_GUIDANCE)}")
    if render is not None and render not in _RENDER_MODES:
        raise typer.BadParameter(f"must be one of: {', '.join(_RENDER_MODES)}")

    updates: dict[str, object] = {}
    if timeout is not None:
        updates["timeout"] = timeout
    if retries is not None:
        updates["retries"] = retries
    if max_output_tokens is not None:
        updates["max_output_tokens"] = max_output_tokens
    if stream is not None:
        updates["streaming_enabled"] = stream
    settings = get_settings().model_copy(update=updates)

    specs = model or _DEFAULT_MODELS
    try:
        attempts = parse_model_specs(specs)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    mode = SelectionMode.AUTO if auto or len(attempts) > 1 else SelectionMode.FIXED

    prompt = build_prompt(_read_source(source), length, [_load_attachment(p) for p in attach])
    sink = None
    if not json_output:
        sink = _make_sink(render or ("live" if console.is_terminal else "plain"))

    engine = SummaryEngine(settings, on_event=_print_event if verbose else None)
    dispatcher = Dispatcher(engine)
    store = _ledger_store(settings)
    source_label = "stdin" if source == "-" else source

    try:
        result: DispatchResult = asyncio.run(
            dispatcher.dispatch(
                attempts,
                prompt,
                mode,
                sink=sink,
                local_tool_options=_local_tool_options(prompt, attach),
            )
        )
    except SummaryError as e:
        store.save(source_label, None, False, engine.usage_records, error=str(e))
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    store.save(source_label, result.model_meta.canonical_id, True, result.usage_records)

    if json_output:
        payload = {
            "summary": result.summary_text,
            "model": result.model_meta.canonical_id,
            "provider": result.model_meta.provider,
            "usage": [r.model_dump(mode="json") for r in result.usage_records],
            "total_cost": result.total_cost,
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if not result.already_emitted:
        if isinstance(sink, PlainStreamSink):
            typer.echo(result.summary_text)
        else:
            console.print(Markdown(result.summary_text))

    if verbose:
        err_console.print(f"[dim]Model: {result.model_meta.canonical_id}[/dim]")
        if result.usage_records:
            err_console.print(_usage_table(result.usage_records))
            err_console.print(f"[dim]Total cost: ${result.total_cost:.6f}[/dim]")


@app.command()
def models(
    remote: bool = typer.Option(False, "--remote", help="Refresh limits from OpenRouter"),
    provider: str | None = typer.Option(None, "--provider", "-p", help="Filter by provider"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max models to display"),
) -> None:
    """List known models with token limits and pricing."""
    catalog = ModelCatalog()
    if remote:
        try:
            count = asyncio.run(catalog.refresh_from_openrouter())
            console.print(f"[green]Loaded {count} models from OpenRouter[/green]\n")
        except Exception as e:
            console.print(f"[red]Failed to load models: {e}[/red]")
            raise typer.Exit(1)

    entries = [m for m in catalog.list_all() if provider is None or m.provider == provider]

    table = Table(title="Known Models")
    table.add_column("Model ID", style="cyan", max_width=48)
    table.add_column("Max Input", justify="right")
    table.add_column("Max Output", justify="right")
    table.add_column("Input $/M", justify="right", style="green")
    table.add_column("Output $/M", justify="right", style="green")

    for m in entries[:limit]:
        table.add_row(
            m.id,
            f"{m.max_input_tokens:,}" if m.max_input_tokens else "-",
            f"{m.max_output_tokens:,}" if m.max_output_tokens else "-",
            f"${m.input_price:.2f}" if m.input_price is not None else "-",
            f"${m.output_price:.2f}" if m.output_price is not None else "-",
        )

    console.print(table)
    if len(entries) > limit:
        console.print(
            f"\n[dim]Showing {limit} of {len(entries)} models. Use --limit to see more.[/dim]"
        )


@app.command()
def ledger(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent entries to show"),
    summary: bool = typer.Option(False, "--summary", "-s", help="Show aggregate spend statistics"),
) -> None:
    """Show persistent summary history across sessions."""
    store = _ledger_store(get_settings())

    if summary:
        stats = store.summary()
        console.print("\n[bold]Spend Summary[/bold]")
        console.print(f"  Total runs:        {stats['num_runs']}")
        console.print(f"  Succeeded:         {stats['num_succeeded']}")
        console.print(f"  Failed:            {stats['num_failed']}")
        console.print(f"  Prompt tokens:     {stats['total_prompt_tokens']:,}")
        console.print(f"  Completion tokens: {stats['total_completion_tokens']:,}")
        console.print(f"  Total spend:       ${stats['total_spend']:.4f}")
        if stats["by_model"]:
            table = Table(title="Calls by Model")
            table.add_column("Model", style="magenta")
            table.add_column("Calls", justify="right")
            table.add_column("Spend", justify="right", style="green")
            ranked = sorted(stats["by_model"].items(), key=lambda kv: kv[1]["spend"], reverse=True)
            for model_id, bucket in ranked:
                table.add_row(model_id, str(bucket["calls"]), f"${bucket['spend']:.4f}")
            console.print(table)
        return

    records = store.load(limit=limit)
    if not records:
        console.print("[dim]No ledger entries found.[/dim]")
        return

    table = Table(title="Summary History")
    table.add_column("Timestamp", style="dim", max_width=20)
    table.add_column("Source", max_width=40)
    table.add_column("Model", style="magenta")
    table.add_column("Cost", justify="right", style="green")
    table.add_column("OK?", justify="center")

    for r in records:
        ts = r.get("timestamp", "?")[:19]
        source_str = r.get("source", "?")
        if len(source_str) > 40:
            source_str = "..." + source_str[-37:]
        cost = r.get("total_cost", 0.0)
        ok = "[green]Y[/green]" if r.get("success") else "[red]N[/red]"
        table.add_row(ts, source_str, r.get("model") or "-", f"${cost:.4f}", ok)

    console.print(table)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
) -> None:
    """Start the summarization daemon."""
    import uvicorn

    settings = get_settings()
    host = host or settings.daemon_host
    port = port or settings.daemon_port
    console.print(f"[bold green]Starting SummaWise daemon on {host}:{port}[/bold green]")
    console.print("[dim]Endpoint: POST /v1/summarize[/dim]\n")

    uvicorn.run(
        "summawise.server:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.callback()
def main() -> None:
    """SummaWise — summarize text with multi-provider model fallback."""


if __name__ == "__main__":
    app()
