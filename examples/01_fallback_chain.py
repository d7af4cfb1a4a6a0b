#!/usr/bin/env python3
"""Example 1: Fallback Chain.

Summarizes a short document through an ordered list of models in ``auto``
mode. Models whose API key (or local CLI tool) is missing are skipped, and a
failing model hands over to the next one. Streamed text is rendered live.

Set at least one of OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY or
OPENROUTER_API_KEY, or install the claude / codex / gemini CLI.

Usage:
    uv run python examples/01_fallback_chain.py
"""

from __future__ import annotations

import asyncio

from rich.console import Console
from rich.table import Table

from summawise import Dispatcher, Prompt, SelectionMode, parse_model_spec
from summawise.errors import SummaryError
from summawise.models import DispatchEvent
from summawise.output import LiveMarkdownSink

console = Console()

DOCUMENT = """\
The city council voted 7-2 on Tuesday to convert two downtown parking garages
into mixed-use buildings with ground-floor retail and 340 apartments, 90 of
them priced below market rate. Supporters argued the garages sit half empty
since the new light-rail line opened; opponents worried about evening parking
for the theater district. Construction is expected to start next spring and
take about two years. The council also asked staff to study a shuttle service
between the remaining garages and the theater district.
"""

MODELS = [
    "google/gemini-2.5-flash",
    "anthropic/claude-haiku-4.5",
    "openai/gpt-5-mini",
    "openrouter/openai/gpt-5-mini",
    "cli/claude",
]


def show_event(event: DispatchEvent) -> None:
    console.print(f"[dim]  {event.kind.value:<8} {event.attempt_id}: {event.message}[/dim]")


async def main() -> None:
    console.print("\n[bold cyan]SummaWise — Fallback Chain Demo[/bold cyan]\n")

    prompt = Prompt(
        user_text=f"Summarize this news item in two sentences.\n\n{DOCUMENT}",
        system="You are a concise news editor.",
    )
    attempts = [parse_model_spec(m) for m in MODELS]
    dispatcher = Dispatcher(on_event=show_event)

    try:
        result = await dispatcher.dispatch(
            attempts, prompt, SelectionMode.AUTO, sink=LiveMarkdownSink(console)
        )
    except SummaryError as e:
        console.print(f"\n[red]{e}[/red]")
        return

    if not result.already_emitted:
        console.print(result.summary_text)

    table = Table(title="LLM Calls")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Tokens (in/out)", justify="right")
    table.add_column("Cost", justify="right", style="green")
    for r in result.usage_records:
        usage = r.usage
        tokens = f"{usage.prompt_tokens}/{usage.completion_tokens}" if usage else "-"
        cost = f"${r.cost_usd:.6f}" if r.cost_usd is not None else "-"
        table.add_row(r.provider, r.model_id, tokens, cost)

    console.print()
    console.print(f"Answered by [bold]{result.model_meta.canonical_id}[/bold]")
    console.print(table)


if __name__ == "__main__":
    asyncio.run(main())
