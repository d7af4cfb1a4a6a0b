#!/usr/bin/env python3
"""Example 2: Summarization Daemon.

Starts the SummaWise daemon in a background thread, then talks to it with raw
httpx:
  - GET /v1/models
  - POST /v1/summarize (buffered JSON response)
  - POST /v1/summarize with stream=true (server-sent events)

Requires a key for the model used below (OPENAI_API_KEY by default).

Usage:
    uv run python examples/02_daemon_client.py
"""

from __future__ import annotations

import json
import threading
import time

import httpx
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

DAEMON_HOST = "127.0.0.1"
DAEMON_PORT = 8788  # Non-default port to avoid conflicts
BASE_URL = f"http://{DAEMON_HOST}:{DAEMON_PORT}"

MODELS = ["openai/gpt-5-mini", "openrouter/openai/gpt-5-mini"]

TEXT = (
    "Photosynthesis converts light energy into chemical energy. In the light-dependent "
    "reactions, chlorophyll absorbs photons and splits water, releasing oxygen and producing "
    "ATP and NADPH. The Calvin cycle then uses that ATP and NADPH to fix carbon dioxide into "
    "three-carbon sugars, which the plant builds into glucose, starch and cellulose."
)


def start_daemon() -> threading.Thread:
    """Start the daemon in a daemon thread."""
    config = uvicorn.Config(
        "summawise.server:app",
        host=DAEMON_HOST,
        port=DAEMON_PORT,
        log_level="warning",
    )
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    for _ in range(30):
        try:
            resp = httpx.get(f"{BASE_URL}/health", timeout=2.0)
            if resp.status_code == 200:
                return thread
        except httpx.ConnectError:
            pass
        time.sleep(0.3)

    raise RuntimeError("Daemon failed to start")


def demo_list_models(client: httpx.Client) -> None:
    console.print("[bold yellow]1. GET /v1/models[/bold yellow]")
    resp = client.get(f"{BASE_URL}/v1/models")
    resp.raise_for_status()
    models = resp.json().get("data", [])

    table = Table(title=f"Known Models ({len(models)} total, showing first 8)")
    table.add_column("Model ID", max_width=40)
    table.add_column("Max Output", justify="right")
    for m in models[:8]:
        table.add_row(m["id"], str(m.get("max_output_tokens") or "-"))
    console.print(table)
    console.print()


def demo_buffered(client: httpx.Client) -> None:
    console.print("[bold yellow]2. POST /v1/summarize[/bold yellow]")
    resp = client.post(
        f"{BASE_URL}/v1/summarize",
        json={"text": TEXT, "models": MODELS, "max_output_tokens": 300},
        timeout=120.0,
    )
    if resp.status_code != 200:
        console.print(f"  [red]HTTP {resp.status_code}: {resp.json().get('detail')}[/red]\n")
        return
    data = resp.json()
    console.print(f"  Model used: [bold]{data['model']}[/bold]  cost: ${data['total_cost']:.6f}")
    console.print(Panel(data["summary"], title="Summary", border_style="green"))
    console.print()


def demo_streaming(client: httpx.Client) -> None:
    console.print("[bold yellow]3. POST /v1/summarize (stream=true)[/bold yellow]")
    with client.stream(
        "POST",
        f"{BASE_URL}/v1/summarize",
        json={"text": TEXT, "models": MODELS, "stream": True},
        timeout=120.0,
    ) as resp:
        event = ""
        for line in resp.iter_lines():
            if line.startswith("event: "):
                event = line.removeprefix("event: ")
            elif line.startswith("data: "):
                payload = json.loads(line.removeprefix("data: "))
                if event == "chunk":
                    console.print(payload["text"], end="")
                elif event == "done":
                    console.print(f"\n\n  [dim]done via {payload['model']}[/dim]")
                elif event == "error":
                    console.print(f"\n  [red]{payload['message']}[/red]")


def main() -> None:
    console.print("\n[bold cyan]SummaWise — Daemon Demo[/bold cyan]\n")

    console.print(f"Starting daemon at {BASE_URL}...", end=" ")
    start_daemon()
    console.print("[green]ready![/green]\n")

    with httpx.Client() as client:
        demo_list_models(client)
        demo_buffered(client)
        demo_streaming(client)

    console.print("\n[dim]The daemon runs in a background thread and exits with this process.[/dim]\n")


if __name__ == "__main__":
    main()
