"""Persistent JSONL-based ledger of summary runs and their spend."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from summawise.models import UsageRecord

logger = logging.getLogger(__name__)

_DEFAULT_LEDGER_PATH = Path.home() / ".config" / "summawise" / "ledger.jsonl"


def _call_entry(record: UsageRecord) -> dict[str, Any]:
    usage = record.usage
    return {
        "provider": record.provider,
        "model_id": record.model_id,
        "purpose": record.purpose.value,
        "prompt_tokens": usage.prompt_tokens if usage else None,
        "completion_tokens": usage.completion_tokens if usage else None,
        "cost_usd": record.cost_usd,
    }


class LedgerStore:
    """One JSON line per ``summarize`` run: what was asked, who answered, what it cost.

    Each line carries run totals plus a ``calls`` list with one entry per
    provider or tool call the run made, so failed fallbacks that still
    consumed tokens show up in the spend.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or _DEFAULT_LEDGER_PATH

    def save(
        self,
        source: str,
        model: str | None,
        success: bool,
        records: list[UsageRecord],
        error: str | None = None,
    ) -> None:
        calls = [_call_entry(r) for r in records]
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "model": model,
            "success": success,
            "total_cost": sum(c["cost_usd"] or 0.0 for c in calls),
            "prompt_tokens": sum(c["prompt_tokens"] or 0 for c in calls),
            "completion_tokens": sum(c["completion_tokens"] or 0 for c in calls),
            "error": error,
            "calls": calls,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(entry) + "\n")
        logger.debug("Ledger entry for %s appended to %s", source, self.path)

    def load(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent *limit* runs, oldest first (every run when ``limit <= 0``)."""
        entries = list(self._iter_entries())
        return entries if limit <= 0 else entries[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate runs and spend, with a per-model breakdown of the calls made."""
        stats: dict[str, Any] = {
            "num_runs": 0,
            "num_succeeded": 0,
            "num_failed": 0,
            "total_spend": 0.0,
            "total_prompt_tokens": 0,
            "total_completion_tokens": 0,
        }
        by_model: dict[str, dict[str, Any]] = defaultdict(lambda: {"calls": 0, "spend": 0.0})
        for entry in self._iter_entries():
            stats["num_runs"] += 1
            stats["num_succeeded" if entry.get("success") else "num_failed"] += 1
            stats["total_spend"] += entry.get("total_cost", 0.0)
            stats["total_prompt_tokens"] += entry.get("prompt_tokens", 0)
            stats["total_completion_tokens"] += entry.get("completion_tokens", 0)
            for call in entry.get("calls", []):
                bucket = by_model[call.get("model_id") or "?"]
                bucket["calls"] += 1
                bucket["spend"] += call.get("cost_usd") or 0.0
        stats["by_model"] = dict(by_model)
        return stats

    def _iter_entries(self):
        if not self.path.exists():
            return
        with open(self.path) as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed ledger line %d in %s", lineno, self.path)
