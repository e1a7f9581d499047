"""Rich console rendering of lifecycle events and the final summary."""

import logging
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from fat import events
from fat.events import Broadcaster
from fat.export import MEDALS
from fat.models import RunResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


class ConsoleBroadcaster(Broadcaster):
    """Prints every event as it arrives."""

    def __init__(self, out: Console | None = None, preview_words: int = 50) -> None:
        self.console = out or console
        self.preview_words = preview_words

    def broadcast(self, message: dict[str, Any]) -> None:
        event_type = message.get("type")
        if event_type == events.CLEAR:
            self.console.print(Text(f"Request {message['request_id']}", style="dim"))
        elif event_type == events.ROUND_START:
            self.console.print(Rule(f"[bold cyan]Round {message['round']} of {message['total']}[/bold cyan]"))
        elif event_type == events.RESPONSE:
            targets = ", ".join(message.get("discussion") or {}) or "none"
            self.console.print(
                Panel(
                    _preview(message.get("answer") or message.get("rationale", ""), self.preview_words),
                    title=f"[bold]{message['model']}[/bold]",
                    subtitle=(
                        f"{message['tokens_in']}/{message['tokens_out']} tokens | "
                        f"${message.get('cost', 0.0):.4f} | discussion: {targets}"
                    ),
                    border_style="dim",
                )
            )
        elif event_type == events.ERROR:
            self.console.print(f"  [red]FAIL[/red] {message['model']} (round {message['round']}): {message['error']}")
        elif event_type == events.RANKING_START:
            self.console.print(Rule("[bold magenta]Ranking[/bold magenta]"))
        elif event_type == events.WINNER:
            gold = ", ".join(message["gold"]) or "-"
            self.console.print(Rule(f"[bold green]Winner: {gold}[/bold green]"))
            if message.get("answer"):
                self.console.print(Markdown(message["answer"]))
        else:
            logger.debug("Unhandled event type: %s", event_type)


def print_summary(run: RunResult, out: Console | None = None) -> None:
    """Print the final tiers, scores and per-agent cost."""
    out = out or console
    rates = {agent.id: agent.rate for agent in run.agents}

    table = Table(title="Final ranking")
    table.add_column("Place")
    table.add_column("Agent", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Cost", justify="right")
    for tier, medal in MEDALS:
        for agent_id in getattr(run.outcome, tier):
            m = run.metrics.agents.get(agent_id)
            cost = m.cost(rates[agent_id]) if m and agent_id in rates else 0.0
            table.add_row(f"{medal} {tier}", agent_id, str(run.outcome.scores.get(agent_id, 0)), f"${cost:.4f}")
    out.print(table)

    summary = run.metrics.summary()
    out.print(
        Text(
            f"Duration: {summary['duration_ms'] / 1000:.1f}s | "
            f"Rounds: {summary['num_rounds']} | "
            f"Tokens: {summary['total_tokens_in']}/{summary['total_tokens_out']} | "
            f"Errors: {summary['error_count']}"
            + (" | fallback winner" if run.outcome.fallback else ""),
            style="dim",
        )
    )
