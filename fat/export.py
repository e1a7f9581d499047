"""Static HTML rendering of a finished run via a recording rich console."""

import io
import logging
import re
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from fat.models import RunResult

logger = logging.getLogger(__name__)

MEDALS = (("gold", "🥇"), ("silver", "🥈"), ("bronze", "🥉"))


def slugify(text: str, max_len: int = 60) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len].rstrip("-") or "question"


def _medal_table(run: RunResult) -> Table:
    outcome = run.outcome
    rates = {agent.id: agent.rate for agent in run.agents}
    names = {agent.id: agent.name for agent in run.agents}

    table = Table(title="Results", show_lines=False)
    table.add_column("Place")
    table.add_column("Agent", style="bold")
    table.add_column("Model", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Tokens in/out", justify="right")
    table.add_column("Cost", justify="right")

    for tier, medal in MEDALS:
        for agent_id in getattr(outcome, tier):
            m = run.metrics.agents.get(agent_id)
            tokens = f"{m.total_tokens_in}/{m.total_tokens_out}" if m else "-"
            cost = f"${m.cost(rates[agent_id]):.4f}" if m and agent_id in rates else "-"
            table.add_row(
                f"{medal} {tier}",
                agent_id,
                names.get(agent_id, agent_id),
                str(outcome.scores.get(agent_id, 0)),
                tokens,
                cost,
            )
    return table


def render(run: RunResult, console: Console) -> None:
    """Print the full run to ``console``."""
    console.print(Rule("[bold]Question[/bold]"))
    console.print(Markdown(run.question))

    console.print(Rule("[bold]Winners[/bold]"))
    if run.outcome.fallback:
        console.print(Text("No valid rankings; winner chosen by fallback.", style="yellow"))
    console.print(_medal_table(run))

    console.print(Rule("[bold]Final answers[/bold]"))
    for agent in run.agents:
        reply = run.replies.get(agent.id)
        if reply is None:
            console.print(Panel(Text("(no answer)", style="dim"), title=agent.id, border_style="red"))
            continue
        body = reply.answer or reply.rationale
        console.print(Panel(Markdown(body), title=f"[bold]{agent.id}[/bold] ({agent.name})", border_style="dim"))

    pairs = list(run.discussion.pairs())
    if pairs:
        console.print(Rule("[bold]Discussion[/bold]"))
        for a, b, messages in pairs:
            lines = Text()
            for msg in messages:
                lines.append(f"[round {msg.round}] ", style="dim")
                lines.append(f"{msg.sender}: ", style="bold")
                lines.append(msg.message.strip() + "\n")
            console.print(Panel(lines, title=f"{a} ↔ {b}", border_style="cyan"))

    summary = run.metrics.summary()
    console.print(Text(
        f"Request {run.request_id} | {summary['num_rounds']} rounds | "
        f"{summary['num_agents']} agents | {summary['duration_ms'] / 1000:.1f}s",
        style="dim",
    ))


class HtmlExporter:
    def __init__(self, export_dir: Path) -> None:
        self.export_dir = Path(export_dir)

    def export(self, run: RunResult) -> Path:
        """Write ``<question-slug>.html`` and return its path.

        Raises:
            OSError: If the file cannot be written.
        """
        console = Console(record=True, file=io.StringIO(), width=100, legacy_windows=False)
        render(run, console)

        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_dir / f"{slugify(run.question)}.html"
        console.save_html(str(path))
        logger.info("[%s] Exported HTML to %s", run.request_id, path)
        return path
