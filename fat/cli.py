"""Click CLI: config loading, panel selection, health check, one orchestrated run."""

import asyncio
import logging
import sys
import time
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from fat.export import HtmlExporter
from fat.healthcheck import run_health_checks
from fat.models import Agent, Rate
from fat.orchestrator import Orchestrator
from fat.output import ConsoleBroadcaster, print_summary
from fat.providers.anthropic import AnthropicProvider
from fat.providers.base import AIProvider
from fat.providers.gemini import GeminiProvider
from fat.providers.openai_provider import OpenAIProvider
from fat.providers.xai import XAIProvider
from fat.ranking import RankingEngine
from fat.retry import RetryConfig, RetryPolicy
from fat.rounds import RoundExecutor
from fat.storage import ResultStore
from fat.transcripts import archive_old_folders

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# keyed by the ``sdk`` field of a model entry in settings.yaml
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "xai": XAIProvider,
}

_MIN_AGENTS = 2


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _determine_panel(config: AppConfig, models_arg: str | None) -> list[str]:
    """--models overrides the configured default panel."""
    if models_arg:
        return [m.strip() for m in models_arg.split(",") if m.strip()]
    return list(config.defaults.default_panel) or sorted(config.models)


def _build_agents(config: AppConfig, providers: dict[str, AIProvider], panel: list[str]) -> list[Agent]:
    agents: list[Agent] = []
    for name in panel:
        provider = providers.get(name)
        if provider is None:
            logger.warning("Panel member '%s' is not available, skipping", name)
            continue
        model_cfg = config.models[name]
        agents.append(Agent(
            family_id=provider.name(),
            variant_id=provider.model_string(),
            capability=provider,
            request_timeout_sec=model_cfg.timeout_sec,
            rate=Rate(model_cfg.rate_in, model_cfg.rate_out),
        ))
    return agents


def _check_and_filter_providers(providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures."""
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return providers

    working = {n: p for n, p in providers.items() if n not in failed_names}
    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _build_orchestrator(config: AppConfig, output_dir: Path, no_db: bool, no_export: bool) -> Orchestrator:
    broadcaster = ConsoleBroadcaster(console)
    retry = config.retry
    executor = RoundExecutor(
        retry_policy=RetryPolicy(RetryConfig(
            max_attempts=retry.max_attempts,
            initial_delay_sec=retry.initial_delay_sec,
            max_delay_sec=retry.max_delay_sec,
            multiplier=retry.multiplier,
        )),
        default_timeout_sec=config.defaults.request_timeout_sec,
        broadcaster=broadcaster,
    )
    ranking = RankingEngine(default_timeout_sec=config.defaults.request_timeout_sec)
    store = None if no_db else ResultStore(config.defaults.db_path)
    exporter = None if no_export else HtmlExporter(config.defaults.export_dir)
    return Orchestrator(
        broadcaster,
        executor=executor,
        ranking=ranking,
        store=store,
        exporter=exporter,
        answers_dir=output_dir,
    )


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a text file")
@click.option("--rounds", default=None, type=int, help="Number of refinement rounds (default: from config)")
@click.option("--models", default=None, help="Comma-separated model list, overrides the default panel")
@click.option("--output", "output_path", default=None, help="Transcript directory (default: from config)")
@click.option("--no-export", is_flag=True, default=False, help="Skip the static HTML export")
@click.option("--no-db", is_flag=True, default=False, help="Skip saving the run to SQLite")
@click.option("--archive", "run_archive", is_flag=True, default=False,
              help="Move old transcript folders to recent/ and archive/ before running")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    question: str | None,
    question_file: str | None,
    rounds: int | None,
    models: str | None,
    output_path: str | None,
    no_export: bool,
    no_db: bool,
    run_archive: bool,
    skip_health_check: bool,
    verbose: bool,
) -> None:
    """FAT -- several models refine an answer together, then rank each other.

    \b
    Examples:
      python -m fat.cli "What is the capital of Australia?" --rounds 2
      python -m fat.cli "Name 5 prime numbers" --models grok,claude,gemini
      python -m fat.cli --file question.txt --no-export
      python -m fat.cli --archive
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir

    if run_archive:
        moved = archive_old_folders(output_dir)
        console.print(f"[dim]Archived {len(moved)} folder(s)[/dim]")
        if not question and not question_file:
            return

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question.strip()
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    num_rounds = rounds if rounds is not None else config.defaults.rounds
    if not 1 <= num_rounds <= config.defaults.max_rounds:
        console.print(
            f"[bold red]Error:[/bold red] --rounds must be between 1 and {config.defaults.max_rounds}, got {num_rounds}."
        )
        sys.exit(1)

    providers = _build_all_providers(config)
    panel = _determine_panel(config, models)
    providers = {n: p for n, p in providers.items() if n in panel}

    if providers and not skip_health_check:
        providers = _check_and_filter_providers(providers)

    agents = _build_agents(config, providers, panel)
    if len(agents) < _MIN_AGENTS:
        console.print(
            f"[bold red]Error:[/bold red] Need at least {_MIN_AGENTS} agents, got {len(agents)}. "
            "Check API keys in .env or adjust --models."
        )
        sys.exit(1)

    console.print(
        f"\n[bold cyan]FAT[/bold cyan] -- {len(agents)} agents, {num_rounds} rounds: "
        f"{', '.join(a.id for a in agents)}"
    )
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    orchestrator = _build_orchestrator(config, output_dir, no_db, no_export)
    try:
        run = asyncio.run(orchestrator.process_question(question_text, num_rounds, agents, int(time.time())))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)

    print_summary(run, console)


if __name__ == "__main__":
    main()
