"""
Command Line Interface for TripSight.

A developer tool over AnalysisService: generate, inspect and refresh a
user's travel analysis from a visit-history export. The library itself
never depends on this module.

Example:
    tripsight --user alice analyze visits.json
    tripsight --user alice show
    tripsight --user alice quota
"""

import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from tripsight import __version__
from tripsight.analysis.orchestrator import CancellationToken
from tripsight.analysis.scheduler import RefreshOutcome
from tripsight.analysis.service import AnalysisService, StaticIdentity, load_visits
from tripsight.config import APIKeyManager, ConfigError, PathsConfig, load_config
from tripsight.core.models import AnalysisRecord
from tripsight.errors import QuotaExceededError, TripSightError
from tripsight.utils.logging import setup_logging

logger = logging.getLogger(__name__)

console = Console()

PROGRESS_POLL_SECONDS = 0.2


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))


def print_success(text: str) -> None:
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[bold red]✗[/bold red] {text}")


def create_progress() -> Progress:
    """Create standard progress bar setup."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    )


def print_analysis_summary(record: AnalysisRecord) -> None:
    """Print the headline fields of an analysis."""
    table = Table(title="Travel Analysis")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Record", record.record_id or "-")
    table.add_row("Created", record.created_at.isoformat(timespec="seconds"))
    table.add_row("Next refresh due", record.next_refresh_due.isoformat(timespec="seconds"))
    table.add_row("Based on places", str(record.based_on_places))
    table.add_row("Analysis quality", f"{record.analysis_quality}/100")
    table.add_row("Confidence", f"{record.confidence_score}/100")

    archetype = record.comparative_analysis.archetype_analysis.primary_archetype
    if archetype:
        table.add_row("Primary archetype", archetype)
    destinations = record.predictive_analysis.recommended_destinations
    if destinations:
        table.add_row("Top recommendation", destinations[0].name)
    table.add_row("Key insights", str(len(record.analytical_insights.key_insights)))

    console.print(table)


def get_service(ctx: click.Context) -> AnalysisService:
    """Service for this invocation, built once from the global options."""
    service = ctx.obj.get("service")
    if service is None:
        config = load_config(ctx.obj.get("config_path"))
        if ctx.obj.get("data_dir"):
            config = config.model_copy(update={"paths": PathsConfig(data_dir=ctx.obj["data_dir"])})
        service = AnalysisService.from_config(StaticIdentity(ctx.obj["user"]), config=config)
        ctx.obj["service"] = service
        ctx.call_on_close(service.shutdown)
    return service


def fail(message: str) -> None:
    print_error(message)
    sys.exit(1)


# =============================================================================
# MAIN CLI GROUP
# =============================================================================


@click.group()
@click.version_option(__version__, prog_name="tripsight")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Custom config file")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Override the directory holding cached analyses",
)
@click.option("--user", envvar="TRIPSIGHT_USER", default="local", show_default=True, help="User id")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write log records to this file",
)
@click.pass_context
def cli(ctx, verbose, debug, config_path, data_dir, user, log_file):
    """
    TripSight - cached, quota-limited travel analysis.

    Generates a six-part analysis of a visit history with Gemini and keeps
    it fresh across an in-memory, on-device and remote cache.
    """
    if debug:
        setup_logging("DEBUG", log_file=log_file)
    elif verbose:
        setup_logging("INFO", log_file=log_file)
    else:
        setup_logging("WARNING", log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path
    ctx.obj["data_dir"] = data_dir
    ctx.obj["user"] = user


# =============================================================================
# ANALYZE COMMAND
# =============================================================================


@cli.command()
@click.argument("visits_json", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sequential", is_flag=True, help="Run the six sub-tasks one after another")
@click.option("--force", is_flag=True, help="Discard local caches before generating")
@click.pass_context
def analyze(ctx, visits_json, sequential, force):
    """
    Generate a new analysis from a visit history export.

    Example:
        tripsight analyze ./visits.json
    """
    service = get_service(ctx)
    print_header("🧭 TripSight Analysis")

    try:
        visits = load_visits(visits_json)
    except TripSightError as e:
        fail(str(e))

    session = service.session()
    if sequential:
        session.orchestrator.config = replace(session.orchestrator.config, concurrent=False)
    if force:
        service.get_analysis(force_refresh=True)

    console.print(f"Visits: [bold]{len(visits)}[/bold]")
    token = CancellationToken()

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(service.generate, visits, token)
        try:
            with create_progress() as progress:
                task = progress.add_task("Starting analysis...", total=100)
                while True:
                    done, _ = wait([future], timeout=PROGRESS_POLL_SECONDS)
                    state = service.get_progress()
                    if state is not None and state.stage:
                        progress.update(task, completed=state.progress, description=state.stage)
                    if done:
                        break
        except KeyboardInterrupt:
            token.cancel()
            print_warning("Cancelling analysis...")

        try:
            record = future.result()
        except QuotaExceededError as e:
            fail(str(e))
        except TripSightError as e:
            if ctx.obj.get("debug"):
                logger.exception("Analysis failure details")
            fail(f"Analysis failed: {e}")

    print_success(f"Analysis committed ({record.record_id})")
    print_analysis_summary(record)


# =============================================================================
# INSPECTION COMMANDS
# =============================================================================


@cli.command()
@click.option("--force", is_flag=True, help="Discard local caches before reading")
@click.option("--json", "as_json", is_flag=True, help="Print the full record as JSON")
@click.pass_context
def show(ctx, force, as_json):
    """Show the current analysis."""
    service = get_service(ctx)
    try:
        record = service.get_analysis(force_refresh=force)
    except TripSightError as e:
        fail(str(e))

    if record is None:
        print_warning("No current analysis. Run 'tripsight analyze VISITS_JSON' to create one.")
        return
    if record.is_generating:
        state = service.get_progress()
        print_warning(f"An analysis is being generated: {state.to_status_line()}")
        return

    if as_json:
        click.echo(json.dumps(record.to_document(), indent=2))
    else:
        print_analysis_summary(record)


@cli.command()
@click.pass_context
def quota(ctx):
    """Show today's remaining analysis budget."""
    service = get_service(ctx)
    info = service.check_limit()

    table = Table(title="Daily Analysis Quota")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Daily budget", str(service.config.quota.daily_budget))
    table.add_row("Remaining today", str(info.requests_remaining))
    table.add_row("Can analyze", "yes" if info.can_request else "no")
    if info.next_available_time is not None:
        table.add_row("Next available", info.next_available_time.isoformat(timespec="seconds"))
    console.print(table)


@cli.command()
@click.pass_context
def progress(ctx):
    """Show the state of the latest generation."""
    service = get_service(ctx)
    state = service.get_progress()
    console.print(state.to_status_line())


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================


@cli.command()
@click.argument("visits_json", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--wait", "wait_for_run", is_flag=True, help="Run a triggered refresh inline")
@click.pass_context
def refresh(ctx, visits_json, wait_for_run):
    """Run the automatic-refresh check once."""
    service = get_service(ctx)
    try:
        visits = load_visits(visits_json)
    except TripSightError as e:
        fail(str(e))

    outcome = service.maybe_refresh(visits, wait=wait_for_run)
    if outcome is RefreshOutcome.FAILED:
        fail("Automatic refresh failed; see the log for details")
    console.print(f"Refresh check: [bold]{outcome.value}[/bold]")


@cli.command("clear-cache")
@click.pass_context
def clear_cache(ctx):
    """Discard the on-device analysis caches (the remote history is kept)."""
    get_service(ctx).clear_local_caches()
    print_success("Local caches cleared")


# =============================================================================
# CONFIG GROUP
# =============================================================================


@cli.group()
def config():
    """Manage configuration settings."""
    pass


@config.command("set-key")
def set_key():
    """Store the Gemini API key in the system keyring."""
    api_key = click.prompt("Enter your Gemini API key", hide_input=True)
    try:
        APIKeyManager().store_key(api_key)
    except ConfigError as e:
        fail(str(e))
    print_success("API key stored in system keyring")


def main():
    """Entry point for the console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
