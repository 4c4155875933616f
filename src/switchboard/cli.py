"""CLI entry point for Switchboard."""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from switchboard import __version__
from switchboard.config import AGGREGATION_STRATEGIES, Settings, load_settings
from switchboard.delegation import DelegationEngine, HandlerRegistry, RequestContext, Response
from switchboard.handlers import register_builtin_handlers
from switchboard.logger import configure_logging

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="switchboard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to a config.toml (default: ~/.switchboard/config.toml)",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None) -> None:
    """Switchboard: route queries to the handlers best suited to answer them."""
    try:
        settings = load_settings(config_path)
    except ValueError as exc:
        raise click.UsageError(f"Invalid configuration: {exc}") from exc
    configure_logging(settings.log_level, settings.log_format)
    ctx.obj = settings


def _build_engine(settings: Settings) -> DelegationEngine:
    registry = register_builtin_handlers(HandlerRegistry())
    return DelegationEngine.from_settings(registry, settings)


@main.command()
@click.pass_obj
def handlers(settings: Settings) -> None:
    """List registered handlers and their capabilities."""
    engine = _build_engine(settings)

    table = Table(title="Handlers")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Capabilities")
    table.add_column("Team", style="yellow")
    table.add_column("Description", max_width=50)

    for descriptor in engine.registry.descriptors():
        table.add_row(
            descriptor.id,
            descriptor.name,
            ", ".join(descriptor.capabilities),
            descriptor.team or "",
            descriptor.description,
        )

    console.print(table)


@main.command()
@click.argument("query")
@click.option("--parallel", is_flag=True, help="Fan out to the top candidates")
@click.option("--timeout", "timeout_ms", type=float, default=None, help="Deadline in ms")
@click.option(
    "--strategy",
    type=click.Choice(AGGREGATION_STRATEGIES),
    default=None,
    help="Aggregation strategy for parallel routing",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw response as JSON")
@click.pass_obj
def route(
    settings: Settings,
    query: str,
    parallel: bool,
    timeout_ms: float | None,
    strategy: str | None,
    as_json: bool,
) -> None:
    """Route QUERY to the best matching handler(s)."""
    overrides: dict[str, object] = {}
    if parallel:
        overrides["enable_parallel_routing"] = True
    if strategy:
        overrides["aggregation_strategy"] = strategy
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    engine = _build_engine(settings)
    context = RequestContext(deadline_ms=timeout_ms)
    response = asyncio.run(engine.route(query, context))
    _print_response(response, as_json)


@main.command()
@click.argument("handler_id")
@click.argument("query")
@click.option("--timeout", "timeout_ms", type=float, default=None, help="Deadline in ms")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response as JSON")
@click.pass_obj
def direct(
    settings: Settings, handler_id: str, query: str, timeout_ms: float | None, as_json: bool
) -> None:
    """Send QUERY straight to HANDLER_ID, skipping the routing decision."""
    engine = _build_engine(settings)
    context = RequestContext(deadline_ms=timeout_ms)
    response = asyncio.run(engine.route_direct(query, handler_id, context))
    _print_response(response, as_json)


@main.command()
@click.pass_obj
def config(settings: Settings) -> None:
    """Show the effective configuration."""
    table = Table(title=f"Settings ({settings.config_path})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.to_dict().items():
        table.add_row(key, "" if value is None else str(value))

    console.print(table)


def _print_response(response: Response, as_json: bool) -> None:
    """Print a response; exit with status 1 when it is an error."""
    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2, default=str))
        if response.is_error:
            raise SystemExit(1)
        return

    error = response.error
    if error is not None:
        console.print(f"[red]Error [{error.code}]:[/red] {escape(error.message)}")
        if error.suggestion:
            console.print(f"[dim]Suggestion: {escape(error.suggestion)}[/dim]")
        raise SystemExit(1)

    answer = response.answer
    console.print(answer.text, markup=False, highlight=False)

    chain = response.metadata.get("delegation_chain")
    if chain:
        console.print(f"\n[dim]Chain: {' -> '.join(chain)}[/dim]")
    if answer.confidence is not None:
        console.print(f"[dim]Confidence: {answer.confidence:.0%}[/dim]")
    if answer.partial:
        console.print("[yellow]Partial answer: some handlers failed[/yellow]")
    for source in answer.sources:
        label = f"{source.name} ({source.url})" if source.url else source.name
        console.print(f"[dim]Source: {label}[/dim]")
