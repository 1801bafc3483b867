"""Thin CLI wrapper for monoship.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from monoship import __version__
from monoship.config import Settings, get_settings, print_settings_json
from monoship.errors import ConfigurationError

if TYPE_CHECKING:
    from monoship.catalog import ServiceCatalog
    from monoship.release.models import ServiceRelease
    from monoship.release.orchestrator import ReleaseOrchestrator, TransitionCallback

app = typer.Typer(
    name="monoship",
    help="Monorepo build and release orchestrator - build, package and publish services",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Exit code for configuration problems detected before any build starts
EXIT_CONFIGURATION = 2

STATE_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "building": "blue",
    "packaging": "cyan",
    "publishing": "magenta",
    "pending": "yellow",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"monoship version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through a Rich handler on stderr."""
    handler = RichHandler(
        console=err_console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level, format="%(message)s", handlers=[handler], force=True
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Monorepo build and release orchestrator."""
    configure_logging(get_settings().log_level)


def echo_json(data: object) -> None:
    """Write JSON to stdout without Rich markup or wrapping."""
    typer.echo(json.dumps(data, indent=2))


def _fail_configuration(error: ConfigurationError) -> typer.Exit:
    err_console.print(f"[red]Configuration error: {error}[/red]")
    for problem in error.problems:
        if problem != str(error):
            err_console.print(f"  - {problem}")
    return typer.Exit(code=EXIT_CONFIGURATION)


def _load_catalog(settings: Settings) -> "ServiceCatalog":
    from monoship.catalog import load_catalog

    catalog_path = settings.catalog_path
    if not catalog_path.is_absolute():
        catalog_path = settings.source_dir / catalog_path
    return load_catalog(catalog_path)


def _make_orchestrator(
    settings: Settings, on_transition: "TransitionCallback | None" = None
) -> "ReleaseOrchestrator":
    from monoship.builds.cache import CacheRegistry
    from monoship.builds.substrate import DockerSubstrate
    from monoship.release.orchestrator import ReleaseConfig, ReleaseOrchestrator
    from monoship.source import SourceTree

    source = SourceTree.open(settings.source_dir, revision=settings.revision)
    substrate = DockerSubstrate(
        work_dir=settings.work_dir,
        docker_bin=settings.docker_bin,
        build_timeout=settings.build_timeout,
        push_timeout=settings.push_timeout,
    )
    return ReleaseOrchestrator(
        config=ReleaseConfig.from_settings(settings),
        source=source,
        substrate=substrate,
        caches=CacheRegistry(namespace=settings.cache_namespace),
        on_transition=on_transition,
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
    else:
        password = "(set)" if settings.registry_password else "(not set)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Source directory:    {settings.source_dir}")
        console.print(f"  Catalog:             {settings.catalog_path}")
        console.print(f"  Work directory:      {settings.work_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print()
        console.print("[bold]Registry:[/bold]")
        console.print(f"  Endpoint:            {settings.registry or '(not set)'}")
        console.print(f"  Username:            {settings.registry_username}")
        console.print(f"  Password:            {password}")
        console.print()
        console.print("[bold]Release:[/bold]")
        console.print(f"  Platform:            {settings.platform}")
        console.print(f"  Revision:            {settings.revision or '(git HEAD)'}")
        console.print(f"  Date tag:            {settings.date_tag or '(today, UTC)'}")
        console.print(f"  Failure policy:      {settings.failure_policy}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print(f"  Cache namespace:     {settings.cache_namespace}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  Push timeout:        {settings.push_timeout}")


@app.command()
def services(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    yaml_output: Annotated[
        bool,
        typer.Option("--yaml", help="Output the validated catalog as YAML"),
    ] = False,
) -> None:
    """List services in the catalog."""
    from monoship.catalog import dump_catalog

    settings = get_settings()
    try:
        catalog = _load_catalog(settings)
    except ConfigurationError as e:
        raise _fail_configuration(e) from None

    if json_output:
        output = [s.model_dump(mode="json", exclude_none=True) for s in catalog.services]
        echo_json(output)
        return

    if yaml_output:
        typer.echo(dump_catalog(catalog), nl=False)
        return

    if not catalog.services:
        console.print("[yellow]No services in catalog[/yellow]")
        return

    console.print(f"[bold]Found {len(catalog.services)} service(s):[/bold]")
    for s in catalog.services:
        console.print(f"  [cyan]{s.name}[/cyan] ({s.kind.value})")
        console.print(f"    Path: {s.path}")
        console.print(f"    Image: {s.image}")


@app.command()
def tags(
    revision: Annotated[
        str | None,
        typer.Option("--revision", "-r", help="Source revision (default: git HEAD)"),
    ] = None,
    date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Release date YYYYMMDD (default: today)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the tags a release would be published under."""
    from monoship.source import resolve_git_revision
    from monoship.tags import compute_tags, today_tag

    settings = get_settings()
    if revision is None:
        revision = settings.revision
    if revision is None:
        revision = resolve_git_revision(settings.source_dir)

    try:
        release_tags = compute_tags(revision, date or settings.date_tag or today_tag())
    except ConfigurationError as e:
        raise _fail_configuration(e) from None

    if json_output:
        echo_json({"versioned": release_tags.versioned, "floating": release_tags.floating})
    else:
        for tag in release_tags.as_list():
            console.print(tag)


@app.command()
def build(
    name: Annotated[str, typer.Argument(help="Service name")],
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Directory to extract the artifact into"),
    ] = None,
) -> None:
    """Build one service without publishing it."""
    from monoship.builds.models import Artifact
    from monoship.errors import BuildExecutionError

    settings = get_settings()
    try:
        catalog = _load_catalog(settings)
        descriptor = catalog.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Unknown service: {name}")
        orchestrator = _make_orchestrator(settings)
    except ConfigurationError as e:
        raise _fail_configuration(e) from None

    console.print(f"[blue]Building {name}...[/blue]")
    try:
        output = asyncio.run(orchestrator.build_service(descriptor, output_dir=out))
    except ConfigurationError as e:
        raise _fail_configuration(e) from None
    except BuildExecutionError as e:
        console.print(f"[red]Build failed ({e.code}): {e}[/red]")
        if e.output:
            console.print(e.output, markup=False)
        if e.log_path:
            console.print(f"Log: {e.log_path}")
        raise typer.Exit(code=1) from None

    if isinstance(output, Artifact):
        console.print(f"[green]Built {output.kind.value}: {output.path}[/green]")
    else:
        console.print(f"[green]Built image: {output.reference}[/green]")


def _print_transition(release: "ServiceRelease") -> None:
    state = release.state.value
    color = STATE_COLORS.get(state, "white")
    console.print(f"  [{color}]{release.name}: {state}[/{color}]")


@app.command()
def release(
    service: Annotated[
        list[str] | None,
        typer.Option("--service", "-s", help="Service to release (can be repeated)"),
    ] = None,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Cancel remaining services on first failure"),
    ] = False,
    record: Annotated[
        bool,
        typer.Option("--record/--no-record", help="Record results in the history DB"),
    ] = True,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build, package and publish services.

    Every service of the catalog is released unless --service narrows the
    selection. Failures are isolated per service by default; use
    --fail-fast to cancel siblings after the first failure.
    """
    settings = get_settings()
    if fail_fast:
        settings = settings.model_copy(update={"failure_policy": "fail-fast"})

    try:
        catalog = _load_catalog(settings)
        if service:
            try:
                catalog = catalog.select(service)
            except KeyError as e:
                raise ConfigurationError(f"Unknown service: {e.args[0]}") from None
        orchestrator = _make_orchestrator(
            settings, on_transition=None if json_output else _print_transition
        )
        release_tags = orchestrator.tags
        if not json_output:
            console.print(
                f"[blue]Releasing {len(catalog.services)} service(s) "
                f"as {', '.join(release_tags.as_list())}...[/blue]"
            )
        report = asyncio.run(orchestrator.run(catalog, tags=release_tags))
    except ConfigurationError as e:
        raise _fail_configuration(e) from None

    if record:
        from monoship.db import open_history, session_scope
        from monoship.release.history import record_report

        with session_scope(open_history(settings.db_url)) as session:
            record_report(session, report)

    if json_output:
        echo_json(report.to_dict())
    else:
        console.print()
        console.print("[bold]Release Results:[/bold]")
        console.print(f"  Run: {report.run_id}")
        console.print(f"  Total services: {len(report.results)}")
        console.print(f"  [green]Succeeded: {len(report.succeeded)}[/green]")
        if report.failed:
            console.print(f"  [red]Failed: {len(report.failed)}[/red]")

        console.print()
        for r in report.results:
            if r.succeeded:
                console.print(f"  [green]✓ {r.service}[/green]")
                for ref in r.references:
                    console.print(f"      {ref.reference}")
            else:
                stage = r.failed_stage.value if r.failed_stage else "unknown"
                console.print(f"  [red]✗ {r.service}[/red] ({r.error_kind} while {stage})")
                if r.error_message:
                    console.print(f"      {r.error_message}", markup=False)
                if r.log_path:
                    console.print(f"      Log: {r.log_path}")

    if report.exit_code:
        raise typer.Exit(code=report.exit_code)


@app.command()
def history(
    service: Annotated[
        str | None,
        typer.Option("--service", "-s", help="Filter by service name"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", help="Filter by status (succeeded/failed)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 50,
    last: Annotated[
        bool,
        typer.Option("--last", help="Only the last successful release of --service"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recorded releases."""
    from monoship.db import open_history
    from monoship.release.history import last_successful_release, list_releases
    from monoship.types import ReleaseState

    if last and not service:
        console.print("[red]--last requires --service[/red]")
        raise typer.Exit(code=1)

    status_filter: ReleaseState | None = None
    if status:
        try:
            status_filter = ReleaseState(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: succeeded, failed")
            raise typer.Exit(code=1) from None

    factory = open_history(get_settings().db_url)

    with factory() as session:
        if last:
            latest = last_successful_release(session, service)
            records = [latest] if latest is not None else []
        else:
            records = list_releases(
                session, service=service, status=status_filter, limit=limit
            )

        if not records:
            if json_output:
                typer.echo("[]")
            else:
                console.print("[yellow]No release records found[/yellow]")
            return

        if json_output:
            output = [
                {
                    "id": r.id,
                    "run_id": r.run_id,
                    "service": r.service,
                    "repository": r.repository,
                    "status": r.status,
                    "revision": r.revision,
                    "versioned_tag": r.versioned_tag,
                    "references": r.references or [],
                    "error_type": r.error_type,
                    "error_message": r.error_message,
                    "failed_stage": r.failed_stage,
                    "log_path": r.log_path,
                    "started_at": r.started_at.isoformat() if r.started_at else None,
                    "finished_at": r.finished_at.isoformat() if r.finished_at else None,
                }
                for r in records
            ]
            echo_json(output)
        else:
            console.print(f"[bold]Found {len(records)} release(s):[/bold]")
            console.print()
            for r in records:
                color = STATE_COLORS.get(r.status, "white")
                console.print(f"  [{color}]{r.service} @ {r.versioned_tag}[/{color}]")
                console.print(f"    Run: {r.run_id}")
                console.print(f"    Status: {r.status}")
                for ref in r.references or []:
                    console.print(f"    Pushed: {ref}")
                if r.error_message:
                    console.print(f"    Error ({r.error_type}): {r.error_message}")
                console.print()


if __name__ == "__main__":
    app()
