"""
Main Typer CLI application for watershed-metrics.

This module provides the command-line interface with four subcommands:
- run: Validate, resolve, fetch and compose for the sites in a config
- validate: Check the requested variables against the StreamCat catalog
- variables: List or search the StreamCat catalog
- status: Show checkpoint state for a config's work directory
"""

import difflib
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from watershed_metrics.config import load_config
from watershed_metrics.config.defaults import DEFAULT_STREAMCAT_URL, DEFAULT_TIMEOUT, LINKS_DB_NAME
from watershed_metrics.core import (
    CatalogUnavailable,
    InvalidVariableSet,
    LinkStore,
    Pipeline,
    PipelineCancelled,
    PipelineFailed,
    ResolutionCountMismatch,
    VariableCatalog,
    load_sites,
)
from watershed_metrics.core.checkpoint import CheckpointStore
from watershed_metrics.remote import StreamCatClient

from .output import OutputFormatter, RunSummary

app = typer.Typer(
    name="watershed-metrics",
    help="Enrich sites with StreamCat watershed metrics",
    no_args_is_help=True,
    add_completion=False,
)

console = Console(stderr=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool, quiet: bool) -> None:
    """
    Configure logging level based on verbosity flags.

    Args:
        verbose: Enable debug logging
        quiet: Suppress all logging except errors
    """
    if quiet:
        logging.getLogger().setLevel(logging.ERROR)
    elif verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)


def _resolve_output_format(output_format: str) -> str:
    if output_format not in ["text", "json"]:
        console.print(f"[red]Error:[/red] Invalid output format '{output_format}'. Must be 'text' or 'json'.")
        raise typer.Exit(2)

    # Auto-detect format if output is being piped
    if output_format == "text" and not sys.stdout.isatty():
        logger.debug("Auto-detected non-TTY output, switching to JSON format")
        return "json"
    return output_format


def _suggest(catalog: VariableCatalog, invalid: list[str]) -> dict[str, list[str]]:
    """Close catalog matches for each invalid name."""
    names = [spec.name.lower() for spec in catalog.list_variables()]
    return {name: difflib.get_close_matches(name.lower(), names, n=3, cutoff=0.75) for name in invalid}


@app.command("run")
def run_command(
    config_file: Annotated[
        Path,
        typer.Argument(
            help="Path to pipeline configuration file (pipeline.toml)",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", "-w", help="Override work directory from config"),
    ] = None,
    force_resolve: Annotated[
        bool,
        typer.Option("--force-resolve", help="Re-resolve every site, ignoring stored links"),
    ] = False,
    output_format: Annotated[
        str,
        typer.Option("--output-format", help="Output format: text or json"),
    ] = "text",
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed progress"),
    ] = False,
) -> None:
    """
    Run the enrichment pipeline for the sites in CONFIG_FILE.

    \b
    RESUME:
        Each stage is checkpointed in the work directory. Rerunning the same
        config resumes at the first incomplete stage; already-resolved sites
        are never looked up again unless --force-resolve is given.

    \b
    CONFIG FILE FORMAT (pipeline.toml):
        [settings]
        work_dir = "./work"
        scope = "watershed"          # or "catchment"

        [inputs]
        sites = "sites.csv"
        variables = ["pctdecid2019", "pctconif2019"]

        [derived.pctforest2019ws]
        op = "sum"
        columns = ["PCTDECID2019WS", "PCTCONIF2019WS"]

    \b
    EXAMPLES:
        watershed-metrics run pipeline.toml
        watershed-metrics run pipeline.toml --force-resolve
        watershed-metrics run pipeline.toml --output-format json
    """
    _setup_logging(verbose=verbose, quiet=quiet)
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format, quiet=quiet)

    try:
        config = load_config(config_file)
        if work_dir is not None:
            config.settings.work_dir = str(work_dir)
            logger.info(f"Work directory overridden to: {work_dir}")

        sites, crs = load_sites(
            Path(config.inputs.sites),
            id_column=config.inputs.id_column,
            lon_column=config.inputs.lon_column,
            lat_column=config.inputs.lat_column,
            crs=config.settings.crs,
        )
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from None

    # SIGTERM stops the run at the next batch boundary
    cancel_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())
    pipeline = Pipeline(config, cancel_event=cancel_event, show_progress=not quiet and output_format == "text")

    try:
        result = pipeline.run(sites, crs=crs, force_resolve=force_resolve)
    except InvalidVariableSet as e:
        summary = RunSummary(
            status="failure",
            exit_code=2,
            sites=len(sites),
            resolved=0,
            unresolved=0,
            missing_metrics=0,
            output_path=None,
            invalid_variables=e.invalid,
            suggestions=_suggest(pipeline.catalog, e.invalid),
        )
        formatter.print_summary(summary)
        raise typer.Exit(2) from None
    except (CatalogUnavailable, ResolutionCountMismatch, PipelineFailed) as e:
        stats = pipeline.store.stats()
        summary = RunSummary(
            status="failure",
            exit_code=2,
            sites=len(sites),
            resolved=stats["resolved"],
            unresolved=stats["unresolved"],
            missing_metrics=0,
            output_path=None,
            error=str(e),
        )
        formatter.print_summary(summary)
        raise typer.Exit(2) from None
    except KeyboardInterrupt:
        logger.warning("Process interrupted by user")
        console.print("\n[yellow]Interrupted by user; completed stages are checkpointed[/yellow]")
        raise typer.Exit(130) from None
    except PipelineCancelled as e:
        console.print(f"\n[yellow]Cancelled:[/yellow] {e}")
        raise typer.Exit(130) from None
    finally:
        pipeline.close()

    exit_code = 0 if result.complete else 1
    summary = RunSummary(
        status="success" if exit_code == 0 else "partial_success",
        exit_code=exit_code,
        sites=len(sites),
        resolved=result.resolved,
        unresolved=result.unresolved,
        missing_metrics=result.missing_metrics,
        output_path=str(result.output_path) if result.output_path else None,
        resumed_from=result.resumed_from.value if result.resumed_from else None,
    )
    formatter.print_summary(summary)
    raise typer.Exit(exit_code)


@app.command("validate")
def validate_command(
    config_file: Annotated[
        Path,
        typer.Argument(help="Path to pipeline configuration file", exists=True, dir_okay=False, readable=True),
    ],
    output_format: Annotated[
        str,
        typer.Option("--output-format", help="Output format: text or json"),
    ] = "text",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging"),
    ] = False,
) -> None:
    """
    Check the config's requested variables against the StreamCat catalog.

    Exits 0 when every variable is known, 1 when some are not (they are listed
    with close matches), 2 when the config or catalog cannot be loaded.
    """
    _setup_logging(verbose=verbose, quiet=False)
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format)

    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from None

    with StreamCatClient(
        config.services.streamcat_url, timeout=config.settings.timeout, api_key=config.services.api_key
    ) as client:
        catalog = VariableCatalog(client)
        try:
            invalid = catalog.validate(config.inputs.variables)
            suggestions = _suggest(catalog, invalid) if invalid else {}
        except CatalogUnavailable as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(2) from None

    if output_format == "json":
        print(json.dumps({"invalid": invalid, "suggestions": suggestions}, indent=2))
    elif invalid:
        formatter.print_invalid_variables(invalid, suggestions)
    else:
        formatter.console.print(f"[green]✓[/green] All {len(config.inputs.variables)} variable(s) are valid")

    raise typer.Exit(1 if invalid else 0)


@app.command("variables")
def variables_command(
    search: Annotated[
        str | None,
        typer.Option("--search", "-s", help="Only show variables whose name or description contains TEXT"),
    ] = None,
    streamcat_url: Annotated[
        str,
        typer.Option("--streamcat-url", help="StreamCat API root"),
    ] = DEFAULT_STREAMCAT_URL,
    output_format: Annotated[
        str,
        typer.Option("--output-format", help="Output format: text or json"),
    ] = "text",
) -> None:
    """
    List the StreamCat variable catalog.

    \b
    EXAMPLES:
        watershed-metrics variables --search decid
    """
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format)

    with StreamCatClient(streamcat_url, timeout=DEFAULT_TIMEOUT) as client:
        catalog = VariableCatalog(client)
        try:
            specs = catalog.search(search) if search else sorted(catalog.list_variables(), key=lambda s: s.name)
        except CatalogUnavailable as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(2) from None

    formatter.print_variables(specs)


@app.command("status")
def status_command(
    config_file: Annotated[
        Path,
        typer.Argument(help="Path to pipeline configuration file", exists=True, dir_okay=False, readable=True),
    ],
    output_format: Annotated[
        str,
        typer.Option("--output-format", help="Output format: text or json"),
    ] = "text",
) -> None:
    """Show the checkpoint state and link table counts for a config."""
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format)

    try:
        config = load_config(config_file)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from None

    checkpoints = CheckpointStore(Path(config.settings.work_dir))
    store = LinkStore(checkpoints.path(LINKS_DB_NAME))
    formatter.print_status(checkpoints.load_state(), store.stats())


if __name__ == "__main__":
    app()
