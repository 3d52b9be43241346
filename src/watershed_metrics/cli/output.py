"""
Output formatting module for the watershed-metrics CLI.

This module handles formatted output for the CLI, supporting both:
- Human-readable text output with Rich formatting
- Machine-readable JSON output for automation
"""

import json
import logging
import sys
from dataclasses import asdict, dataclass, field

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..core.checkpoint import PipelineState
from ..core.models import VariableSpec

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Result from a pipeline run, as reported by the CLI."""

    status: str  # "success", "partial_success", "failure"
    exit_code: int  # 0, 1, or 2
    sites: int
    resolved: int
    unresolved: int
    missing_metrics: int
    output_path: str | None  # Using str for JSON serialization
    resumed_from: str | None = None
    invalid_variables: list[str] = field(default_factory=list)
    suggestions: dict[str, list[str]] = field(default_factory=dict)
    error: str | None = None

    def __post_init__(self) -> None:
        """Validate summary fields."""
        valid_statuses = {"success", "partial_success", "failure"}
        if self.status not in valid_statuses:
            raise ValueError(f"status must be one of {valid_statuses}, got '{self.status}'")

        valid_exit_codes = {0, 1, 2}
        if self.exit_code not in valid_exit_codes:
            raise ValueError(f"exit_code must be one of {valid_exit_codes}, got {self.exit_code}")


class OutputFormatter:
    """Handles CLI output formatting for text and JSON modes."""

    def __init__(self, output_format: str = "text", quiet: bool = False) -> None:
        """
        Initialize the output formatter.

        Args:
            output_format: Output format ("text" or "json")
            quiet: Suppress non-essential text output

        Raises:
            ValueError: If output_format is not "text" or "json"
        """
        if output_format not in ("text", "json"):
            raise ValueError(f"output_format must be 'text' or 'json', got '{output_format}'")

        self.output_format = output_format
        self.quiet = quiet
        self.console = Console(file=sys.stdout)

    def print_summary(self, summary: RunSummary) -> None:
        """Print a run summary in text or JSON format."""
        if self.output_format == "json":
            print(json.dumps(asdict(summary), indent=2))
            return

        if summary.status == "success":
            status_text = Text("Complete!", style="bold green")
            status_icon = "✓"
        elif summary.status == "partial_success":
            status_text = Text("Partially Complete", style="bold yellow")
            status_icon = "⚠"
        else:
            status_text = Text("Failed", style="bold red")
            status_icon = "✗"

        self.console.print()
        self.console.print(status_icon, status_text)
        self.console.print()

        if summary.error:
            self.console.print(f"  [red]Error:[/red] {summary.error}")

        if summary.invalid_variables:
            self.print_invalid_variables(summary.invalid_variables, summary.suggestions)
            return

        if summary.resumed_from:
            self.console.print(f"  Resumed at stage: [cyan]{summary.resumed_from}[/cyan]")

        self.console.print(
            f"  Sites: [bold]{summary.sites}[/bold] "
            f"([bold]{summary.resolved}[/bold] resolved, [bold]{summary.unresolved}[/bold] unresolved)"
        )
        if summary.missing_metrics:
            self.console.print(f"  [yellow]{summary.missing_metrics} resolved site(s) have no metrics[/yellow]")
        if summary.output_path:
            self.console.print(f"  Output: {summary.output_path}")
        self.console.print()

    def print_invalid_variables(self, invalid: list[str], suggestions: dict[str, list[str]]) -> None:
        """List invalid variable names with close catalog matches."""
        self.console.print("  [red]Variables not found in the StreamCat catalog:[/red]")
        for name in invalid:
            hint = suggestions.get(name)
            if hint:
                self.console.print(f"    - {name}  [yellow](did you mean: {', '.join(hint)}?)[/yellow]")
            else:
                self.console.print(f"    - {name}")
        self.console.print()

    def print_variables(self, specs: list[VariableSpec]) -> None:
        """Print catalog entries as a table or JSON list."""
        if self.output_format == "json":
            print(json.dumps([{"name": s.name, "full_name": s.full_name} for s in specs], indent=2))
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Variable", style="cyan")
        table.add_column("Full name", style="white")
        for spec in specs:
            table.add_row(spec.name, spec.full_name)

        self.console.print(table)
        self.console.print(f"\n[cyan]Total:[/cyan] {len(specs)} variable(s)\n")

    def print_status(self, state: PipelineState | None, link_stats: dict) -> None:
        """Print checkpoint state and link table counts."""
        if self.output_format == "json":
            output = {"state": state.model_dump(mode="json") if state else None, "links": link_stats}
            print(json.dumps(output, indent=2))
            return

        if state is None:
            self.console.print("[yellow]No checkpoint found[/yellow]")
        else:
            style = {"done": "green", "failed": "red"}.get(state.state.value, "cyan")
            self.console.print(f"State: [{style}]{state.state.value}[/{style}]")
            self.console.print(f"Completed stages: {', '.join(s.value for s in state.completed) or 'none'}")
            if state.invalid_variables:
                self.console.print(f"Invalid variables: {', '.join(state.invalid_variables)}")
            if state.error:
                self.console.print(f"[red]Error:[/red] {state.error}")
            self.console.print(f"Updated: {state.updated_at}")

        self.console.print(
            f"Link table: {link_stats['total']} site(s), "
            f"{link_stats['resolved']} resolved, {link_stats['unresolved']} unresolved"
        )
