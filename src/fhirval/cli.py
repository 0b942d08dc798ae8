"""CLI interface for fhirval using Typer framework."""

import json as jsonlib
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from fhirval import __description__, __version__
from fhirval.config import FhirvalConfig, ValidationMode, load_config
from fhirval.errors import FhirvalError
from fhirval.models.findings import Severity, ValidationReport
from fhirval.models.rules import load_aux_config, load_rule_set
from fhirval.schema.expansion import ElementSchema, SchemaExpansionEngine
from fhirval.schema.provider import PackagedSchemaProvider
from fhirval.validation.pipeline import ValidationPipeline

app = typer.Typer(
    name="fhirval",
    help=__description__,
    add_completion=False,
    rich_markup_mode="rich"
)

console = Console()

_LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_SEVERITY_COLORS = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "blue",
}


def version_callback(value: bool) -> None:
    """Show version information and exit."""
    if value:
        console.print(f"fhirval version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, help="Show version and exit")
    ] = False,
) -> None:
    """fhirval - Validation pipeline for FHIR-style clinical bundles."""


def _setup_logging(config: FhirvalConfig) -> None:
    level = _LOG_LEVELS.get(config.logging.level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config_or_exit(config_path: Path | None) -> FhirvalConfig:
    try:
        return load_config(config_path)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _print_report_table(report: ValidationReport) -> None:
    summary = report.summary
    status_color = "red" if summary.error_count else "yellow" if summary.warning_count else "green"
    console.print(
        f"[{status_color}]{summary.error_count} error(s), {summary.warning_count} warning(s), "
        f"{summary.info_count} info[/{status_color}]"
    )
    console.print(f"[dim]Processed in {report.processing_time_ms:.1f} ms[/dim]")

    if report.findings:
        _print_findings_table(report)
    else:
        console.print("\n[green]No issues found![/green]")

    if report.suggestions:
        _print_suggestions_table(report)


def _print_findings_table(report: ValidationReport) -> None:
    table = Table()
    table.add_column("Severity", style="white")
    table.add_column("Source", style="cyan")
    table.add_column("Code", style="cyan")
    table.add_column("Message", style="white")
    table.add_column("Location", style="dim")

    for finding in report.findings:
        color = _SEVERITY_COLORS.get(finding.severity, "white")
        location = finding.pointer or finding.path or ""
        table.add_row(
            f"[{color}]{finding.severity.value.upper()}[/{color}]",
            finding.source.value,
            finding.code,
            finding.message,
            location,
        )
    console.print(table)


def _print_suggestions_table(report: ValidationReport) -> None:
    console.print("\n[blue]Suggested rules:[/blue]")
    suggestions = Table()
    suggestions.add_column("Type", style="cyan")
    suggestions.add_column("Path", style="white")
    suggestions.add_column("Confidence", style="white")
    suggestions.add_column("Reason", style="dim")
    for suggestion in report.suggestions:
        suggestions.add_row(
            suggestion["ruleType"], suggestion["path"], suggestion["confidence"], suggestion["reason"],
        )
    console.print(suggestions)


@app.command()
def validate(
    file: Annotated[
        Path,
        typer.Argument(help="Bundle JSON document to validate")
    ],
    rules: Annotated[
        Path | None,
        typer.Option("--rules", "-r", help="Rule-set JSON file")
    ] = None,
    aux: Annotated[
        Path | None,
        typer.Option("--aux", "-a", help="Auxiliary configuration JSON file (CodeMaster)")
    ] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="Validation mode: standard, full, debug (default: from config)")
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: table, json (default: table)")
    ] = "table",
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration file path (default: search for .fhirval.json)")
    ] = None,
) -> None:
    """Validate a bundle and print the unified report."""
    valid_formats = ["table", "json"]
    valid_modes = [m.value for m in ValidationMode]

    if format not in valid_formats:
        console.print(f"[red]Error:[/red] Invalid format '{format}'. Must be one of: {', '.join(valid_formats)}")
        raise typer.Exit(1)

    if mode is not None and mode not in valid_modes:
        console.print(f"[red]Error:[/red] Invalid mode '{mode}'. Must be one of: {', '.join(valid_modes)}")
        raise typer.Exit(1)

    fhirval_config = _load_config_or_exit(config)
    _setup_logging(fhirval_config)

    try:
        raw = file.read_bytes()
        rule_set = load_rule_set(rules) if rules else None
        aux_config = load_aux_config(aux) if aux else None
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    report = ValidationPipeline(fhirval_config).validate(raw, rule_set, aux_config, mode)

    if format == "json":
        console.print_json(jsonlib.dumps(report.to_dict()))
    else:
        _print_report_table(report)

    raise typer.Exit(report.exit_code)


def _add_schema_node(tree: Tree, node: ElementSchema) -> None:
    cardinality = f"{node.min}..{node.max}"
    label = f"[cyan]{node.element_name}[/cyan] {cardinality} [dim]{node.type}[/dim]"
    if node.is_choice:
        label += f" [dim]({' | '.join(node.choice_types)})[/dim]"
    if node.value_set:
        label += f" [magenta]{node.value_set}[/magenta]"
    branch = tree.add(label)
    for child in node.children:
        _add_schema_node(branch, child)


@app.command()
def schema(
    resource_type: Annotated[
        str,
        typer.Argument(help="Resource type to expand, e.g. Patient")
    ],
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", "-d", help="Maximum expansion depth (default: from config)")
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: tree, json (default: tree)")
    ] = "tree",
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration file path (default: search for .fhirval.json)")
    ] = None,
) -> None:
    """Print the expanded schema tree for a resource type."""
    fhirval_config = _load_config_or_exit(config)
    _setup_logging(fhirval_config)

    try:
        engine = SchemaExpansionEngine(
            PackagedSchemaProvider(fhirval_config.schema_.definitions_path),
            max_depth=max_depth or fhirval_config.schema_.max_depth,
            fhir_version=fhirval_config.pipeline.fhir_version,
        )
        root = engine.get_schema(resource_type)
    except (FhirvalError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if format == "json":
        console.print_json(jsonlib.dumps(root.to_dict()))
        return

    tree = Tree(f"[bold]{root.path}[/bold] [dim](depth {root.depth()})[/dim]")
    for child in root.children:
        _add_schema_node(tree, child)
    console.print(tree)


if __name__ == "__main__":
    app()
