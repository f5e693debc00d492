"""Typer-based CLI for docdrift."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import toml
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__, config, config_manager
from .drift_detector import DriftDetector, detect_drift
from .errors import DocDriftError, SyncCancelled
from .knowledge_graph import KnowledgeGraph
from .models import SyncResult
from .orchestrator import SyncMode, SyncOptions, SyncOrchestrator
from .parser import default_registry
from .priority import configured_weights

console = Console()

app = typer.Typer(
    help="docdrift: keep documentation in sync with the code it describes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

graph_app = typer.Typer(help="Inspect and maintain the knowledge graph.", no_args_is_help=True)
app.add_typer(graph_app, name="graph")

config_app = typer.Typer(help="Show and edit config.toml.", no_args_is_help=True)
app.add_typer(config_app, name="config")

_REC_COLORS = {"critical": "red", "high": "yellow", "medium": "cyan", "low": "green"}
_NOTE_COLORS = {"critical": "red", "warning": "yellow", "info": "blue"}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"docdrift v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """docdrift: detect and prioritise drift between code and documentation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _open_graph(project_path: Path) -> KnowledgeGraph:
    try:
        return KnowledgeGraph.for_project(project_path).open()
    except DocDriftError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)


# ===================================================================
# sync
# ===================================================================

def _print_result(result: SyncResult, show_previews: bool) -> None:
    stats = result.stats
    console.print(
        Panel.fit(
            f"Mode: [bold]{result.mode}[/bold]   Snapshot: {result.snapshot_id}\n"
            f"Files analyzed: {stats.files_analyzed}   Drifts: {stats.drifts_detected}   "
            f"Breaking: {stats.breaking_changes}\n"
            f"Applied: {stats.changes_applied}   Pending: {stats.changes_pending}   "
            f"Estimated update time: {stats.estimated_update_time}",
            title="Sync Summary",
        )
    )

    if result.drift_detections:
        table = Table(title="Drift by priority", show_header=True)
        table.add_column("File")
        table.add_column("Severity")
        table.add_column("Score", justify="right")
        table.add_column("Action")
        for detection in result.drift_detections:
            score = detection.priority_score
            if score is None:
                table.add_row(detection.file_path, detection.severity, "-", "")
                continue
            color = _REC_COLORS.get(score.recommendation, "white")
            table.add_row(
                detection.file_path,
                detection.severity,
                f"[{color}]{score.overall:.2f}[/{color}]",
                score.suggested_action,
            )
        console.print(table)

    for change in result.applied_changes:
        console.print(f"[green]✓[/green] {change.doc_file} § {change.section} ({change.confidence:.0%})")
    for pending in result.pending_changes:
        console.print(f"[yellow]•[/yellow] {pending.doc_file} § {pending.section}: {pending.reason}")
        if show_previews and pending.preview:
            console.print(pending.preview, markup=False, highlight=False)

    for rec in result.recommendations:
        color = _NOTE_COLORS.get(rec.type, "white")
        console.print(f"[{color}]{rec.title}[/{color}]: {rec.description}")
    if result.next_steps:
        console.print("\n[bold]Next steps[/bold]")
        for step in result.next_steps:
            console.print(f"  [{step.priority}] {step.action}: {step.description}")


@app.command("sync")
def sync(
    project_path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
    docs: Path = typer.Option(Path("docs"), "--docs", "-d", help="Documentation directory (relative to the project)."),
    mode: Optional[SyncMode] = typer.Option(
        None, "--mode", "-m", help="detect, preview, apply or auto. Defaults to [sync] mode in config.toml.",
    ),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", min=0.0, max=1.0, help="Minimum confidence for apply mode.",
    ),
    no_snapshot: bool = typer.Option(False, "--no-snapshot", help="Do not save a snapshot in read-only modes."),
    workers: int = typer.Option(1, "--workers", "-w", min=1, max=32, help="Parallel extraction workers."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
):
    """Detect drift since the last snapshot and optionally update the docs."""
    project_path = project_path.resolve()
    mode = mode or SyncMode(config.SYNC_MODE)
    options = SyncOptions(
        mode=mode,
        auto_apply_threshold=config.AUTO_APPLY_THRESHOLD if threshold is None else threshold,
        create_snapshot=not no_snapshot,
        workers=workers,
    )
    graph = _open_graph(project_path)
    try:
        orchestrator = SyncOrchestrator(graph, detector=DriftDetector(weights=configured_weights()))
        result = orchestrator.run(project_path, docs, options)
    except SyncCancelled:
        console.print("[yellow]Sync cancelled.[/yellow]")
        raise typer.Exit(code=130)
    except DocDriftError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    finally:
        graph.close()

    if as_json:
        typer.echo(json.dumps(asdict(result), indent=2))
        return
    _print_result(result, show_previews=mode is SyncMode.PREVIEW)


# ===================================================================
# extract / diff
# ===================================================================

@app.command("extract")
def extract(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source file to analyse."),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Override language detection."),
):
    """Print the structural model of one source file as JSON."""
    result = default_registry().extract(file_path, language)
    if not result:
        console.print(f"[red]Unsupported:[/red] {result.reason}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(asdict(result), indent=2))


@app.command("diff")
def diff(
    old_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Old version of the file."),
    new_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="New version of the file."),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Override language detection."),
):
    """Show the structural differences between two versions of a file."""
    registry = default_registry()
    old = registry.extract(old_file, language)
    new = registry.extract(new_file, language or (old.language if old else None))
    for side in (old, new):
        if not side:
            console.print(f"[red]Unsupported:[/red] {side.reason}")
            raise typer.Exit(code=1)

    diffs = detect_drift(old, new)
    if not diffs:
        console.print("[green]No structural changes.[/green]")
        return

    table = Table(show_header=True)
    table.add_column("Change")
    table.add_column("Category")
    table.add_column("Name")
    table.add_column("Impact")
    table.add_column("Details")
    for item in diffs:
        color = "red" if item.impact_level == "breaking" else "white"
        table.add_row(item.type, item.category, item.name, f"[{color}]{item.impact_level}[/{color}]", item.details)
    console.print(table)


# ===================================================================
# graph
# ===================================================================

@graph_app.command("stats")
def graph_stats(
    project_path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
):
    """Show node and edge counts."""
    graph = _open_graph(project_path.resolve())
    stats = graph.get_statistics()
    graph.close()

    table = Table(title="Knowledge Graph", show_header=True)
    table.add_column("Type")
    table.add_column("Count", justify="right")
    for node_type, count in sorted(stats["nodes_by_type"].items()):
        table.add_row(f"node: {node_type}", str(count))
    for edge_type, count in sorted(stats["edges_by_type"].items()):
        table.add_row(f"edge: {edge_type}", str(count))
    console.print(table)
    console.print(
        f"Nodes: {stats['node_count']} | Edges: {stats['edge_count']} | "
        f"Avg connectivity: {stats['average_connectivity']}"
    )


@graph_app.command("verify")
def graph_verify(
    project_path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
    repair: bool = typer.Option(False, "--repair", help="Remove orphaned edges."),
):
    """Check the graph for orphaned edges, duplicates and stale nodes."""
    graph = _open_graph(project_path.resolve())
    try:
        report = graph.verify_integrity()
        if repair and report.orphaned_edges:
            removed = graph.repair()
            graph.save()
            console.print(f"Removed {removed} orphaned edge(s).")
            report = graph.verify_integrity()
    finally:
        graph.close()

    for error in report.errors:
        console.print(f"[red]✗[/red] {error}")
    for warning in report.warnings:
        console.print(f"[yellow]![/yellow] {warning}")
    if report.valid:
        console.print("[green]Graph is consistent.[/green]")
    else:
        raise typer.Exit(code=1)


@graph_app.command("export")
def graph_export(
    output: Path = typer.Argument(..., help="Output JSON file."),
    project_path: Path = typer.Option(Path("."), "--project", "-p", exists=True, file_okay=False),
):
    """Export the graph as a single JSON document."""
    graph = _open_graph(project_path.resolve())
    try:
        graph.export(output)
    finally:
        graph.close()
    typer.echo(f"Exported graph to {output}")


@graph_app.command("backups")
def graph_backups(
    project_path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
):
    """List available backups, newest first."""
    graph = _open_graph(project_path.resolve())
    backups = graph.list_backups()
    graph.close()
    if not backups:
        typer.echo("No backups yet.")
        return
    for backup in backups:
        marker = "" if backup.complete else "  (incomplete)"
        typer.echo(f"{backup.timestamp}  {backup.size_bytes} bytes{marker}")


@graph_app.command("restore")
def graph_restore(
    timestamp: Optional[str] = typer.Argument(None, help="Backup timestamp; newest when omitted."),
    project_path: Path = typer.Option(Path("."), "--project", "-p", exists=True, file_okay=False),
):
    """Restore the graph from a backup."""
    graph = _open_graph(project_path.resolve())
    try:
        restored = graph.restore(timestamp)
    except DocDriftError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    finally:
        graph.close()
    typer.echo(f"Restored backup {restored}")


# ===================================================================
# config
# ===================================================================

def _parse_value(raw: str):
    try:
        return toml.loads(f"value = {raw}")["value"]
    except toml.TomlDecodeError:
        return raw


@config_app.command("show")
def config_show():
    """Print the current config file."""
    values = config_manager.load_full_config()
    if not values:
        console.print("[dim]No config set; defaults in use.[/dim]")
        return
    typer.echo(toml.dumps(values))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Dotted key, e.g. sync.mode or scoring.weights.staleness."),
    value: str = typer.Argument(..., help="TOML literal; bare words are stored as strings."),
):
    """Set one value in config.toml."""
    section, _, rest = key.partition(".")
    if not rest:
        console.print("[red]Error:[/red] key must be <section>.<name>")
        raise typer.Exit(code=1)

    values = config_manager.load_section(section)
    target = values
    *parents, leaf = rest.split(".")
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = _parse_value(value)

    if not config_manager.save_section(section, values):
        console.print(f"[red]Error:[/red] could not write {config.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {key} = {target[leaf]!r}")


@config_app.command("reset")
def config_reset(section: str = typer.Argument(..., help="Section to remove, e.g. scoring.")):
    """Drop a section so its defaults apply again."""
    if not config_manager.clear_section(section):
        console.print(f"[red]Error:[/red] could not write {config.CONFIG_FILE}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] section '{section}' reset to defaults")


if __name__ == "__main__":
    app()
