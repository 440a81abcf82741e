"""PHP Janitor CLI - dead-code detection for PHP projects."""
import dataclasses
from enum import Enum
from pathlib import Path
from typing import List, Optional

import click
import typer
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from phpjanitor.analyzer.cache import CacheManager
from phpjanitor.analyzer.liveness import ANALYZERS
from phpjanitor.analyzer.models import Severity
from phpjanitor.analyzer.project import ProjectAnalyzer
from phpjanitor.config import Config, __version__
from phpjanitor.errors import ConfigError
from phpjanitor.reaper.fixer import FixerManager
from phpjanitor.report import RENDERERS, filter_issues, render_json, render_text
from phpjanitor.utils.logger import configure_logging
from phpjanitor.utils.safe_console import SafeConsole

app = typer.Typer(
    name="php-janitor",
    help="Find unused classes, functions, methods, properties, constants, imports and files in PHP code",
    add_completion=False
)
console = SafeConsole(force_terminal=True)

# Cache management sub-command
cache_app = typer.Typer(name="cache", help="Manage the PHP Janitor analysis cache")


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    GITHUB = "github"
    CSV = "csv"
    XML = "xml"
    JUNIT = "junit"
    HTML = "html"


def _split_rules(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [r.strip() for r in value.split(',') if r.strip()]


def _check_rules(value: Optional[str]) -> Optional[str]:
    """Option callback: reject unknown rule names as a usage error (exit code 2)."""
    unknown = [r for r in _split_rules(value) if r not in ANALYZERS]
    if unknown:
        raise click.BadParameter(f"Unknown rule(s): {', '.join(unknown)}. Known: {', '.join(ANALYZERS)}")
    return value


def _project_root(path: str) -> Path:
    project_path = Path(path).resolve()
    if not project_path.exists():
        console.print(f"[bold red]Error:[/bold red] Path does not exist: {escape(str(project_path))}")
        raise typer.Exit(1)
    return project_path


def _load_config(project_path: Path, config_file: Optional[str]) -> Config:
    base = project_path if project_path.is_dir() else project_path.parent
    try:
        return Config(base, config_file)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)


@app.command()
def analyze(
    path: str = typer.Argument(".", help="Project root (or single file) to analyze"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="Path to php-janitor.json"),
    output_format: Optional[OutputFormat] = typer.Option(None, "--format", "-f", help="Output format"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the report to a file"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated rules to run", callback=_check_rules),
    exclude: Optional[str] = typer.Option(None, "--exclude", help="Comma-separated rules to skip", callback=_check_rules),
    min_severity: Optional[Severity] = typer.Option(None, "--min-severity", help="Hide issues below this severity"),
    strict: bool = typer.Option(False, "--strict", help="Exit with code 1 when error-level issues remain"),
    fix: bool = typer.Option(False, "--fix", help="Remove unused use statements"),
    dry_run: bool = typer.Option(False, "--dry-run", help="With --fix: show what would change without writing"),
    php_version: Optional[str] = typer.Option(None, "--php-version", help="Target PHP version (e.g. 8.2)"),
    encoding: Optional[str] = typer.Option(None, "--encoding", "-e", help="Source encoding (default: auto-detect)"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Disable the incremental cache"),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-j", min=1, help="Worker threads"),
    framework: Optional[str] = typer.Option(None, "--framework", help="Framework plugin: auto, none, laravel, symfony, wordpress"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and failure details"),
):
    """Scan a project and report dead code."""
    configure_logging(verbose)
    project_path = _project_root(path)
    config = _load_config(project_path, config_file)

    # Command line wins over file and environment
    if php_version:
        config.data["php_version"] = php_version
    if encoding:
        config.data["encoding"] = encoding
    if no_cache:
        config.data["cache"]["enabled"] = False
    if parallel:
        config.data["parallel"] = parallel
    if framework:
        config.data["framework"] = framework
    if output_format:
        config.data["output"]["format"] = output_format.value
    try:
        fmt = config.output_format
        selected = _split_rules(only)
        skipped = _split_rules(exclude)
        settings = config.analysis_settings()
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    analyzer = ProjectAnalyzer(project_path, config=config, settings=settings)
    files = analyzer.discover()
    if not files:
        console.print(f"[bold red]Error:[/bold red] No PHP files found in {escape(str(project_path))}")
        raise typer.Exit(1)

    rules = [r for r in (selected or ANALYZERS) if r not in skipped]
    show_progress = fmt == "text" and output is None
    if show_progress:
        console.print(f"[bold blue]Analyzing project:[/bold blue] {escape(str(project_path))}\n")
        with Progress(
            SpinnerColumn(console.spinner_name),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting...", total=None)

            def on_phase(description: str, total: int):
                progress.update(task, description=description, total=total or None, completed=0)

            result = analyzer.run(files, rules, on_phase=on_phase,
                                  on_file=lambda _: progress.advance(task))
    else:
        result = analyzer.run(files, rules)

    issues = filter_issues(
        result.issues,
        min_severity=min_severity,
        only=selected,
        exclude=skipped,
    )

    if fix:
        manager = FixerManager(dry_run=dry_run).register_builtin_fixers()
        manager.fix_issues(issues)
        written = manager.apply_fixes()
        fixed = set(manager.fixed_issues())
        issues = [i for i in issues if i not in fixed]
        # Keep machine-readable stdout clean
        _print_fix_summary(manager, written, dry_run, console if fmt == "text" else SafeConsole(stderr=True))

    result = dataclasses.replace(result, issues=issues)
    renderer = RENDERERS.get(fmt)
    report = renderer(result).rstrip("\n") if renderer else None

    if output:
        if report is None:
            report = render_json(result)
        Path(output).write_text(report + "\n", encoding="utf-8")
        console.print(f"[green]Report written to {escape(output)}[/green]")
    elif report is not None:
        # Plain stdout so the report stays machine-readable
        typer.echo(report)
    else:
        render_text(result, console, verbose=verbose)

    if (strict or config.strict) and any(i.severity == Severity.ERROR for i in issues):
        raise typer.Exit(1)


def _print_fix_summary(manager: FixerManager, written: dict, dry_run: bool, out: SafeConsole):
    summary = manager.summary()
    title = "Fixes (dry run)" if dry_run else "Fixes"
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Result", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_row("Fixed", str(summary['successful']))
    table.add_row("Failed", str(summary['failed']))
    table.add_row("Skipped", str(summary['skipped']))
    table.add_row("Files modified", str(summary['files_modified']))
    out.print(table)
    for file_path, (ok, message) in written.items():
        if not ok:
            out.print(f"[bold red]Could not write {escape(file_path)}:[/bold red] {escape(message)}")


@app.command()
def version():
    """Show the PHP Janitor version."""
    # Plain echo: no markup or highlighting in piped output
    typer.echo(f"php-janitor {__version__}")


# =========================================================================
# CACHE MANAGEMENT COMMANDS
# =========================================================================

@cache_app.command("clear")
def cache_clear(
    project_path: str = typer.Argument(".", help="Project root path"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="Path to php-janitor.json"),
):
    """Delete every cached entry so the next run re-parses all files."""
    root = _project_root(project_path)
    config = _load_config(root, config_file)
    CacheManager(config.cache_dir).clear()
    console.print(f"[green]✓ Cache cleared for {escape(str(root))}[/green]")


@cache_app.command("stats")
def cache_stats(
    project_path: str = typer.Argument(".", help="Project root path"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="Path to php-janitor.json"),
):
    """Display cache statistics for a project."""
    root = _project_root(project_path)
    config = _load_config(root, config_file)
    stats = CacheManager(config.cache_dir, enabled=config.cache_enabled).stats()

    table = Table(title=f"Cache Statistics: {root}", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Enabled", "yes" if stats['enabled'] else "no")
    table.add_row("Directory", stats['directory'])
    table.add_row("Files Cached", str(stats['file_count']))
    table.add_row("Size (bytes)", str(stats['size']))
    console.print(table)


# Register cache sub-command
app.add_typer(cache_app)


@app.callback()
def main():
    """PHP Janitor - dead-code detection for PHP projects."""
    pass


if __name__ == "__main__":
    app()
