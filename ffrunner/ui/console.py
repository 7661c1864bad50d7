# ffrunner/ui/console.py
# Rich rendering of engine events.
from typing import List

from rich.console import Console
from rich.markup import escape
from rich.status import Status
from rich.table import Table

from ffrunner.core.models import ExecutionResult, ExecutionState, ExecutionStatus, LogEntry, LogLevel
from ffrunner.core.output import Progress
from ffrunner.core.templates import Template, lint_template

console = Console()

LEVEL_STYLES = {
    LogLevel.INFO: "blue",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
    LogLevel.DEBUG: "dim",
}


def print_log_entry(entry: LogEntry, show_debug: bool = False) -> None:
    if entry.level is LogLevel.DEBUG and not show_debug:
        return
    style = LEVEL_STYLES[entry.level]
    console.print(
        f"[dim]{entry.formatted_timestamp}[/dim] [{style}]{entry.level.display_name:<5}[/{style}] "
        f"{escape(entry.message)}"
    )


def progress_status() -> Status:
    return console.status("[bold blue]Running FFmpeg...[/bold blue]", spinner="dots")


def describe_progress(progress: Progress) -> str:
    """One-line summary of an FFmpeg status line for the spinner."""
    parts = [f"frame {progress.frame}"]
    if progress.fps:
        parts.append(f"{progress.fps:g} fps")
    for label, value in (("time", progress.time), ("size", progress.size), ("speed", progress.speed)):
        if value:
            parts.append(f"{label} {value}")
    return "[bold blue]Running FFmpeg...[/bold blue] " + escape("  ".join(parts))


def print_result(state: ExecutionState) -> None:
    """Final summary line for a finished run."""
    result: ExecutionResult = state.result
    if state.status is ExecutionStatus.CANCELLED:
        console.print("\n[bold yellow]⏹  Execution cancelled.[/bold yellow]")
    elif state.status is ExecutionStatus.ERROR:
        console.print(f"\n[bold red]❌ {escape(state.error or 'Execution failed.')}[/bold red]")
    elif result is not None and result.is_success:
        console.print(f"\n[bold green]✅ Processing complete![/bold green] [dim]({result.formatted_duration})[/dim]")
    elif result is not None:
        console.print(f"\n[bold red]❌ FFmpeg exited with code {result.exit_code}.[/bold red]")
        tail = result.stderr.strip().splitlines()[-10:]
        if tail:
            console.print("[dim]Last lines of FFmpeg output:[/dim]")
            console.print(f"[red]{escape(chr(10).join(tail))}[/red]")


def print_templates(templates: List[Template]) -> None:
    table = Table(title="Templates")
    table.add_column("ID", style="bold cyan")
    table.add_column("Name")
    table.add_column("Category", style="magenta")
    table.add_column("Command", style="dim")
    table.add_column("Warnings", style="yellow")

    for template in templates:
        warnings = "; ".join(str(w) for w in lint_template(template))
        table.add_row(
            template.id,
            template.name,
            template.category or "",
            escape(template.command_template),
            escape(warnings),
        )
    console.print(table)
