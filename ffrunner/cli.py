#!/usr/bin/env python3

import asyncio
import contextlib
import logging
import signal
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from ffrunner.backends.local import LocalBackend
from ffrunner.core.config import find_template, load_templates, load_user_config
from ffrunner.core.errors import ConfigError, FFRunnerError
from ffrunner.core.ffmpeg import ExecutableTarget, FFmpegSource, probe_version, resolve_executable
from ffrunner.core.log import setup_logging
from ffrunner.core.models import ExecutionPlan, ExecutionState, ExecutionStatus, LogEntry
from ffrunner.core.output import parse_progress
from ffrunner.core.planner import CommandPlanner
from ffrunner.core.templates import Template
from ffrunner.ui.console import describe_progress, print_log_entry, print_result, print_templates, progress_status
from ffrunner.ui.prompts import CUSTOM_CHOICE, ask_for_final_command, ask_for_template, ask_for_values

app = typer.Typer(help="Build FFmpeg commands from templates and run them.")
console = Console()
logger = logging.getLogger(__name__)

SET_HELP = "Parameter value as key=value. Repeat for several parameters."


def _parse_assignments(assignments: Optional[List[str]]) -> Dict[str, str]:
    values = {}
    for assignment in assignments or []:
        key, sep, value = assignment.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{assignment}'.", param_hint="--set")
        values[key.strip()] = value
    return values


def _get_template(template_id: str) -> Template:
    template = find_template(load_templates(), template_id)
    if template is None:
        raise ConfigError(f"Unknown template '{template_id}'. Run 'ffrunner templates' to list them.")
    return template


def _resolve_target(user_config: dict) -> ExecutableTarget:
    try:
        source = FFmpegSource(user_config["ffmpeg_source"])
    except ValueError:
        raise ConfigError(
            f"ffmpeg_source must be 'system' or 'custom', not '{user_config['ffmpeg_source']}'."
        )
    return resolve_executable(source, user_config.get("ffmpeg_path"))


def _plan_interactively(planner: CommandPlanner) -> Optional[ExecutionPlan]:
    choice = ask_for_template(load_templates())
    if choice is None:
        return None

    if choice == CUSTOM_CHOICE:
        final_command = ask_for_final_command()
        return planner.prepare_command(final_command) if final_command else None

    values = ask_for_values(choice)
    if values is None:
        return None

    rendered = planner.preview(choice, values)
    final_command = ask_for_final_command(rendered.display_string)
    if not final_command:
        return None
    # An edited command no longer matches the template, so it is planned as raw text
    if final_command == rendered.display_string:
        return planner.prepare_template(choice, values)
    return planner.prepare_command(final_command)


async def _execute(backend: LocalBackend, plan: ExecutionPlan, verbose: bool) -> ExecutionState:
    """Runs the plan while printing its log and a progress line; Ctrl+C cancels gracefully."""
    events = backend.subscribe()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, backend.cancel)

    run_task = asyncio.ensure_future(backend.execute(plan))
    try:
        with progress_status() as status:
            while not (run_task.done() and events.empty()):
                next_event = asyncio.ensure_future(events.get())
                done, _ = await asyncio.wait({next_event, run_task}, return_when=asyncio.FIRST_COMPLETED)
                if next_event not in done:
                    next_event.cancel()
                    continue
                event = next_event.result()
                if not isinstance(event, LogEntry):
                    logger.debug("Event: %s", event)
                    continue
                progress = parse_progress(event.message) if event.is_stderr else None
                if progress is not None:
                    status.update(describe_progress(progress))
                print_log_entry(event, show_debug=verbose)
        await run_task
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        backend.unsubscribe(events)

    return backend.state


@app.command()
def run(
    template_id: Optional[str] = typer.Argument(None, help="Template to run. Omit to choose interactively."),
    assignments: Optional[List[str]] = typer.Option(None, "--set", "-s", help=SET_HELP),
    command: Optional[str] = typer.Option(None, "--command", "-c", help="Run this FFmpeg command instead of a template."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output and tracebacks."),
):
    """
    Plans an FFmpeg command from a template or raw text and runs it locally.
    """
    try:
        # --- Step 0: Load Config ---
        user_config = load_user_config()
        setup_logging(user_config.get("log_level"), verbose)
        planner = CommandPlanner()

        # --- Step 1: Build the Execution Plan ---
        if command:
            plan = planner.prepare_command(command)
        elif template_id:
            plan = planner.prepare_template(_get_template(template_id), _parse_assignments(assignments))
        else:
            plan = _plan_interactively(planner)

        if plan is None:
            console.print("\n[bold yellow]No command provided. Aborting.[/bold yellow]")
            raise typer.Abort()

        console.print("\n[bold green]Final FFmpeg command:[/bold green]")
        console.print(f"[cyan]{escape(plan.display_command)}[/cyan]")
        if plan.is_from_template:
            console.print(f"[dim]Template: {escape(plan.template_name or plan.template_id)}[/dim]")

        # --- Step 2: Run Locally ---
        backend = LocalBackend(
            _resolve_target(user_config),
            planner,
            kill_timeout=float(user_config["kill_timeout"]),
            buffer_limit=int(user_config["buffer_limit"]),
        )
        console.print(f"\n[bold blue]⚙️  Running with {escape(backend.target.path or 'ffmpeg')}...[/bold blue]")
        state = asyncio.run(_execute(backend, plan, verbose))
        print_result(state)

        if state.status is not ExecutionStatus.COMPLETED or not state.result.is_success:
            raise typer.Exit(code=1)

    except (typer.Abort, typer.Exit, typer.BadParameter):
        # Let Typer handle this gracefully for a clean exit.
        raise
    except FFRunnerError as e:
        console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)
    except Exception:
        console.print("[bold red]An unexpected error occurred:[/bold red]")
        # For truly unexpected errors, show the full traceback
        console.print_exception(show_locals=verbose)
        raise typer.Abort()


@app.command()
def preview(
    template_id: str = typer.Argument(..., help="Template to render."),
    assignments: Optional[List[str]] = typer.Option(None, "--set", "-s", help=SET_HELP),
):
    """
    Shows the command a template renders to, without running it.
    """
    try:
        template = _get_template(template_id)
    except FFRunnerError as e:
        console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)

    values = _parse_assignments(assignments)
    planner = CommandPlanner()
    rendered = planner.preview(template, values)
    is_valid, errors = planner.validate_template_values(template, values)

    console.print(f"[cyan]{escape(rendered.display_string)}[/cyan]")
    console.print(f"[dim]arguments: {escape(repr(list(rendered.arguments)))}[/dim]")

    if not rendered.is_complete:
        console.print(f"[yellow]Missing: {', '.join(rendered.missing_placeholders)}[/yellow]")
    for error in errors:
        console.print(f"[red]- {escape(error)}[/red]")

    if not (is_valid and rendered.is_complete):
        raise typer.Exit(code=1)


@app.command()
def validate(command: str = typer.Argument(..., help="Full command, starting with ffmpeg or ffprobe.")):
    """
    Checks whether a command would be allowed to run.
    """
    result = CommandPlanner().validate_command(command)
    if result.is_valid:
        console.print("[bold green]✅ Command is allowed.[/bold green]")
        return
    console.print(f"[bold red]❌ {escape(result.error_message)}[/bold red]")
    raise typer.Exit(code=1)


@app.command()
def templates():
    """
    Lists the available templates.
    """
    print_templates(load_templates())


@app.command()
def version():
    """
    Prints the version of the configured FFmpeg.
    """
    try:
        target = _resolve_target(load_user_config())
    except FFRunnerError as e:
        console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)

    if not target.available:
        console.print("[bold red]Error: 'ffmpeg' command not found. Is FFmpeg installed and in PATH?[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[dim]{escape(target.path)}[/dim]")
    console.print(asyncio.run(probe_version(target)))


if __name__ == "__main__":
    app()
