"""
RALPH CLI — The Interface

Hook entry point (wired into the host agent runtime):
  ralph hook before-prompt|before-read|after-edit|stop   (JSON stdin → JSON stdout)

Plus utilities:
  - ralph init      (bootstrap .ralph/ and an example RALPH_TASK.md)
  - ralph status    (iteration, criteria, context budget, gutter risk)
  - ralph verify    (run the task's test command once)
  - ralph sign      (add a learned guardrail)
  - ralph rotate    (start a fresh observation session)
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ralphloop.config_loader import handoff_credential, load_config
from ralphloop.controller import Controller
from ralphloop.hooks import Decision, HookName, HookRequest, HookResponse
from ralphloop.identity import __codename__, __tagline__, __version__, BANNER
from ralphloop.task_spec import MissingTask, read_task
from ralphloop.verifier import head_lines, run_test_command
from ralphloop.workspace import Workspace, WorkspaceError

# Load .env from current directory or home (handoff credential)
load_dotenv()
load_dotenv(Path.home() / ".ralph" / ".env")

app = typer.Typer(
    name="ralph",
    help=f"{__codename__} — {__tagline__}\nIteration controller for autonomous coding agents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
# Hooks own stdout; everything diagnostic goes to stderr
err_console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Hook entry point
# ---------------------------------------------------------------------------

def _passthrough(name: HookName) -> HookResponse:
    if name is HookName.STOP:
        return HookResponse(decision=Decision.STOP)
    if name is HookName.AFTER_EDIT:
        return HookResponse()
    if name is HookName.BEFORE_READ:
        return HookResponse(continue_=True, permission="allow")
    return HookResponse(continue_=True)


@app.command()
def hook(
    name: HookName = typer.Argument(..., help="Lifecycle hook to run"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace root override"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one lifecycle hook: reads the request JSON on stdin, writes the response JSON."""
    _configure_logging(verbose)

    raw = sys.stdin.read()
    try:
        request = HookRequest.model_validate_json(raw) if raw.strip() else HookRequest()
    except ValidationError as e:
        logger.warning(f"[HOOK] Unparseable {name.value} request, using defaults: {e.error_count()} error(s)")
        request = HookRequest()

    root = workspace or request.workspace_root(Path.cwd())
    try:
        response = Controller(root).handle(name, request)
    except (WorkspaceError, OSError, ValueError) as e:
        logger.error(f"[HOOK] {name.value} failed, passing through: {e}")
        response = _passthrough(name)

    typer.echo(response.to_json())


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------

_EXAMPLE_TASK = """---
task: Build a CLI todo app in Python
test_command: "python -m pytest -q"
max_iterations: 20
---
# Task: CLI Todo App

Build a simple command-line todo application.

## Requirements

1. Single module: `todo.py`
2. Uses `todos.json` for persistence
3. Three commands: add, list, done

## Success Criteria

1. [ ] `python todo.py add "Buy milk"` adds a todo and confirms
2. [ ] `python todo.py list` shows all todos with IDs and status
3. [ ] `python todo.py done 1` marks todo 1 as complete
4. [ ] Todos survive restart (JSON persistence)
5. [ ] Invalid commands show a helpful usage message

---

## Ralph Instructions

1. Work on the next incomplete criterion (marked [ ])
2. Check off completed criteria (change [ ] to [x])
3. Run tests after changes
4. Commit your changes frequently
5. When ALL criteria are [x], output: `<ralph>COMPLETE</ralph>`
6. If stuck on the same issue 3+ times, output: `<ralph>GUTTER</ralph>`
"""


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Workspace root"),
):
    """Initialize .ralph/ state and an example task file."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    ws = Workspace(repo, load_config(repo))
    ws.ensure()

    if ws.task_path.exists():
        console.print(f"[dim]✓ {ws.task_path.name} already exists (not overwritten)[/]")
    else:
        ws.task_path.write_text(_EXAMPLE_TASK)
        console.print(f"[green]📝 Created {ws.task_path.name} with an example task[/]")

    # The legacy config may carry an API key
    gitignore = repo / ".gitignore"
    ignore_entries = [".cursor/ralph-config.json", f"{ws.state_dir.name}/.env"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# Ralph\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# Ralph\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized Ralph in {ws.state_dir}[/]")
    console.print(f"  State:      {ws.state_path}")
    console.print(f"  Guardrails: {ws.guardrails_path}")
    console.print(f"  Progress:   {ws.progress_path}")


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Workspace root"),
):
    """Show iteration, criteria, context budget and gutter risk."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    controller = Controller(repo)
    ws = controller.workspace

    try:
        task = read_task(ws.task_path)
    except MissingTask:
        console.print(f"[yellow]Ralph is not active here: {ws.task_path.name} not found.[/]")
        raise typer.Exit(1)

    state = ws.state_store().load()
    budget = controller.budget_tracker().snapshot()
    failures = controller.failure_log()
    risk = failures.gutter_risk(controller.config.thrash.gutter_threshold)

    table = Table(title="Ralph Status", border_style="cyan")
    table.add_column("Property")
    table.add_column("Value")
    table.add_row("Task", task.title or ws.task_path.name)
    table.add_row("Iteration", str(state.iteration))
    table.add_row("Status", state.status.value)
    table.add_row("Started", state.started_at)
    table.add_row("Max iterations", str(task.max_iterations) if task.max_iterations else "unbounded")
    table.add_row("Criteria", f"{task.checked_count}/{len(task.criteria)} checked")
    table.add_row("Test command", task.test_command or "[yellow]none (completion unverified)[/]")
    table.add_row("Session", ws.session().session_id)
    console.print(table)

    budget_table = Table(title="Context Budget", border_style="magenta")
    budget_table.add_column("Metric")
    budget_table.add_column("Value")
    budget_table.add_row("Allocated", f"{budget.allocated_tokens:,} tokens")
    budget_table.add_row("Capacity", f"{budget.capacity:,} tokens")
    budget_table.add_row("Warn / Critical", f"{budget.warn_threshold:,} / {budget.critical_threshold:,}")
    budget_table.add_row("Reads", str(budget.access_count))
    budget_table.add_row("Status", budget.status.label)
    console.print(budget_table)

    risk_color = "red" if risk.value == "HIGH" else "green"
    console.print(
        f"Gutter risk: [{risk_color}]{risk.value}[/]  |  "
        f"Thrashing detections: {failures.thrash_count()}  |  "
        f"Learned signs: {len(ws.guardrails().learned())}  |  "
        f"Handoff: {'configured' if handoff_credential(controller.config) else 'off'}"
    )


@app.command()
def verify(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Workspace root"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the task's test command once without advancing the loop."""
    _configure_logging(verbose)

    repo = (repo or Path.cwd()).resolve()
    config = load_config(repo)
    ws = Workspace(repo, config)

    try:
        task = read_task(ws.task_path)
    except MissingTask:
        console.print(f"[red]Task file not found: {ws.task_path}[/]")
        raise typer.Exit(1)

    if not task.test_command:
        console.print("[yellow]No test_command in the task file; nothing to verify.[/]")
        raise typer.Exit(1)

    ws.ensure()
    outcome = run_test_command(
        task.test_command, repo,
        timeout=config.tests.timeout_seconds,
        shell=config.tests.shell,
    )
    ws.write_last_test_output(outcome.output)

    console.print(Panel(
        head_lines(outcome.output, config.prompt.failure_output_lines) or "(no output)",
        title=f"{'✅ PASSED' if outcome.passed else '❌ FAILED'} — {task.test_command}",
        subtitle=f"exit {outcome.exit_label} in {outcome.duration_ms}ms",
        border_style="green" if outcome.passed else "red",
    ))
    if not outcome.passed:
        raise typer.Exit(1)


@app.command()
def sign(
    trigger: str = typer.Option(..., "--trigger", "-t", help="When the sign applies"),
    instruction: str = typer.Option(..., "--instruction", "-i", help="What to do instead"),
    added_after: str = typer.Option("Human note", "--after", "-a", help="Provenance"),
    title: Optional[str] = typer.Option(None, "--title"),
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Workspace root"),
):
    """Append a learned guardrail (sign)."""
    repo = (repo or Path.cwd()).resolve()
    ws = Workspace(repo, load_config(repo))
    ws.ensure()

    if ws.guardrails().add(trigger, instruction, added_after, title=title):
        console.print(f"[green]✅ Sign added to {ws.guardrails_path}[/]")
    else:
        console.print(f"[yellow]A learned sign for '{trigger}' already exists.[/]")


@app.command()
def rotate(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r", help="Workspace root"),
):
    """Start a fresh session: resets context budget, edit counts and gutter risk."""
    repo = (repo or Path.cwd()).resolve()
    ws = Workspace(repo, load_config(repo))
    ws.ensure()
    state = ws.state_store().load()
    session = ws.rotate_session()
    console.print(f"[green]🔁 New session {session.session_id}[/]")
    console.print(f'  Resume with: "Continue Ralph from iteration {state.iteration}"')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: err_console.print(str(msg).rstrip("\n"), style="dim", highlight=False, markup=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: err_console.print(str(msg).rstrip("\n"), highlight=False, markup=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
