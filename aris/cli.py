"""Main CLI entry point for the orchestration core."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .learning import CodeDiff
from .orchestrator import Orchestrator, build_orchestrator
from .routing import Router
from .tasks import Task, TaskPriority
from .triage import ComplexityClassifier
from .workflow import DEFAULT_TEMPLATES, RunSnapshot, RunStatus

console = Console()

STATUS_STYLES = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "yellow",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def _parse_json(value: str | None, name: str) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"invalid JSON: {exc}", param_hint=name) from exc


def _build_task(description: str, task_type: str, payload: str | None, priority: str) -> Task:
    data = _parse_json(payload, "--payload")
    if data is not None and not isinstance(data, dict):
        raise click.BadParameter("payload must be a JSON object", param_hint="--payload")
    return Task(description=description, task_type=task_type, payload=data, priority=TaskPriority(priority))


def _print_run(snapshot: RunSnapshot) -> None:
    style = STATUS_STYLES.get(snapshot.status, "white")
    table = Table(title=f"Run {snapshot.run_id} ({snapshot.template})")
    table.add_column("Step", style="cyan")
    table.add_column("Role")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Error")
    for state in snapshot.steps.values():
        table.add_row(state.name, state.role, state.status.value, str(state.attempts), state.error or "")
    console.print(table)
    console.print(f"[{style}]Run {snapshot.status.value}[/{style}]")
    if snapshot.error:
        console.print(f"[red]{snapshot.error}[/red]")


async def _with_orchestrator(fn: Any) -> Any:
    async with build_orchestrator(settings) as orchestrator:
        return await fn(orchestrator)


task_options = [
    click.argument("description"),
    click.option("--type", "task_type", required=True, help="Task type tag, e.g. design-architecture"),
    click.option("--payload", default=None, help="Structured payload as a JSON object"),
    click.option(
        "--priority",
        type=click.Choice([p.value for p in TaskPriority]),
        default=TaskPriority.MEDIUM.value,
        show_default=True,
    ),
]


def with_task_options(fn: Any) -> Any:
    for option in reversed(task_options):
        fn = option(fn)
    return fn


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool) -> None:
    """Agent orchestration core CLI.

    Classify and route tasks, run workflows against workers, and manage learned review rules.
    """
    _configure_logging(verbose)


@main.command()
@with_task_options
def classify(description: str, task_type: str, payload: str | None, priority: str) -> None:
    """Score a task's complexity.

    DESCRIPTION: Free-text description of the task
    """
    score = ComplexityClassifier().classify(_build_task(description, task_type, payload, priority))
    table = Table(title=f"Complexity: {score.level.value} ({score.value:.3f})")
    table.add_column("Factor", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in score.factors.items():
        table.add_row(name, f"{value:.3f}")
    console.print(table)


@main.command()
@with_task_options
def route(description: str, task_type: str, payload: str | None, priority: str) -> None:
    """Show the roles and workflow a task would be routed to."""
    task = _build_task(description, task_type, payload, priority)
    score = ComplexityClassifier().classify(task)
    chosen = Router().route(score, task)
    console.print(
        Panel(
            f"Level: {score.level.value} ({score.value:.3f})\n"
            f"Roles: {', '.join(chosen.roles)}\n"
            f"Workflow: {chosen.workflow}\n"
            f"Reason: {chosen.reason}",
            title="Route",
        )
    )


@main.command()
def templates() -> None:
    """List built-in workflow templates."""
    table = Table(title="Workflow Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Steps")
    table.add_column("Description")
    for template in DEFAULT_TEMPLATES:
        steps = ", ".join(
            f"{s.name}<-{'+'.join(sorted(s.depends_on))}" if s.depends_on else s.name for s in template.steps
        )
        table.add_row(template.name, steps, template.description)
    console.print(table)


@main.command(name="run")
@click.argument("template")
@click.option("--context", "context_json", default=None, help="Initial run context as a JSON object")
def run_template(template: str, context_json: str | None) -> None:
    """Run a workflow template against the configured workers."""
    context = _parse_json(context_json, "--context") or {}

    async def do_run(orchestrator: Orchestrator) -> RunSnapshot:
        return await orchestrator.wait_run(await orchestrator.run_workflow(template, context))

    snapshot = asyncio.run(_with_orchestrator(do_run))
    _print_run(snapshot)
    if snapshot.status != RunStatus.SUCCEEDED:
        raise SystemExit(1)


@main.command()
@with_task_options
def dispatch(description: str, task_type: str, payload: str | None, priority: str) -> None:
    """Submit a task, route it and run the routed workflow."""
    task = _build_task(description, task_type, payload, priority)

    async def do_dispatch(orchestrator: Orchestrator) -> Any:
        return await orchestrator.dispatch(await orchestrator.submit(task))

    outcome = asyncio.run(_with_orchestrator(do_dispatch))
    console.print(
        f"[cyan]{outcome.score.level.value}[/cyan] -> {', '.join(outcome.route.roles)} "
        f"([bold]{outcome.route.workflow}[/bold])"
    )
    _print_run(outcome.run)
    if outcome.run.status != RunStatus.SUCCEEDED:
        raise SystemExit(1)


@main.command()
@click.argument("before", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("after", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--file-path", default=None, help="File the correction applies to (defaults to AFTER)")
@click.option("--author", default="cli", show_default=True)
def learn(before: Path, after: Path, file_path: str | None, author: str) -> None:
    """Learn rules from a correction: BEFORE is the emitted text, AFTER the accepted one."""
    diff = CodeDiff(
        file_path=file_path or str(after),
        before=before.read_text(),
        after=after.read_text(),
        author=author,
    )

    async def do_learn(orchestrator: Orchestrator) -> Any:
        return await orchestrator.learn(diff)

    outcome = asyncio.run(_with_orchestrator(do_learn))
    console.print(
        f"[green]{outcome.rules_generated} new[/green], "
        f"[yellow]{outcome.rules_reinforced} reinforced[/yellow], "
        f"{outcome.total_rules} total rules"
    )


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def review(path: Path) -> None:
    """Review a file against the learned rules."""

    async def do_review(orchestrator: Orchestrator) -> Any:
        return await orchestrator.review(path.read_text())

    issues = asyncio.run(_with_orchestrator(do_review))
    if not issues:
        console.print("[green]No issues[/green]")
        return

    table = Table(title=f"Review: {path}")
    table.add_column("Line", justify="right")
    table.add_column("Category", style="cyan")
    table.add_column("Message")
    table.add_column("Rule")
    for issue in issues:
        table.add_row(str(issue.line or ""), issue.category, issue.message, issue.rule_id)
    console.print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def audit(path: Path) -> None:
    """Audit a file: built-in checks plus learned rules, scored out of 100."""

    async def do_audit(orchestrator: Orchestrator) -> Any:
        return await orchestrator.audit(path.read_text())

    report = asyncio.run(_with_orchestrator(do_audit))
    style = "green" if report.passed else "red"
    console.print(Panel(f"Score: {report.score}", title=f"[{style}]Audit {'passed' if report.passed else 'failed'}[/{style}]"))
    for issue in report.issues:
        console.print(f"  - [{issue.category}] {issue.message}")
    for suggestion in report.suggestions:
        console.print(f"  * {suggestion}")


@main.command()
def rules() -> None:
    """List learned rules."""

    async def do_list(orchestrator: Orchestrator) -> Any:
        return orchestrator.learning.rules

    stored = asyncio.run(_with_orchestrator(do_list))
    if not stored:
        console.print("[yellow]No rules learned yet[/yellow]")
        return

    table = Table(title="Learned Rules")
    table.add_column("ID", style="cyan")
    table.add_column("Category")
    table.add_column("Pattern")
    table.add_column("Confidence", justify="right")
    table.add_column("Uses", justify="right")
    for rule in sorted(stored, key=lambda r: r.usage_count, reverse=True):
        table.add_row(rule.id, rule.category.value, rule.pattern, f"{rule.confidence:.2f}", str(rule.usage_count))
    console.print(table)


@main.command()
def stats() -> None:
    """Show learning statistics."""

    async def do_stats(orchestrator: Orchestrator) -> Any:
        return orchestrator.stats()

    data = asyncio.run(_with_orchestrator(do_stats))
    learning = data["learning"]
    console.print(
        Panel(
            f"Rules: {learning['total_rules']} ({learning['active_rules']} active)\n"
            f"Average confidence: {learning['average_confidence']:.2f}\n"
            f"Workers: {', '.join(data['workers']) or '-'}\n"
            f"Templates: {len(data['templates'])}",
            title="Stats",
        )
    )


@main.command(name="init-db", help="Create the rule-store tables (development only; use alembic otherwise).")
def init_db_command() -> None:
    from .db import get_engine, init_db

    asyncio.run(init_db(get_engine(settings)))
    console.print("[green]Tables created[/green]")


@main.command()
def db_info() -> None:
    """Show database connection info."""
    console.print(
        Panel(
            f"Backend: {settings.knowledge_backend}\n"
            f"Host: {settings.db_host}\n"
            f"Port: {settings.db_port}\n"
            f"Database: {settings.db_name}\n"
            f"User: {settings.db_user}",
            title="Database Configuration",
        )
    )


if __name__ == "__main__":
    main()
