"""
Basic Task Example

Demonstrates submitting tasks, seeing how they are classified and routed, and
running the routed workflow against in-process scripted workers.

Usage:
    python examples/basic_task.py
"""

import asyncio
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aris.config import Settings
from aris.orchestrator import DispatchOutcome, Orchestrator
from aris.role_config import Role
from aris.tasks import Task
from aris.workers import ScriptedWorker

console = Console()

APPROVE = {"approved": True, "feedback": ["Looks reasonable"], "suggestions": ["Add health checks"], "confidence": 0.8}


def reply(task: Task, context: dict[str, Any]) -> dict[str, Any]:
    """Every role answers with a short record of what it was asked to do."""
    return {"action": task.task_type, "step": context.get("step"), "role": context.get("role")}


def build_workers() -> list[ScriptedWorker]:
    return [ScriptedWorker(role, replies={"review-artifact": APPROVE}, default=reply) for role in Role]


def display_outcome(outcome: DispatchOutcome) -> None:
    """Display classification, route and step results in a table."""
    table = Table(title=f"{outcome.task.description[:60]}")

    table.add_column("Step", style="cyan")
    table.add_column("Role", style="magenta")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")

    for state in outcome.run.steps.values():
        table.add_row(state.name, state.role, state.status.value, str(state.attempts))

    console.print(
        f"\nLevel: [bold]{outcome.score.level.value}[/bold] ({outcome.score.value:.3f}) "
        f"-> {', '.join(outcome.route.roles)} via [cyan]{outcome.route.workflow}[/cyan]"
    )
    console.print(table)


async def main():
    """Main execution function."""
    console.print(
        Panel.fit(
            "[bold]Basic Task Example[/bold]\nDemonstrates triage, routing and workflow execution",
            border_style="blue",
        )
    )

    settings = Settings(knowledge_backend="memory", worker_timeout=5.0, consensus_timeout=5.0)
    tasks = [
        Task("Rename variable x to user_count", "rename"),
        Task("Audit the payment module for injection issues", "audit-code"),
        Task("Design a scalable microservices architecture for checkout", "design-architecture"),
    ]

    async with Orchestrator(settings=settings) as orchestrator:
        for worker in build_workers():
            orchestrator.register_worker(worker)

        for task in tasks:
            outcome = await orchestrator.dispatch(await orchestrator.submit(task))
            display_outcome(outcome)

            verdict = outcome.run.steps.get("architecture")
            if verdict is not None and "consensus" in verdict.detail:
                consensus = verdict.detail["consensus"]
                console.print(
                    f"Consensus: {consensus['approvals']}/{consensus['required_approvals']} approvals, "
                    f"patches applied: {', '.join(consensus['applied_patches']) or 'none'}"
                )

    console.print("\n[bold green]All tasks dispatched![/bold green]")


if __name__ == "__main__":
    asyncio.run(main())
