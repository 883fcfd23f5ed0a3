"""
Consensus Analysis Example

Demonstrates how quorum approval of a design artifact behaves as participants
approve, reject or stay silent, and how approved suggestions are merged.

Usage:
    python examples/consensus_analysis.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aris.bus import MessageBus
from aris.config import Settings
from aris.consensus import ConsensusCoordinator, ConsensusResult
from aris.workers import ScriptedWorker, approving_reviewer

console = Console()

PARTICIPANTS = ["designer", "planner", "ui-specialist", "implementer", "reviewer"]

ARTIFACT = {
    "name": "orders-api",
    "endpoints": ["/orders", "/orders/{id}"],
    "schema": {"properties": {"id": {"type": "string"}}},
}


def display_result(result: ConsensusResult) -> None:
    table = Table(title=f"Consensus {result.request_id}")
    table.add_column("Participant", style="cyan")
    table.add_column("Approved")
    table.add_column("Confidence", justify="right")

    for response in result.responses:
        table.add_row(response.participant, "yes" if response.approved else "no", f"{response.confidence:.2f}")
    for participant in result.missing:
        table.add_row(participant, "[yellow]missing[/yellow]", "-")

    console.print(table)
    status = "[green]APPROVED[/green]" if result.approved else "[red]NOT APPROVED[/red]"
    console.print(f"{status} ({result.approvals}/{result.required_approvals} approvals)")
    if result.applied_patches:
        console.print(f"Applied patches: {', '.join(result.applied_patches)}")
    for item in result.feedback:
        console.print(f"  • {item}")


async def run_round(title: str, workers: list[ScriptedWorker], timeout: float = 1.0) -> ConsensusResult:
    console.print(f"\n[bold]{title}[/bold]")
    async with MessageBus() as bus:
        for worker in workers:
            bus.register(worker)
        coordinator = ConsensusCoordinator(bus, settings=Settings(knowledge_backend="memory"))
        result = await coordinator.review_artifact(ARTIFACT, PARTICIPANTS, timeout=timeout)
    display_result(result)
    return result


async def example_clear_approval():
    """Example: every participant approves and two suggest changes."""
    workers = [approving_reviewer(role) for role in PARTICIPANTS[2:]]
    workers += [
        approving_reviewer("designer", suggestions=["Add `created_at` field to orders"]),
        approving_reviewer("planner", suggestions=["Add rate limiting", "Ship in two phases"]),
    ]
    result = await run_round("Example 1: Clear approval", workers)
    console.print(f"Merged artifact: {result.artifact}")


async def example_split_vote():
    """Example: three of five approve, below the 70% quorum."""
    workers = [approving_reviewer(role) for role in PARTICIPANTS[:3]]
    workers += [
        approving_reviewer(role, approved=False, feedback=[f"{role} wants pagination first"])
        for role in PARTICIPANTS[3:]
    ]
    await run_round("Example 2: Split vote", workers)


async def example_silent_participant():
    """Example: one participant never answers and counts as not approving."""
    workers = [approving_reviewer(role) for role in PARTICIPANTS[:4]]
    workers.append(ScriptedWorker(PARTICIPANTS[4], hang=True))
    await run_round("Example 3: Silent participant", workers, timeout=0.5)


async def main():
    """Run all consensus examples."""
    console.print(
        Panel.fit(
            "[bold]Consensus Analysis Examples[/bold]\nQuorum approval of design artifacts",
            border_style="blue",
        )
    )

    await example_clear_approval()
    await example_split_vote()
    await example_silent_participant()


if __name__ == "__main__":
    asyncio.run(main())
