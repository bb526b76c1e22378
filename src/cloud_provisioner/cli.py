"""Typer CLI for the cloud provisioner."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cloud_provisioner.clients.base import ResourceAPIClient
from cloud_provisioner.clients.factory import create_client
from cloud_provisioner.clients.memory import InMemoryControlPlane
from cloud_provisioner.config.loader import load_plan_config
from cloud_provisioner.config.models import ClientType, PlanConfig
from cloud_provisioner.engine.orchestrator import Orchestrator
from cloud_provisioner.engine.outcome import RunOutcome, StepStatus
from cloud_provisioner.engine.plan import ProvisioningPlan
from cloud_provisioner.errors import PlanError
from cloud_provisioner.logging import configure_logging

console = Console()
app = typer.Typer(name="provision", help="Cloud resource provisioning CLI")

EXIT_PARTIAL_FAILURE = 1
EXIT_TEARDOWN_FAILURE = 2

_STATUS_STYLES = {
    "succeeded": "green",
    "deleted": "green",
    "failed": "red",
    "not_attempted": "yellow",
}


@app.callback()
def main(
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """Provision dependent cloud resources and clean them up again."""
    configure_logging(json=json_logs, level=log_level)


def _load(plan_path: str, *, dry_run: bool = False) -> tuple[PlanConfig, ProvisioningPlan]:
    path = Path(plan_path)
    if not path.exists():
        console.print(f"[red]Plan file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        config = load_plan_config(path)
        plan = ProvisioningPlan.from_config(config)
    except (ValueError, TypeError, PlanError) as exc:
        console.print(f"[red]Invalid plan:[/red] {exc}")
        raise typer.Exit(1) from exc

    if dry_run:
        config = config.model_copy(
            update={
                "client": config.client.model_copy(
                    update={"client_type": ClientType.MEMORY}
                )
            }
        )
    elif config.client.client_type == ClientType.ARM and not config.client.subscription_id:
        console.print(
            "[red]AZURE_SUBSCRIPTION_ID is not set[/red] (or use --dry-run)"
        )
        raise typer.Exit(1)
    return config, plan


def _client(config: PlanConfig) -> ResourceAPIClient:
    if config.client.client_type == ClientType.MEMORY:
        # Simulated operations complete without waiting out real poll intervals.
        return InMemoryControlPlane(config.client, poll_interval=0.0)
    return create_client(config.client)


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _print_outcome(outcome: RunOutcome) -> None:
    if outcome.steps:
        table = Table(title=f"Plan {outcome.plan_id}")
        table.add_column("Step", style="cyan")
        table.add_column("Status")
        table.add_column("Resource")
        table.add_column("Elapsed", justify="right")
        table.add_column("Error")
        for s in outcome.steps:
            table.add_row(
                s.step_id,
                _styled(s.status.value),
                s.resource_id or "",
                f"{s.elapsed_seconds:.1f}s" if s.status != StepStatus.NOT_ATTEMPTED else "",
                s.error or "",
            )
        console.print(table)

    if outcome.teardown:
        table = Table(title="Teardown")
        table.add_column("Step", style="cyan")
        table.add_column("Status")
        table.add_column("Resource")
        table.add_column("Error")
        for t in outcome.teardown:
            table.add_row(
                t.step_id, _styled(t.status.value), t.resource_id or "", t.error or ""
            )
        console.print(table)

    console.print(f"Final state: [bold]{outcome.state.value}[/bold]")


def _exit_code(outcome: RunOutcome) -> int:
    if outcome.teardown_failures:
        return EXIT_TEARDOWN_FAILURE
    if outcome.failed_steps:
        return EXIT_PARTIAL_FAILURE
    return 0


@app.command()
def validate(
    plan_path: str = typer.Argument(..., help="Path to plan YAML"),
) -> None:
    """Validate a plan file."""
    config, plan = _load(plan_path, dry_run=True)
    console.print(f"[green]Valid[/green] — plan_id={config.plan_id}")
    console.print(f"  steps: {len(plan)}")
    if config.location:
        console.print(f"  location: {config.location}")


@app.command("plan")
def show_plan(
    plan_path: str = typer.Argument(..., help="Path to plan YAML"),
) -> None:
    """Print the execution order and the teardown order."""
    _config, plan = _load(plan_path, dry_run=True)

    table = Table(title=f"Plan {plan.plan_id}")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Action")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Depends on")
    for i, step in enumerate(plan):
        table.add_row(
            str(i),
            step.step_id,
            step.action.value,
            step.kind,
            step.name,
            ", ".join(step.depends_on),
        )
    console.print(table)

    teardown = [s.step_id for s in plan.reverse(completed=[s.step_id for s in plan])]
    console.print(f"Teardown order: {' → '.join(teardown) if teardown else '(nothing)'}")


@app.command()
def apply(
    plan_path: str = typer.Argument(..., help="Path to plan YAML"),
    keep: bool | None = typer.Option(
        None,
        "--keep/--no-keep",
        help="Keep created resources (default: tear down unless KEEP_RESOURCE is set)",
    ),
    parallelism: int | None = typer.Option(
        None, "--parallelism", min=0, help="Max concurrent steps (0 = unbounded)"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Run against an in-memory control plane"
    ),
) -> None:
    """Provision every step of a plan, then tear it down."""
    config, plan = _load(plan_path, dry_run=dry_run)

    if keep is None:
        keep = bool(os.environ.get("KEEP_RESOURCE"))
    update: dict[str, object] = {"tear_down_on_exit": not keep}
    if parallelism is not None:
        update["parallelism"] = parallelism
    policy = config.policy.model_copy(update=update)

    async def _apply() -> RunOutcome:
        client = _client(config)
        try:
            return await Orchestrator(client, policy).run_plan(plan)
        finally:
            await client.close()

    if dry_run:
        console.print("[yellow]Dry run:[/yellow] using an in-memory control plane")
    outcome = asyncio.run(_apply())
    _print_outcome(outcome)
    if keep and outcome.steps:
        console.print("[dim]Resources kept; run 'provision destroy' to remove them[/dim]")

    code = _exit_code(outcome)
    if code:
        raise typer.Exit(code)


@app.command()
def destroy(
    plan_path: str = typer.Argument(..., help="Path to plan YAML"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Run against an in-memory control plane"
    ),
) -> None:
    """Delete every resource a plan declares, children first."""
    config, plan = _load(plan_path, dry_run=dry_run)
    if not yes:
        typer.confirm(f"Delete all resources of plan '{plan.plan_id}'?", abort=True)

    async def _destroy() -> RunOutcome:
        client = _client(config)
        try:
            return await Orchestrator(client, config.policy).destroy(plan)
        finally:
            await client.close()

    outcome = asyncio.run(_destroy())
    _print_outcome(outcome)
    code = _exit_code(outcome)
    if code:
        raise typer.Exit(code)
