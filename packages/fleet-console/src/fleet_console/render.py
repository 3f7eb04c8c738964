from collections.abc import Iterable

from rich.table import Table

from fleet_console.dispatcher import DispatchOutcome, DispatchResult
from fleet_console.gate import evaluate_actions
from fleet_console.kinds import KindSpec
from shared.contracts.dto.resource import ResourceDTO, ResourceStatus
from shared.contracts.dto.run import TaskRunDTO

STATUS_STYLES = {
    ResourceStatus.ACTIVE: "green",
    ResourceStatus.SUCCESS: "green",
    ResourceStatus.FAILED: "bold red",
    ResourceStatus.PAUSED: "dim",
    ResourceStatus.REMOVED: "dim",
}


def format_status(resource: ResourceDTO) -> str:
    style = STATUS_STYLES.get(resource.status, "yellow")
    text = f"[{style}]{resource.status.value}[/{style}]"
    if resource.progress is not None:
        text += f" {resource.progress.percent}%"
        if resource.progress.label:
            text += f" ({resource.progress.label})"
    if resource.secondary_status is not None:
        text += f" / update {resource.secondary_status.value}"
    return text


def format_error(resource: ResourceDTO) -> str:
    return resource.error_detail or resource.secondary_error_detail or ""


def resource_table(spec: KindSpec, resources: Iterable[ResourceDTO]) -> Table:
    table = Table(title=spec.prop)
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Status")
    table.add_column("Actions")
    table.add_column("Error", style="red")

    for resource in resources:
        name = resource.label
        if resource.is_primary:
            name += " [dim](primary)[/dim]"
        actions = ", ".join(evaluate_actions(resource, spec).names)
        table.add_row(resource.id, name, format_status(resource), actions, format_error(resource))
    return table


def result_line(result: DispatchResult) -> str:
    """One-line summary of a dispatch outcome."""
    subject = f"{result.action} {result.resource_id or ''}".strip()
    if result.outcome == DispatchOutcome.ACCEPTED:
        status = f" ({format_status(result.resource)})" if result.resource else ""
        return f"[bold green]✓ {subject} accepted[/bold green]{status}"
    if result.outcome in (DispatchOutcome.NOOP, DispatchOutcome.SUPPRESSED):
        return f"[yellow]{subject}: {result.message}[/yellow]"
    if result.outcome == DispatchOutcome.CANCELLED:
        return f"[dim]{subject} cancelled[/dim]"
    return f"[bold red]Error:[/bold red] {result.message or result.outcome.value}"


def field_errors_table(errors: dict[str, list[str]]) -> Table:
    table = Table(show_header=False, box=None)
    for field, messages in errors.items():
        table.add_row(f"[cyan]{field}[/cyan]", "; ".join(messages))
    return table


def task_runs_table(runs: Iterable[TaskRunDTO]) -> Table:
    table = Table(title="Task runs")
    table.add_column("Started", style="cyan")
    table.add_column("Result")
    table.add_column("Exit code", justify="right")
    table.add_column("Duration", justify="right")

    for run in runs:
        result = "[green]ok[/green]" if run.was_successful else "[bold red]failed[/bold red]"
        exit_code = "" if run.exit_code is None else str(run.exit_code)
        duration = "" if run.duration_ms is None else f"{run.duration_ms / 1000:.1f}s"
        table.add_row(run.started_at.isoformat(), result, exit_code, duration)
    return table
