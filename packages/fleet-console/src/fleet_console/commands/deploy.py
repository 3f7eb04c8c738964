import asyncio
from collections.abc import Callable
import json

from rich.console import Console
from rich.table import Table
import typer

from fleet_console.client import open_view
from fleet_console.commands.resources import cli_confirm, parse_settings, report
from fleet_console.deployments import DeploymentPipeline
from fleet_console.dispatcher import CommandDispatcher, DispatchResult
from fleet_console.render import format_status
from fleet_console.sync import ViewScope
from shared.contracts.dto.resource import ResourceCreate, ResourceDTO, ResourceKind

OutputCallback = Callable[[str], None]


async def deploy_command(
    scope: ViewScope,
    settings: dict | None = None,
    follow: bool = True,
    on_output: OutputCallback | None = None,
) -> DispatchResult:
    """
    Async implementation of deploy
    """
    async with open_view(scope, [ResourceKind.DEPLOYMENT]) as view:
        pipeline = DeploymentPipeline(view)
        payload = ResourceCreate(config=settings or {})
        return await pipeline.deploy(payload, follow=follow, on_output=on_output)


async def rollback_command(
    scope: ViewScope,
    deployment_id: str,
    follow: bool = True,
    on_output: OutputCallback | None = None,
    confirm=None,
) -> DispatchResult:
    async with open_view(scope, [ResourceKind.DEPLOYMENT]) as view:
        pipeline = DeploymentPipeline(view, CommandDispatcher(view, confirm=confirm))
        return await pipeline.rollback(deployment_id, follow=follow, on_output=on_output)


async def run_command_command(
    scope: ViewScope, command: str, on_output: OutputCallback | None = None
) -> DispatchResult:
    async with open_view(scope, [ResourceKind.DEPLOYMENT]) as view:
        return await DeploymentPipeline(view).run_command(command, on_output=on_output)


async def history_command(scope: ViewScope) -> list[ResourceDTO]:
    async with open_view(scope, [ResourceKind.DEPLOYMENT]) as view:
        return DeploymentPipeline(view).history()


# Typer command wrappers
app = typer.Typer()

console = Console()

HOST = typer.Option(..., "--host", "-H", help="Managed host ID")
SITE = typer.Option(..., "--site", "-s", help="Site ID")
JSON = typer.Option(False, "--json", help="Output as JSON")


def _stream(json_output: bool) -> OutputCallback | None:
    if json_output:
        return None
    return lambda chunk: console.out(chunk, end="", highlight=False)


@app.command()
def run(
    host: str = HOST,
    site: str = SITE,
    settings: list[str] | None = typer.Option(None, "--set", help="key=value options"),
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Stream deployment output"),
    json_output: bool = JSON,
):
    """Deploy a site"""
    scope = ViewScope(host_id=host, site_id=site)
    try:
        result = asyncio.run(
            deploy_command(scope, parse_settings(settings), follow, _stream(json_output))
        )
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None
    report(result, json_output)


@app.command()
def rollback(
    deployment_id: str = typer.Argument(..., help="Deployment to roll back to"),
    host: str = HOST,
    site: str = SITE,
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Stream deployment output"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    json_output: bool = JSON,
):
    """Re-deploy the commit of a previous deployment"""
    scope = ViewScope(host_id=host, site_id=site)

    try:
        result = asyncio.run(
            rollback_command(
                scope, deployment_id, follow, _stream(json_output), cli_confirm(yes)
            )
        )
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None
    report(result, json_output)


@app.command()
def command(
    command_line: str = typer.Argument(..., metavar="COMMAND", help="Command to run"),
    host: str = HOST,
    site: str = SITE,
    json_output: bool = JSON,
):
    """Run a command in the site directory"""
    scope = ViewScope(host_id=host, site_id=site)
    try:
        result = asyncio.run(run_command_command(scope, command_line, _stream(json_output)))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None

    if result.run is not None and not json_output:
        if result.run.error_output:
            console.print(f"[red]{result.run.error_output}[/red]")
        console.print(f"\nFinished: {result.run.status.value}")
    report(result, json_output)


@app.command()
def history(
    host: str = HOST,
    site: str = SITE,
    json_output: bool = JSON,
):
    """List deployments, newest first"""
    scope = ViewScope(host_id=host, site_id=site)
    try:
        deployments = asyncio.run(history_command(scope))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps([d.to_wire() for d in deployments], indent=2))
        return

    table = Table(title="deployments")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Started")
    for deployment in deployments:
        started = deployment.created_at.isoformat() if deployment.created_at else ""
        table.add_row(deployment.id, format_status(deployment), started)
    console.print(table)
