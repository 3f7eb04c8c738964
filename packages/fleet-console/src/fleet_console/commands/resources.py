import asyncio
from collections.abc import Awaitable, Callable
import json

from rich.console import Console, Group
from rich.live import Live
import typer

from fleet_console.client import get_api_client, open_view
from fleet_console.dispatcher import CommandDispatcher, Confirm, ConfirmationRequest, DispatchResult
from fleet_console.gate import Track
from fleet_console.kinds import get_kind_spec
from fleet_console.render import (
    field_errors_table,
    resource_table,
    result_line,
    task_runs_table,
)
from fleet_console.sync import SyncController, ViewScope
from shared.contracts.dto.resource import ResourceCreate, ResourceDTO, ResourceUpdate
from shared.contracts.dto.run import TaskRunDTO

Operation = Callable[[CommandDispatcher], Awaitable[DispatchResult]]


def parse_settings(values: list[str] | None) -> dict:
    """Parse ``key=value`` pairs. Values that are valid JSON are decoded."""
    settings = {}
    for item in values or []:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        try:
            settings[key] = json.loads(raw)
        except ValueError:
            settings[key] = raw
    return settings


async def list_resources_command(kind: str, scope: ViewScope) -> list[ResourceDTO]:
    """
    Async implementation of list resources
    """
    async with open_view(scope, [kind]) as view:
        return list(view.collection(kind))


async def dispatch_command(
    kind: str, scope: ViewScope, operation: Operation, confirm: Confirm | None = None
) -> DispatchResult:
    """Mount a one-shot view for ``kind`` and run ``operation`` through a dispatcher."""
    async with open_view(scope, [kind]) as view:
        dispatcher = CommandDispatcher(view, confirm=confirm)
        return await operation(dispatcher)


async def task_runs_command(scope: ViewScope, task_id: str, days: int = 7) -> list[TaskRunDTO]:
    api = get_api_client()
    try:
        return await api.list_task_runs(
            get_kind_spec("scheduled-task"), scope.params, task_id, days=days
        )
    finally:
        await api.close()


async def watch_resources_command(
    kinds: list[str],
    scope: ViewScope,
    on_change: Callable[[SyncController], None],
    duration: float | None = None,
) -> None:
    """Keep a live view mounted, calling ``on_change`` on every update."""
    async with open_view(scope, kinds, push=True) as view:
        remove = view.add_listener(lambda _props: on_change(view))
        on_change(view)
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            remove()


# Typer command wrappers
app = typer.Typer()

console = Console()


def _scope(host: str, site: str | None, database: str | None) -> ViewScope:
    return ViewScope(host_id=host, site_id=site, database_id=database)


def _check_kind(kind: str) -> None:
    try:
        get_kind_spec(kind)
    except KeyError as e:
        raise typer.BadParameter(str(e.args[0]), param_hint="KIND") from None


def cli_confirm(assume_yes: bool) -> Confirm:
    async def confirm(request: ConfirmationRequest) -> bool:
        if assume_yes:
            return True
        # prompt off the event loop; pollers and the listener keep running
        return await asyncio.to_thread(typer.confirm, request.message, default=False)

    return confirm


def _run(kind: str, scope: ViewScope, operation: Operation, json_output: bool, confirm=None):
    try:
        result = asyncio.run(dispatch_command(kind, scope, operation, confirm))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None

    report(result, json_output)


def report(result: DispatchResult, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        console.print(result_line(result))
        if result.field_errors:
            console.print(field_errors_table(result.field_errors))
        for dependent in result.dependents:
            console.print(f"  • {dependent.name} [dim]({dependent.kind})[/dim]")

    if not result.ok:
        raise typer.Exit(code=1)


HOST = typer.Option(..., "--host", "-H", help="Managed host ID")
SITE = typer.Option(None, "--site", help="Site ID (site-scoped kinds)")
DATABASE = typer.Option(None, "--database", help="Database ID (schemas, database users)")
JSON = typer.Option(False, "--json", help="Output as JSON")


@app.command("list")
def list_(
    kind: str = typer.Argument(..., help="Resource kind, e.g. database or firewall-rule"),
    host: str = HOST,
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """List resources of a kind"""
    _check_kind(kind)
    spec = get_kind_spec(kind)

    try:
        resources = asyncio.run(list_resources_command(kind, _scope(host, site, database)))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps([r.to_wire() for r in resources], indent=2))
        return
    console.print(resource_table(spec, resources))


@app.command()
def watch(
    kinds: list[str] = typer.Argument(..., help="Resource kinds to watch"),
    host: str = HOST,
    site: str | None = SITE,
    database: str | None = DATABASE,
    duration: float | None = typer.Option(None, "--for", help="Stop after N seconds"),
):
    """Watch resources update live until interrupted"""
    for kind in kinds:
        _check_kind(kind)
    specs = [get_kind_spec(kind) for kind in kinds]

    def render(view: SyncController) -> Group:
        return Group(*(resource_table(spec, view.collection(spec.kind)) for spec in specs))

    try:
        with Live(console=console, auto_refresh=False) as live:

            def on_change(view: SyncController) -> None:
                live.update(render(view), refresh=True)

            asyncio.run(
                watch_resources_command(kinds, _scope(host, site, database), on_change, duration)
            )
    except KeyboardInterrupt:
        return
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None


@app.command()
def create(
    kind: str = typer.Argument(...),
    host: str = HOST,
    name: str | None = typer.Option(None, "--name", "-n"),
    settings: list[str] | None = typer.Option(None, "--set", help="key=value configuration"),
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """Create a resource"""
    _check_kind(kind)
    payload = ResourceCreate(name=name, config=parse_settings(settings))
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.create(kind, payload),
        json_output,
    )


@app.command()
def update(
    kind: str = typer.Argument(...),
    resource_id: str = typer.Argument(...),
    host: str = HOST,
    settings: list[str] | None = typer.Option(None, "--set", help="key=value configuration"),
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """Update a resource in place"""
    _check_kind(kind)
    payload = ResourceUpdate(config=parse_settings(settings))
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.update(kind, resource_id, payload),
        json_output,
    )


@app.command()
def delete(
    kind: str = typer.Argument(...),
    resource_id: str = typer.Argument(...),
    host: str = HOST,
    site: str | None = SITE,
    database: str | None = DATABASE,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    json_output: bool = JSON,
):
    """Remove a resource"""
    _check_kind(kind)
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.delete(kind, resource_id),
        json_output,
        confirm=cli_confirm(yes),
    )


@app.command()
def retry(
    kind: str = typer.Argument(...),
    resource_id: str = typer.Argument(...),
    host: str = HOST,
    secondary: bool = typer.Option(False, "--secondary", help="Retry the failed update"),
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """Retry a failed install or update"""
    _check_kind(kind)
    track = Track.SECONDARY if secondary else Track.PRIMARY
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.retry(kind, resource_id, track),
        json_output,
    )


@app.command("cancel-update")
def cancel_update(
    kind: str = typer.Argument(...),
    resource_id: str = typer.Argument(...),
    host: str = HOST,
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """Cancel a pending, running or failed in-place update"""
    _check_kind(kind)
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.cancel_update(kind, resource_id),
        json_output,
    )


@app.command()
def toggle(
    kind: str = typer.Argument(...),
    resource_id: str = typer.Argument(...),
    host: str = HOST,
    site: str | None = SITE,
    database: str | None = DATABASE,
    json_output: bool = JSON,
):
    """Pause or resume a resource"""
    _check_kind(kind)
    _run(
        kind,
        _scope(host, site, database),
        lambda d: d.toggle(kind, resource_id),
        json_output,
    )


@app.command("run")
def run_now(
    task_id: str = typer.Argument(..., help="Scheduled task ID"),
    host: str = HOST,
    json_output: bool = JSON,
):
    """Run a scheduled task once, outside its schedule"""
    _run(
        "scheduled-task",
        _scope(host, None, None),
        lambda d: d.run_now("scheduled-task", task_id),
        json_output,
    )


@app.command()
def runs(
    task_id: str = typer.Argument(..., help="Scheduled task ID"),
    host: str = HOST,
    days: int = typer.Option(7, "--days", min=1, help="How far back to look"),
    json_output: bool = JSON,
):
    """Show recent runs of a scheduled task"""
    try:
        task_runs = asyncio.run(task_runs_command(_scope(host, None, None), task_id, days))
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps([r.to_wire() for r in task_runs], indent=2))
        return
    console.print(task_runs_table(task_runs))


@app.command()
def restart(
    worker_id: str = typer.Argument(..., help="Supervised worker ID"),
    host: str = HOST,
    json_output: bool = JSON,
):
    """Restart a supervised worker"""
    _run(
        "supervised-worker",
        _scope(host, None, None),
        lambda d: d.restart("supervised-worker", worker_id),
        json_output,
    )


@app.command("set-default")
def set_default(
    site_id: str = typer.Argument(..., help="Site ID"),
    host: str = HOST,
    json_output: bool = JSON,
):
    """Serve a site on the host's bare IP address"""
    _run("site", _scope(host, None, None), lambda d: d.set_default(site_id), json_output)


@app.command("unset-default")
def unset_default(
    site_id: str = typer.Argument(..., help="Site ID"),
    host: str = HOST,
    json_output: bool = JSON,
):
    """Stop serving the default site on the host's bare IP address"""
    _run("site", _scope(host, None, None), lambda d: d.unset_default(site_id), json_output)
