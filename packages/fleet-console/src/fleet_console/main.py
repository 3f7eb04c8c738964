import typer

from fleet_console.commands import deploy, resources
from shared.logging import setup_logging

app = typer.Typer()


@app.callback()
def callback(
    log_level: str = typer.Option("WARNING", "--log-level", envvar="LOG_LEVEL"),
):
    """
    Fleet console: provision and watch resources on managed hosts
    """
    setup_logging(service_name="fleet-cli", log_level=log_level)


app.add_typer(resources.app, name="resources")
app.add_typer(deploy.app, name="deploy")
