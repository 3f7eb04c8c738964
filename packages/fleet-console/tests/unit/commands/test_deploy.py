import json

from helpers import API_URL, make_resource, sequence, wire
import httpx
import pytest
from typer.testing import CliRunner

from fleet_console.commands.deploy import app, history_command
from fleet_console.sync import ViewScope

runner = CliRunner()

DEPLOYMENTS = "/servers/1/sites/2/deployments"
SITE_ARGS = ["--host", "1", "--site", "2"]


@pytest.fixture(autouse=True)
def cli_env(monkeypatch):
    monkeypatch.setenv("FLEET_API_URL", API_URL)
    monkeypatch.setenv("FLEET_POLL_LIVE_INTERVAL", "0.01")
    monkeypatch.delenv("FLEET_REDIS_URL", raising=False)


def test_run_streams_output(api_mock):
    api_mock.get(DEPLOYMENTS).mock(
        side_effect=sequence([], wire(make_resource(kind="deployment", id="5", status="success")))
    )
    api_mock.post(DEPLOYMENTS).mock(
        return_value=httpx.Response(201, json={"id": 5, "status": "pending"})
    )
    api_mock.get(f"{DEPLOYMENTS}/5/status").mock(
        side_effect=sequence(
            {"status": "running", "output": "Cloning repository\n"},
            {"status": "success", "output": "Cloning repository\nRestarting workers\n"},
        )
    )

    result = runner.invoke(app, ["run", *SITE_ARGS])

    assert result.exit_code == 0, result.output
    assert "Cloning repository" in result.stdout
    assert "Restarting workers" in result.stdout
    assert "accepted" in result.stdout


def test_failed_deployment_still_exits_zero(api_mock):
    # the request was accepted; the run's own failure shows in its status
    api_mock.get(DEPLOYMENTS).mock(
        side_effect=sequence(
            [],
            wire(
                make_resource(
                    kind="deployment",
                    id="5",
                    status="failed",
                    error_detail="composer install failed",
                )
            ),
        )
    )
    api_mock.post(DEPLOYMENTS).mock(
        return_value=httpx.Response(201, json={"id": 5, "status": "pending"})
    )
    api_mock.get(f"{DEPLOYMENTS}/5/status").mock(
        return_value=httpx.Response(
            200, json={"status": "failed", "errorDetail": "composer install failed"}
        )
    )

    result = runner.invoke(app, ["run", *SITE_ARGS, "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["resource"]["status"] == "failed"
    assert data["resource"]["error_detail"] == "composer install failed"


def test_rollback_requires_confirmation(api_mock):
    api_mock.get(DEPLOYMENTS).mock(
        return_value=httpx.Response(
            200, json=wire(make_resource(kind="deployment", id="8", status="success"))
        )
    )
    rollback_route = api_mock.post(f"{DEPLOYMENTS}/8/rollback")

    result = runner.invoke(app, ["rollback", "8", *SITE_ARGS], input="n\n")

    assert result.exit_code == 1
    assert "Roll back" in result.stdout
    assert not rollback_route.called


def test_command_prints_output(api_mock):
    api_mock.get(DEPLOYMENTS).mock(return_value=httpx.Response(200, json=[]))
    api_mock.post("/servers/1/sites/2/commands").mock(
        return_value=httpx.Response(
            201, json={"id": 3, "command": "php artisan about", "status": "pending"}
        )
    )
    api_mock.get("/servers/1/sites/2/commands/3/status").mock(
        return_value=httpx.Response(200, json={"status": "success", "output": "Laravel 11\n"})
    )
    api_mock.get("/servers/1/sites/2/commands").mock(return_value=httpx.Response(200, json=[]))

    result = runner.invoke(app, ["command", "php artisan about", *SITE_ARGS])

    assert result.exit_code == 0, result.output
    assert "Laravel 11" in result.stdout
    assert "Finished: success" in result.stdout


@pytest.mark.asyncio
async def test_history_command(api_mock):
    api_mock.get(DEPLOYMENTS).mock(
        return_value=httpx.Response(
            200,
            json=wire(
                make_resource(kind="deployment", id="1", status="success"),
                make_resource(kind="deployment", id="2", status="success"),
            ),
        )
    )

    deployments = await history_command(ViewScope(host_id="1", site_id="2"))

    assert sorted(d.id for d in deployments) == ["1", "2"]
