from helpers import API_URL
import pytest
import pytest_asyncio
import respx

from fleet_console.api import FleetAPIClient
from fleet_console.sync import ViewScope


@pytest.fixture
def api_mock():
    with respx.mock(base_url=f"{API_URL}/api", assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest_asyncio.fixture
async def api():
    client = FleetAPIClient(API_URL)
    yield client
    await client.close()


@pytest.fixture
def host_scope() -> ViewScope:
    return ViewScope(host_id="1")


@pytest.fixture
def site_scope() -> ViewScope:
    return ViewScope(host_id="1", site_id="2")
