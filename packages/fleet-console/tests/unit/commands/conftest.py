import pytest

from shared.logging import setup_logging


@pytest.fixture(autouse=True)
def cli_logging():
    # The sub-apps are invoked directly, skipping fleet_console.main.callback;
    # configure logging the way the entry point does so logs go to stderr.
    setup_logging(service_name="fleet-cli", log_level="WARNING")
