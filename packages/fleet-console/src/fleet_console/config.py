from pydantic import Field

from fleet_console.kinds import PollWeight
from shared.config import BaseSettings, api_url_field, interval_field, redis_url_field


class Config(BaseSettings):
    """Fleet console configuration."""

    api_url: str = api_url_field(required=True, alias="FLEET_API_URL")

    redis_url: str | None = redis_url_field(required=False, alias="FLEET_REDIS_URL")

    api_timeout: float = Field(
        default=30.0,
        gt=0,
        alias="FLEET_API_TIMEOUT",
        description="Command API request timeout in seconds",
    )

    poll_list_interval: float = interval_field(
        5.0, "FLEET_POLL_LIST_INTERVAL", "Status poll interval for rows of coarse lists"
    )
    poll_resource_interval: float = interval_field(
        2.0, "FLEET_POLL_RESOURCE_INTERVAL", "Status poll interval for heavyweight installs"
    )
    poll_live_interval: float = interval_field(
        1.0, "FLEET_POLL_LIVE_INTERVAL", "Status poll interval for live pipeline output"
    )

    def poll_intervals(self) -> dict[PollWeight, float]:
        return {
            PollWeight.LIST: self.poll_list_interval,
            PollWeight.RESOURCE: self.poll_resource_interval,
            PollWeight.LIVE: self.poll_live_interval,
        }
