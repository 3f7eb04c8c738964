from collections.abc import Iterable
from dataclasses import dataclass

from fleet_console.kinds import KindSpec
from shared.contracts.events import host_channel, site_channel


@dataclass(frozen=True)
class ViewScope:
    """What a view is looking at: a host, optionally narrowed to a site or database."""

    host_id: str
    site_id: str | None = None
    database_id: str | None = None

    @property
    def params(self) -> dict[str, str]:
        params = {"host_id": self.host_id}
        if self.site_id is not None:
            params["site_id"] = self.site_id
        if self.database_id is not None:
            params["database_id"] = self.database_id
        return params

    @property
    def name(self) -> str:
        if self.site_id is not None:
            return f"{host_channel(self.host_id)}/{site_channel(self.site_id)}"
        return host_channel(self.host_id)

    def channels(self, specs: Iterable[KindSpec]) -> list[str]:
        """Channels to subscribe to for the mounted kinds."""
        channels = set()
        for spec in specs:
            if spec.channel == "site" and self.site_id is not None:
                channels.add(site_channel(self.site_id))
            else:
                channels.add(host_channel(self.host_id))
        return sorted(channels)
