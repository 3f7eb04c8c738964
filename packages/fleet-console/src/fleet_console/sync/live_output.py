"""Live output following for deployments and ad-hoc command runs."""

import asyncio
from collections.abc import Awaitable, Callable

import httpx
import structlog

from fleet_console.errors import APIError, FleetError
from fleet_console.lifecycle import is_transitional
from shared.contracts.dto.resource import StatusProbe

logger = structlog.get_logger(__name__)


class LiveOutputFollower:
    """Polls a run's status endpoint and emits its accumulating output.

    ``on_output`` receives the newly captured part of the buffer. When the
    run reaches a terminal state ``on_finished`` is awaited exactly once,
    which is where the caller reconciles the full history list. A run that
    disappears (404, e.g. pruned from history) also finishes the follow;
    ``on_finished`` and ``follow`` then get ``None``.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[StatusProbe]],
        interval: float,
        on_probe: Callable[[StatusProbe], None] | None = None,
        on_output: Callable[[str], None] | None = None,
        on_finished: Callable[[StatusProbe | None], Awaitable[None]] | None = None,
        name: str = "run",
    ):
        self.fetch = fetch
        self.interval = interval
        self.on_probe = on_probe
        self.on_output = on_output
        self.on_finished = on_finished
        self.name = name
        self.output = ""
        self.error_output = ""
        self.polls = 0

    def _emit(self, output: str) -> None:
        if output == self.output:
            return
        chunk = output[len(self.output) :] if output.startswith(self.output) else output
        self.output = output
        if self.on_output is not None and chunk:
            self.on_output(chunk)

    async def follow(self) -> StatusProbe | None:
        logger.debug("live_output_started", run=self.name, interval=self.interval)
        probe: StatusProbe | None = None
        while True:
            self.polls += 1
            try:
                probe = await self.fetch()
            except APIError as e:
                if e.status_code == httpx.codes.NOT_FOUND:
                    logger.info("live_output_run_gone", run=self.name, polls=self.polls)
                    probe = None
                    break
                logger.warning(
                    "live_output_poll_failed",
                    run=self.name,
                    error=e.message,
                    status_code=e.status_code,
                )
                await asyncio.sleep(self.interval)
                continue
            except (httpx.HTTPError, FleetError) as e:
                logger.warning(
                    "live_output_poll_failed",
                    run=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(self.interval)
                continue

            if self.on_probe is not None:
                self.on_probe(probe)
            self._emit(probe.output or "")
            self.error_output = probe.error_output or self.error_output

            if not is_transitional(probe.status):
                logger.info(
                    "live_output_finished",
                    run=self.name,
                    status=probe.status.value,
                    polls=self.polls,
                )
                break
            await asyncio.sleep(self.interval)

        if self.on_finished is not None:
            await self.on_finished(probe)
        return probe
