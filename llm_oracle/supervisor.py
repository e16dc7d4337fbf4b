import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from .processor import InteractionProcessor
from .source import AccountChangeSource

log = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 30.0


class OracleSupervisor:
    """Runs snapshot + live processing forever, restarting after failures.

    An exception waits ``restart_delay`` seconds before the next run; a
    feed that simply ends is restarted straight away.
    """

    def __init__(
        self,
        source: AccountChangeSource,
        processor: InteractionProcessor,
        *,
        restart_delay: float = RESTART_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.source = source
        self.processor = processor
        self.restart_delay = restart_delay
        self._sleep = sleep
        self.restarts = 0
        self.failures = 0

    async def run_once(self) -> None:
        for update in await self.source.snapshot():
            await self.processor.process(update)
        async with contextlib.aclosing(self.source.subscribe()) as updates:
            async for update in updates:
                await self.processor.process(update)

    async def _wait(self, stop_event: Optional[asyncio.Event]) -> None:
        if stop_event is None:
            await self._sleep(self.restart_delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(self.restart_delay))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(sleeper, stopper, return_exceptions=True)

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        while stop_event is None or not stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                self.failures += 1
                log.exception(
                    "Error encountered: %s. Waiting %s seconds before retry...",
                    exc, self.restart_delay,
                )
                await self._wait(stop_event)
            else:
                log.warning("Live feed ended, restarting")
            self.restarts += 1
