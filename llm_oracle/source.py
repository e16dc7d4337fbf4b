import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from transports.solana_rpc import memcmp_filter

from .accounts import INTERACTION_DISCRIMINATOR

log = logging.getLogger(__name__)

DEFAULT_QUEUE_CAPACITY = 100

_END = object()


@dataclass(frozen=True)
class PendingUpdate:
    address: str
    data: bytes


class AccountChangeSource:
    """Snapshot of matching accounts followed by their live change feed.

    ``subscription_factory(program_id, filters)`` must return an object with
    ``open()``, ``updates()`` and ``close()`` coroutines, such as
    :class:`transports.solana_pubsub.ProgramSubscription`.
    """

    def __init__(
        self,
        rpc,
        subscription_factory: Callable[[str, List[Dict[str, Any]]], Any],
        program_id: str,
        *,
        discriminator: bytes = INTERACTION_DISCRIMINATOR,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rpc = rpc
        self.subscription_factory = subscription_factory
        self.program_id = program_id
        self.filters = [memcmp_filter(0, discriminator)]
        self.capacity = capacity
        self.stalls = 0
        self._queue: Optional[asyncio.Queue] = None

    @property
    def backpressured(self) -> bool:
        return self._queue is not None and self._queue.full()

    async def snapshot(self) -> List[PendingUpdate]:
        accounts = await self.rpc.get_program_accounts(self.program_id, self.filters)
        log.info("snapshot returned %d interaction accounts", len(accounts))
        return [PendingUpdate(address, data) for address, data in accounts]

    async def subscribe(self) -> AsyncIterator[PendingUpdate]:
        subscription = self.subscription_factory(self.program_id, self.filters)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.capacity)
        self._queue = queue
        pump: Optional[asyncio.Task] = None
        try:
            await subscription.open()
            pump = asyncio.create_task(self._pump(subscription, queue))
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
        finally:
            if pump is not None and not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            await subscription.close()
            self._queue = None

    async def _pump(self, subscription, queue: asyncio.Queue) -> None:
        try:
            async for address, data in subscription.updates():
                if queue.full():
                    self.stalls += 1
                    log.warning(
                        "update queue full (%d pending); pausing live feed", queue.qsize()
                    )
                await queue.put(PendingUpdate(address, data))
        except Exception as exc:
            log.warning("live feed failed: %s", exc)
        else:
            log.info("live feed ended")
        await queue.put(_END)
