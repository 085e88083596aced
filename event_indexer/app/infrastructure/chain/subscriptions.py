from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from event_indexer.app.domain.errors import RpcError
from event_indexer.app.domain.models import EventAbi, RawLog
from event_indexer.app.domain.ports.out import LogCallback


logger = logging.getLogger(__name__)


class _LogSource(Protocol):
    async def get_current_block_number(self) -> int: ...

    async def get_logs(
        self,
        *,
        address: str,
        event_abi: EventAbi,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]: ...


class PollingLogSubscription:
    """
    Push-style log feed built on head polling.

    Remembers the chain head it last observed; each tick it fetches logs for
    the newly observed blocks and hands every log to ``on_event`` on its own
    task, so a slow callback never delays polling. RPC failures are logged
    and retried on the next tick.

    ``cancel()`` stops polling only; deliveries already dispatched keep running.
    """

    def __init__(
        self,
        *,
        source: _LogSource,
        address: str,
        event_abi: EventAbi,
        on_event: LogCallback,
        interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._address = address
        self._event_abi = event_abi
        self._on_event = on_event
        self._interval = interval
        self._sleep = sleep

        self._head: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return f"{self._address}:{self._event_abi.get('name')}"

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_deliveries(self) -> set[asyncio.Task[None]]:
        return set(self._deliveries)

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"subscription:{self.name}"
        )

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def poll_once(self) -> int:
        """Fetch logs for blocks past the remembered head; returns how many were dispatched."""
        current = await self._source.get_current_block_number()
        if self._head is None:
            # First observation only anchors the head; history is the sweep's job.
            self._head = current
            return 0
        if current <= self._head:
            return 0

        logs = await self._source.get_logs(
            address=self._address,
            event_abi=self._event_abi,
            from_block=self._head + 1,
            to_block=current,
        )
        self._head = current

        for raw_log in logs:
            self._dispatch(raw_log)
        return len(logs)

    async def _run(self) -> None:
        logger.info("Listening for %s events on %s", self._event_abi.get("name"), self._address)
        while True:
            try:
                await self.poll_once()
            except RpcError as exc:
                logger.warning("Subscription %s poll failed: %s", self.name, exc)
            except Exception:
                logger.exception("Subscription %s poll crashed, retrying", self.name)
            await self._sleep(self._interval)

    def _dispatch(self, raw_log: RawLog) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(raw_log))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, raw_log: RawLog) -> None:
        try:
            await self._on_event(raw_log)
        except Exception:
            logger.exception(
                "Subscription %s callback failed for %s:%s",
                self.name,
                raw_log.transaction_hash,
                raw_log.log_index,
            )
