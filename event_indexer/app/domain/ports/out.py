from __future__ import annotations

from typing import Awaitable, Callable, Protocol, Sequence

from event_indexer.app.domain.models import (
    BlockInfo,
    DecodedLog,
    EventAbi,
    EventFilter,
    EventRecord,
    IndexerStats,
    RawLog,
    StoredEvent,
)


LogCallback = Callable[[RawLog], Awaitable[None]]


class EventStore(Protocol):
    """
    Port for durable event storage.

    Implementations must be safe under concurrent calls from several push
    callbacks and the historical sweep at the same time:

    - ``save_event`` is idempotent on ``(transaction_hash, log_index)``;
      a duplicate is a silent no-op and the first write wins.
    - ``save_last_block`` / ``get_last_block`` are durable before they
      return; the cursor never moves backwards.
    """

    async def initialize(self) -> None: ...

    async def dispose(self) -> None: ...

    async def save_event(self, record: EventRecord) -> None: ...

    async def get_events(self, filters: EventFilter) -> list[StoredEvent]:
        """Newest first: block_number DESC, log_index DESC, then paginated."""
        ...

    async def get_events_by_transaction(self, transaction_hash: str) -> list[StoredEvent]:
        """Emission order within the transaction (log_index ASC)."""
        ...

    async def get_events_by_contract(
        self,
        contract_name: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StoredEvent]: ...

    async def get_stats(self) -> IndexerStats: ...

    async def save_last_block(self, block_number: int) -> None: ...

    async def get_last_block(self) -> int: ...


class LogSubscription(Protocol):
    """Handle returned by ``ChainClient.subscribe``."""

    def cancel(self) -> None: ...


class ChainClient(Protocol):
    """
    Port for the RPC provider.

    Network failures surface as ``RpcError``; ``decode_log`` raises
    ``DecodeError`` when the log does not belong to the given events.
    """

    async def get_chain_id(self) -> int: ...

    async def get_current_block_number(self) -> int: ...

    async def get_logs(
        self,
        *,
        address: str,
        event_abi: EventAbi,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Returns an empty list when ``from_block > to_block``."""
        ...

    def subscribe(
        self,
        *,
        address: str,
        event_abi: EventAbi,
        on_event: LogCallback,
    ) -> LogSubscription:
        """
        Register a push callback for new matching logs.

        Delivery is at-least-once and may overlap with historical queries.
        Must be called from a running event loop.
        """
        ...

    def decode_log(self, raw_log: RawLog, events: Sequence[EventAbi]) -> DecodedLog: ...

    async def get_block(self, block_number: int) -> BlockInfo: ...
