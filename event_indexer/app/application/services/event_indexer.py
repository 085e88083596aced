from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Callable, Sequence

from event_indexer.app.application.services.block_bounds import BlockRange, sweep_range
from event_indexer.app.domain.errors import ConfigurationError, DecodeError, RpcError, StorageError
from event_indexer.app.domain.models import ContractConfig, EventRecord, RawLog
from event_indexer.app.domain.ports.out import ChainClient, EventStore, LogSubscription


logger = logging.getLogger(__name__)


class IndexerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class SweepResult:
    block_range: BlockRange
    logs_processed: int
    logs_skipped: int


class EventIndexer:
    """
    Keeps storage in sync with the configured contracts using two feeds:

    - push: one chain subscription per (contract, event) pair; each delivered
      log is decoded and saved independently,
    - pull: a periodic sweep over ``[last_block + 1, head - confirmations]``
      that saves every log in the range and only then moves the cursor.

    Both feeds may deliver the same log. No deduplication happens here; the
    store's ``(transaction_hash, log_index)`` key absorbs repeats, which is
    also what makes re-sweeping a range after a crash safe.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: EventStore,
        contracts: Sequence[ContractConfig],
        start_block: int = 0,
        confirmations: int = 1,
        poll_interval: float = 5.0,
        block_batch_size: int = 2_000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not contracts:
            raise ConfigurationError("No contracts configured for indexing")
        names = [c.name for c in contracts]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate contract names: {names}")
        if start_block < 0 or confirmations < 0:
            raise ValueError("start_block and confirmations must be non-negative")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if block_batch_size <= 0:
            raise ValueError("block_batch_size must be positive")

        self._chain = chain
        self._store = store
        self._contracts = tuple(contracts)
        self._start_block = start_block
        self._confirmations = confirmations
        self._poll_interval = poll_interval
        self._block_batch_size = block_batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._state = IndexerState.STOPPED
        self._subscriptions: list[LogSubscription] = []
        self._stop_event: asyncio.Event | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._sweep_lock = asyncio.Lock()

    @property
    def state(self) -> IndexerState:
        return self._state

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._state is not IndexerState.STOPPED:
            logger.warning("Indexer is already %s", self._state.value)
            return

        self._state = IndexerState.STARTING
        logger.info("Starting event indexer for contracts: %s", ", ".join(c.name for c in self._contracts))
        try:
            await self._seed_cursor()
            if self._state is not IndexerState.STARTING:
                # stop() was called while the cursor was being seeded
                return
            self._subscribe_all()
        except BaseException:
            self._cancel_subscriptions()
            self._state = IndexerState.STOPPED
            raise

        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(self._stop_event), name="event-indexer:sweep"
        )
        self._state = IndexerState.RUNNING

    def stop(self) -> None:
        """
        Cancel the sweep timer and all subscriptions.

        Does not wait for an in-flight sweep or push delivery; those finish
        (or fail) on their own. Use ``wait_closed`` to await the sweep task.
        """
        if self._state in (IndexerState.STOPPED, IndexerState.STOPPING):
            return

        self._state = IndexerState.STOPPING
        if self._stop_event is not None:
            self._stop_event.set()
        self._cancel_subscriptions()
        self._state = IndexerState.STOPPED
        logger.info("Indexer stopped")

    async def wait_closed(self) -> None:
        task = self._poll_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _seed_cursor(self) -> None:
        last_block = await self._store.get_last_block()
        if last_block > 0:
            logger.info("Resuming from block %s", last_block)
            return
        # The cursor is the last *committed* block, so the start block itself is still pending.
        # With START_BLOCK=0 the cursor stays at 0 and sweeps begin at block 1; genesis carries no logs.
        await self._store.save_last_block(max(self._start_block - 1, 0))
        logger.info("Starting from block %s", self._start_block)

    def _subscribe_all(self) -> None:
        for contract in self._contracts:
            for event_abi in contract.events:
                subscription = self._chain.subscribe(
                    address=contract.address,
                    event_abi=event_abi,
                    on_event=partial(self.handle_push_event, contract),
                )
                self._subscriptions.append(subscription)
                logger.info("Listening for %s events on %s", event_abi.get("name"), contract.name)

    def _cancel_subscriptions(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

    # -------------------------------------------------------------------------
    # Pull feed
    # -------------------------------------------------------------------------

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("Unexpected error processing historical events")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def sweep(self) -> SweepResult | None:
        """
        One historical sweep tick.

        The confirmed range is indexed in batches of ``block_batch_size``
        blocks and the cursor is checkpointed after each batch. Returns None
        when there was nothing to do or the tick was aborted by an
        RPC/storage failure; the cursor then stays at the last fully stored
        batch and the rest is retried next time.
        """
        async with self._sweep_lock:
            try:
                current_block = await self._chain.get_current_block_number()
                last_block = await self._store.get_last_block()
                block_range = sweep_range(
                    last_block=last_block,
                    current_block=current_block,
                    confirmations=self._confirmations,
                )
                if block_range is None:
                    logger.debug(
                        "No new blocks to process (last=%s, head=%s, confirmations=%s)",
                        last_block,
                        current_block,
                        self._confirmations,
                    )
                    return None

                logger.info("Processing blocks %s to %s", block_range.from_block, block_range.to_block)
                processed = skipped = 0
                for batch in block_range.batches(self._block_batch_size):
                    batch_result = await self._index_range(batch)
                    # Checkpoint only after every log in the batch is stored.
                    await self._store.save_last_block(batch.to_block)
                    processed += batch_result.logs_processed
                    skipped += batch_result.logs_skipped
            except RpcError as exc:
                logger.warning("Sweep aborted by RPC failure, will retry: %s", exc)
                return None
            except StorageError as exc:
                logger.error("Sweep aborted by storage failure, will retry: %s", exc)
                return None

        result = SweepResult(block_range=block_range, logs_processed=processed, logs_skipped=skipped)
        logger.info(
            "Processed blocks %s (logs=%s, skipped=%s)",
            block_range,
            result.logs_processed,
            result.logs_skipped,
        )
        return result

    async def backfill(self, block_range: BlockRange) -> SweepResult:
        """Index an explicit range once. The cursor is not moved; errors propagate."""
        block_range.validate()
        async with self._sweep_lock:
            logger.info("Backfilling blocks %s to %s", block_range.from_block, block_range.to_block)
            processed = skipped = 0
            for batch in block_range.batches(self._block_batch_size):
                batch_result = await self._index_range(batch)
                processed += batch_result.logs_processed
                skipped += batch_result.logs_skipped
        return SweepResult(block_range=block_range, logs_processed=processed, logs_skipped=skipped)

    async def _index_range(self, block_range: BlockRange) -> SweepResult:
        processed = skipped = 0
        for contract in self._contracts:
            for event_abi in contract.events:
                logs = await self._chain.get_logs(
                    address=contract.address,
                    event_abi=event_abi,
                    from_block=block_range.from_block,
                    to_block=block_range.to_block,
                )
                for raw_log in logs:
                    try:
                        record = await self._build_record(contract, raw_log)
                    except DecodeError as exc:
                        skipped += 1
                        logger.warning(
                            "Skipping undecodable log %s:%s from %s: %s",
                            raw_log.transaction_hash,
                            raw_log.log_index,
                            contract.name,
                            exc,
                        )
                        continue
                    await self._store.save_event(record)
                    processed += 1

        return SweepResult(block_range=block_range, logs_processed=processed, logs_skipped=skipped)

    # -------------------------------------------------------------------------
    # Push feed
    # -------------------------------------------------------------------------

    async def handle_push_event(self, contract: ContractConfig, raw_log: RawLog) -> None:
        """Subscription callback; failures are logged per event and never propagate."""
        try:
            record = await self._build_record(contract, raw_log)
            await self._store.save_event(record)
        except DecodeError as exc:
            logger.warning(
                "Could not parse pushed log %s:%s from %s: %s",
                raw_log.transaction_hash,
                raw_log.log_index,
                contract.name,
                exc,
            )
            return
        except Exception:
            logger.exception(
                "Error handling pushed log %s:%s from %s",
                raw_log.transaction_hash,
                raw_log.log_index,
                contract.name,
            )
            return

        logger.info(
            "Indexed %s from %s (block %s, tx %s...)",
            record.event_name,
            contract.name,
            record.block_number,
            record.transaction_hash[:10],
        )

    async def _build_record(self, contract: ContractConfig, raw_log: RawLog) -> EventRecord:
        decoded = self._chain.decode_log(raw_log, contract.events)

        block_hash = raw_log.block_hash
        if not block_hash:
            block = await self._chain.get_block(raw_log.block_number)
            block_hash = block.hash

        return EventRecord(
            contract_name=contract.name,
            contract_address=(raw_log.address or contract.address).lower(),
            event_name=decoded.event_name,
            block_number=raw_log.block_number,
            block_hash=block_hash,
            transaction_hash=raw_log.transaction_hash.lower(),
            transaction_index=raw_log.transaction_index,
            log_index=raw_log.log_index,
            event_data=decoded.args,
            indexed_at=self._clock(),
        )
