from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from event_indexer.app.domain.errors import StorageError
from event_indexer.app.domain.models import (
    EventFilter,
    EventRecord,
    IndexerStats,
    NamedCount,
    StoredEvent,
)


logger = logging.getLogger(__name__)


def _write_json_durably(path: Path, payload: Any) -> None:
    """Write to a sibling temp file, fsync it, then atomically replace ``path``."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    if hasattr(os, "O_DIRECTORY"):
        dir_fd = os.open(path.parent, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


def _event_to_json(event: StoredEvent) -> dict[str, Any]:
    data = asdict(event)
    data["indexed_at"] = event.indexed_at.isoformat()
    return data


def _event_from_json(data: dict[str, Any]) -> StoredEvent:
    return StoredEvent(**{**data, "indexed_at": datetime.fromisoformat(data["indexed_at"])})


def _count_by(events: Iterable[StoredEvent], key: Callable[[StoredEvent], str]) -> list[NamedCount]:
    counts: dict[str, int] = {}
    for event in events:
        counts[key(event)] = counts.get(key(event), 0) + 1
    return [NamedCount(name=name, count=counts[name]) for name in sorted(counts)]


class JsonFileEventStore:
    """
    Flat-file implementation of EventStore.

    Keeps two JSON documents next to the configured database path:
    ``<base>_events.json`` (list of events) and ``<base>_state.json``
    (``{"lastBlock": n}``). Every mutating call rewrites and fsyncs the whole
    file before returning, so writes cost O(n) in the number of stored events.

    The read-modify-rewrite cycle runs under one asyncio lock; the dedup
    index is rebuilt from disk on ``initialize``.
    """

    def __init__(self, *, database_path: Path) -> None:
        base = str(database_path)
        if base.endswith(".db"):
            base = base[: -len(".db")]
        self._events_path = Path(f"{base}_events.json")
        self._state_path = Path(f"{base}_state.json")

        self._lock = asyncio.Lock()
        self._events: list[StoredEvent] = []
        self._keys: set[tuple[str, int]] = set()
        self._last_id = 0
        self._last_block = 0

    @property
    def events_path(self) -> Path:
        return self._events_path

    @property
    def state_path(self) -> Path:
        return self._state_path

    async def initialize(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._load)
        logger.info(
            "Event store ready: %s (%s events, last_block=%s)",
            self._events_path,
            len(self._events),
            self._last_block,
        )

    async def dispose(self) -> None:
        return None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save_event(self, record: EventRecord) -> None:
        async with self._lock:
            if record.dedup_key in self._keys:
                logger.debug("save_event %s:%s already stored", *record.dedup_key)
                return

            event = StoredEvent(**{**asdict(record), "id": self._last_id + 1})
            events = [*self._events, event]
            await self._persist(self._events_path, [_event_to_json(e) for e in events])

            self._events = events
            self._keys.add(record.dedup_key)
            self._last_id = event.id

        logger.debug(
            "save_event %s:%s (%s.%s @ %s) id=%s",
            record.transaction_hash,
            record.log_index,
            record.contract_name,
            record.event_name,
            record.block_number,
            event.id,
        )

    async def save_last_block(self, block_number: int) -> None:
        if block_number < 0:
            raise ValueError("Block numbers must be non-negative")

        async with self._lock:
            if block_number < self._last_block:
                logger.debug(
                    "Ignoring cursor move backwards: stored=%s, requested=%s",
                    self._last_block,
                    block_number,
                )
                return
            await self._persist(self._state_path, {"lastBlock": block_number})
            self._last_block = block_number

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_last_block(self) -> int:
        return self._last_block

    async def get_events(self, filters: EventFilter) -> list[StoredEvent]:
        events = list(self._events)
        if filters.contract_name:
            events = [e for e in events if e.contract_name == filters.contract_name]
        if filters.event_name:
            events = [e for e in events if e.event_name == filters.event_name]
        if filters.from_block is not None:
            events = [e for e in events if e.block_number >= filters.from_block]
        if filters.to_block is not None:
            events = [e for e in events if e.block_number <= filters.to_block]

        events.sort(key=lambda e: (e.block_number, e.log_index), reverse=True)
        return events[filters.offset : filters.offset + filters.limit]

    async def get_events_by_transaction(self, transaction_hash: str) -> list[StoredEvent]:
        tx = transaction_hash.lower()
        return sorted(
            (e for e in self._events if e.transaction_hash == tx),
            key=lambda e: e.log_index,
        )

    async def get_events_by_contract(
        self,
        contract_name: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StoredEvent]:
        return await self.get_events(
            EventFilter(contract_name=contract_name, limit=limit, offset=offset)
        )

    async def get_stats(self) -> IndexerStats:
        events = list(self._events)
        return IndexerStats(
            total_events=len(events),
            events_by_contract=_count_by(events, lambda e: e.contract_name),
            events_by_type=_count_by(events, lambda e: e.event_name),
            last_processed_block=self._last_block,
        )

    # -------------------------------------------------------------------------
    # File I/O
    # -------------------------------------------------------------------------

    async def _persist(self, path: Path, payload: Any) -> None:
        try:
            await asyncio.to_thread(_write_json_durably, path, payload)
        except OSError as exc:
            raise StorageError(f"Writing {path} failed: {exc}") from exc

    def _load(self) -> None:
        try:
            self._events_path.parent.mkdir(parents=True, exist_ok=True)

            if self._events_path.exists():
                raw_events = json.loads(self._events_path.read_text(encoding="utf-8"))
                self._events = [_event_from_json(e) for e in raw_events]

            if self._state_path.exists():
                state = json.loads(self._state_path.read_text(encoding="utf-8"))
                self._last_block = int(state.get("lastBlock") or 0)
        except OSError as exc:
            raise StorageError(f"Reading event store files failed: {exc}") from exc
        except (ValueError, TypeError, KeyError) as exc:
            # Refuse to start on a corrupt file; the next rewrite would drop its contents.
            raise StorageError(f"Event store files are corrupt: {exc}") from exc

        self._keys = {e.dedup_key for e in self._events}
        self._last_id = max((e.id for e in self._events), default=0)
