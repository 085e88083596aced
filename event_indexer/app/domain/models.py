from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence


EventAbi = Mapping[str, Any]
"""A single ABI entry with ``"type": "event"``."""


@dataclass(frozen=True)
class RawLog:
    """
    Chain-library-agnostic view of an EVM log.

    Hex identifiers are lowercase ``0x``-prefixed strings; topics and data
    are raw bytes. ``block_hash`` may be ``None`` for logs delivered before
    their block was sealed.
    """

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    block_number: int
    block_hash: str | None
    transaction_hash: str
    transaction_index: int
    log_index: int


@dataclass(frozen=True)
class DecodedLog:
    event_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class BlockInfo:
    number: int
    hash: str
    timestamp: int | None = None


@dataclass(frozen=True)
class ContractConfig:
    """Registry entry: logical contract name, lowercase address and its event ABI entries."""

    name: str
    address: str
    events: tuple[EventAbi, ...]

    @property
    def event_names(self) -> list[str]:
        return [str(e["name"]) for e in self.events]


@dataclass(frozen=True)
class EventRecord:
    """
    An event ready to be persisted (no surrogate key yet).

    ``(transaction_hash, log_index)`` is the natural dedup key.
    """

    contract_name: str
    contract_address: str
    event_name: str
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    event_data: dict[str, Any]
    indexed_at: datetime

    @property
    def dedup_key(self) -> tuple[str, int]:
        return self.transaction_hash, self.log_index


@dataclass(frozen=True)
class StoredEvent(EventRecord):
    """A persisted event together with its monotonically increasing id."""

    id: int = 0


@dataclass(frozen=True)
class EventFilter:
    contract_name: str | None = None
    event_name: str | None = None
    from_block: int | None = None
    to_block: int | None = None
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True)
class NamedCount:
    name: str
    count: int


@dataclass(frozen=True)
class IndexerStats:
    total_events: int
    events_by_contract: Sequence[NamedCount] = field(default_factory=tuple)
    events_by_type: Sequence[NamedCount] = field(default_factory=tuple)
    last_processed_block: int = 0
