from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from event_indexer.app.infrastructure.db.db_base import BaseDB


class EventDB(BaseDB):
    """
    Decoded contract events, one row per EVM log.

    Each row is uniquely identified across redeliveries by
    (transaction_hash, log_index); inserts use ON CONFLICT DO NOTHING so the
    first write wins.

    Hashes and addresses are stored as lowercase 0x-prefixed hex text.
    Decoded arguments live in ``event_data`` as a JSON object whose integer
    values are decimal strings.
    """

    __tablename__ = "events"
    __table_args__ = (
        # Natural dedup key
        UniqueConstraint("transaction_hash", "log_index", name="uq_events_tx_log"),

        Index("ix_events_contract_name", "contract_name"),
        Index("ix_events_event_name", "event_name"),
        Index("ix_events_block_log", "block_number", "log_index"),
        Index("ix_events_transaction_hash", "transaction_hash"),
    )

    """Surrogate key, assigned at insert time."""
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # -------------------------------------------------------------------------
    # Contract / event identity
    # -------------------------------------------------------------------------

    """Logical contract name from the registry (not on-chain)."""
    contract_name: Mapped[str] = mapped_column(String(128), nullable=False)

    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    event_name: Mapped[str] = mapped_column(String(128), nullable=False)

    # -------------------------------------------------------------------------
    # Position on chain
    # -------------------------------------------------------------------------

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    """May be empty when the block hash could not be resolved."""
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    transaction_index: Mapped[int] = mapped_column(Integer, nullable=False)

    """Index of the log within the block (0-based)."""
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # -------------------------------------------------------------------------
    # Payload
    # -------------------------------------------------------------------------

    event_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    """Wall-clock time this node stored the row (not chain time)."""
    indexed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IndexerStateDB(BaseDB):
    """Key/value progress markers. ``last_block`` is the sweep cursor."""

    __tablename__ = "indexer_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
