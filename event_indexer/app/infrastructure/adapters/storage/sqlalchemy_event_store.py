from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import timezone
from typing import Any, Iterator, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from event_indexer.app.domain.errors import StorageError
from event_indexer.app.domain.models import (
    EventFilter,
    EventRecord,
    IndexerStats,
    NamedCount,
    StoredEvent,
)
from event_indexer.app.infrastructure.db.db_base import BaseDB
from event_indexer.app.infrastructure.db.models.events import EventDB, IndexerStateDB


logger = logging.getLogger(__name__)

_LAST_BLOCK_KEY = "last_block"


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


def _row_to_event(row: Mapping[str, Any]) -> StoredEvent:
    indexed_at = row["indexed_at"]
    # SQLite drops tzinfo on the way back.
    if indexed_at.tzinfo is None:
        indexed_at = indexed_at.replace(tzinfo=timezone.utc)

    return StoredEvent(
        id=row["id"],
        contract_name=row["contract_name"],
        contract_address=row["contract_address"],
        event_name=row["event_name"],
        block_number=row["block_number"],
        block_hash=row["block_hash"],
        transaction_hash=row["transaction_hash"],
        transaction_index=row["transaction_index"],
        log_index=row["log_index"],
        event_data=dict(row["event_data"] or {}),
        indexed_at=indexed_at,
    )


class SqlAlchemyEventStore:
    """
    SQLAlchemy implementation of EventStore (SQLite via aiosqlite, or PostgreSQL via asyncpg).

    Uses a dialect-specific INSERT ... ON CONFLICT (transaction_hash, log_index)
    DO NOTHING so duplicate deliveries are absorbed by the unique constraint.
    Writes are additionally serialized through a single asyncio lock; SQLite
    allows one writer at a time anyway.
    """

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine
        self._write_lock = asyncio.Lock()

        dialect = engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise ValueError(f"Unsupported database dialect for event store: {dialect!r}")
        self._insert = insert

    async def initialize(self) -> None:
        with _storage_errors("initialize"):
            async with self._engine.begin() as conn:
                await conn.run_sync(BaseDB.metadata.create_all)
        logger.info("Event store ready: %s", self._engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self._engine.dispose()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save_event(self, record: EventRecord) -> None:
        stmt = (
            self._insert(EventDB)
            .values(
                contract_name=record.contract_name,
                contract_address=record.contract_address,
                event_name=record.event_name,
                block_number=record.block_number,
                block_hash=record.block_hash,
                transaction_hash=record.transaction_hash,
                transaction_index=record.transaction_index,
                log_index=record.log_index,
                event_data=record.event_data,
                indexed_at=record.indexed_at,
            )
            .on_conflict_do_nothing(index_elements=["transaction_hash", "log_index"])
        )

        with _storage_errors("save_event"):
            async with self._write_lock:
                async with self._engine.begin() as conn:
                    result = await conn.execute(stmt)

        logger.debug(
            "save_event %s:%s (%s.%s @ %s) inserted_rowcount=%s",
            record.transaction_hash,
            record.log_index,
            record.contract_name,
            record.event_name,
            record.block_number,
            getattr(result, "rowcount", None),
        )

    async def save_last_block(self, block_number: int) -> None:
        if block_number < 0:
            raise ValueError("Block numbers must be non-negative")

        value = str(block_number)
        stmt = self._insert(IndexerStateDB).values(key=_LAST_BLOCK_KEY, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value})

        with _storage_errors("save_last_block"):
            async with self._write_lock:
                async with self._engine.begin() as conn:
                    current = await self._read_last_block(conn)
                    if current is not None and block_number < current:
                        logger.debug(
                            "Ignoring cursor move backwards: stored=%s, requested=%s",
                            current,
                            block_number,
                        )
                        return
                    await conn.execute(stmt)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_last_block(self) -> int:
        with _storage_errors("get_last_block"):
            async with self._engine.connect() as conn:
                current = await self._read_last_block(conn)
        return current or 0

    async def get_events(self, filters: EventFilter) -> list[StoredEvent]:
        stmt = select(EventDB.__table__)
        if filters.contract_name:
            stmt = stmt.where(EventDB.contract_name == filters.contract_name)
        if filters.event_name:
            stmt = stmt.where(EventDB.event_name == filters.event_name)
        if filters.from_block is not None:
            stmt = stmt.where(EventDB.block_number >= filters.from_block)
        if filters.to_block is not None:
            stmt = stmt.where(EventDB.block_number <= filters.to_block)

        stmt = (
            stmt.order_by(EventDB.block_number.desc(), EventDB.log_index.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return await self._fetch_events(stmt, "get_events")

    async def get_events_by_transaction(self, transaction_hash: str) -> list[StoredEvent]:
        stmt = (
            select(EventDB.__table__)
            .where(EventDB.transaction_hash == transaction_hash.lower())
            .order_by(EventDB.log_index.asc())
        )
        return await self._fetch_events(stmt, "get_events_by_transaction")

    async def get_events_by_contract(
        self,
        contract_name: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StoredEvent]:
        stmt = (
            select(EventDB.__table__)
            .where(EventDB.contract_name == contract_name)
            .order_by(EventDB.block_number.desc(), EventDB.log_index.desc())
            .limit(limit)
            .offset(offset)
        )
        return await self._fetch_events(stmt, "get_events_by_contract")

    async def get_stats(self) -> IndexerStats:
        by_contract_sql = (
            select(EventDB.contract_name, func.count().label("count"))
            .group_by(EventDB.contract_name)
            .order_by(EventDB.contract_name)
        )
        by_type_sql = (
            select(EventDB.event_name, func.count().label("count"))
            .group_by(EventDB.event_name)
            .order_by(EventDB.event_name)
        )

        with _storage_errors("get_stats"):
            # One connection so the counts and the cursor are read together.
            async with self._engine.connect() as conn:
                total = (await conn.execute(select(func.count()).select_from(EventDB))).scalar_one()
                by_contract = (await conn.execute(by_contract_sql)).all()
                by_type = (await conn.execute(by_type_sql)).all()
                last_block = await self._read_last_block(conn)

        return IndexerStats(
            total_events=int(total),
            events_by_contract=[NamedCount(name=r[0], count=int(r[1])) for r in by_contract],
            events_by_type=[NamedCount(name=r[0], count=int(r[1])) for r in by_type],
            last_processed_block=last_block or 0,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _fetch_events(self, stmt: Any, action: str) -> list[StoredEvent]:
        with _storage_errors(action):
            async with self._engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.mappings().all()
        return [_row_to_event(r) for r in rows]

    @staticmethod
    async def _read_last_block(conn: AsyncConnection) -> int | None:
        result = await conn.execute(
            select(IndexerStateDB.value).where(IndexerStateDB.key == _LAST_BLOCK_KEY)
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None
