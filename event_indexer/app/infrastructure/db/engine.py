from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from event_indexer.app.config import Settings, settings as default_settings


def create_app_async_engine(
    *,
    database_url: str | None = None,
    echo: bool = False,
) -> AsyncEngine:
    """
    Factory for the AsyncEngine used by the event store.

    Centralizing engine creation keeps connection handling consistent
    across tasks and makes it easier to tweak pool settings in one place.
    For SQLite the parent directory of the database file is created.
    """
    url = make_url(database_url or default_settings.database_url or "")

    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
    )


def create_engine_from_settings(cfg: Settings) -> AsyncEngine:
    return create_app_async_engine(database_url=cfg.database_url)
