from __future__ import annotations

import json

import typer

from event_indexer.app.config import Settings, settings
from event_indexer.app.interface.api.serialization import serialize_stats
from event_indexer.app.interface.tasks.wiring import open_store


async def stats_task(*, cfg: Settings | None = None) -> None:
    """Task: print storage statistics as JSON."""
    cfg = cfg or settings

    store = await open_store(cfg)
    try:
        stats = await store.get_stats()
    finally:
        await store.dispose()

    typer.echo(json.dumps(serialize_stats(stats), indent=2))
