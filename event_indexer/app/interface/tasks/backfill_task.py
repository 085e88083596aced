from __future__ import annotations

from event_indexer.app.application.services.block_bounds import resolve_block_bounds
from event_indexer.app.config import Settings, settings
from event_indexer.app.interface.tasks.wiring import build_chain, build_indexer, open_store


async def backfill_task(
    *,
    from_block: int | str,
    to_block: int | str,
    cfg: Settings | None = None,
) -> None:
    """
    Task: index every configured contract event in a block range once.

    from_block / to_block can be:
    - int (a specific block number),
    - "earliest" (the configured START_BLOCK),
    - "latest" (chain head minus CONFIRMATIONS).

    The sweep cursor is not moved.
    """
    cfg = cfg or settings

    store = await open_store(cfg)
    try:
        chain = build_chain(cfg)
        indexer = build_indexer(cfg, store=store, chain=chain)

        block_range = await resolve_block_bounds(
            chain=chain,
            from_block=from_block,
            to_block=to_block,
            start_block=cfg.start_block,
            confirmations=cfg.confirmations,
        )
        await indexer.backfill(block_range)
    finally:
        await store.dispose()
