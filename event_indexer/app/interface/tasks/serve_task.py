from __future__ import annotations

import logging

import uvicorn

from event_indexer.app.config import Settings, settings
from event_indexer.app.interface.api.app import create_app
from event_indexer.app.interface.tasks.wiring import (
    build_chain,
    build_indexer,
    check_chain_id,
    open_store,
)


logger = logging.getLogger(__name__)


async def serve_task(*, cfg: Settings | None = None) -> None:
    """
    Task: run the indexer (push + periodic sweep) and the query API in one event loop.

    Returns after SIGINT/SIGTERM; the indexer is stopped and the store released.
    """
    cfg = cfg or settings

    store = await open_store(cfg)
    try:
        chain = build_chain(cfg)
        indexer = build_indexer(cfg, store=store, chain=chain)
        await check_chain_id(chain, cfg.chain_id)

        logger.info("RPC: %s", cfg.rpc_url)
        logger.info("Storage: %s (%s)", cfg.storage_backend, cfg.database_path)
        logger.info("API: http://%s:%s", cfg.api_host, cfg.api_port)

        server = uvicorn.Server(
            uvicorn.Config(
                create_app(store),
                host=cfg.api_host,
                port=cfg.api_port,
                log_level=cfg.log_level.lower(),
            )
        )

        await indexer.start()
        try:
            await server.serve()
        finally:
            logger.info("Shutting down indexer...")
            indexer.stop()
            await indexer.wait_closed()
    finally:
        await store.dispose()
