from __future__ import annotations

import logging

from event_indexer.app.application.services.event_indexer import EventIndexer
from event_indexer.app.config import Settings
from event_indexer.app.domain.errors import RpcError
from event_indexer.app.domain.ports.out import ChainClient, EventStore
from event_indexer.app.infrastructure.factories.chain_client_factory import chain_client_factory
from event_indexer.app.infrastructure.factories.event_store_factory import event_store_factory
from event_indexer.app.registry.contracts import load_contracts


logger = logging.getLogger(__name__)


async def open_store(cfg: Settings) -> EventStore:
    store = event_store_factory(cfg.storage_backend, cfg)
    await store.initialize()
    return store


async def check_chain_id(chain: ChainClient, expected: int) -> None:
    try:
        actual = await chain.get_chain_id()
    except RpcError as exc:
        logger.warning("Could not read chain id from RPC: %s", exc)
        return
    if actual != expected:
        logger.warning("RPC reports chain id %s but CHAIN_ID is %s", actual, expected)


def build_indexer(cfg: Settings, *, store: EventStore, chain: ChainClient) -> EventIndexer:
    """Load the contract registry (fatal on error) and wire the indexing engine."""
    contracts = load_contracts(cfg.contracts_path)
    return EventIndexer(
        chain=chain,
        store=store,
        contracts=contracts,
        start_block=cfg.start_block,
        confirmations=cfg.confirmations,
        poll_interval=cfg.poll_interval,
        block_batch_size=cfg.block_batch_size,
    )


def build_chain(cfg: Settings) -> ChainClient:
    return chain_client_factory(cfg)
