from __future__ import annotations

from event_indexer.app.config import Settings
from event_indexer.app.domain.ports.out import ChainClient
from event_indexer.app.infrastructure.chain.web3_chain_client import Web3ChainClient


def chain_client_factory(cfg: Settings) -> ChainClient:
    """
    Wire the web3 chain client:
    - AsyncWeb3 HTTP provider with the configured request timeout,
    - head-polling subscriptions at SUBSCRIPTION_POLL_INTERVAL.
    """
    return Web3ChainClient.from_url(
        cfg.rpc_url,
        timeout=cfg.rpc_timeout,
        subscription_interval=cfg.subscription_poll_interval,
    )
