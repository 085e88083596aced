from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from eth_abi import encode

from event_indexer.app.domain.errors import RpcError
from event_indexer.app.domain.models import (
    BlockInfo,
    ContractConfig,
    DecodedLog,
    EventAbi,
    EventRecord,
    RawLog,
)
from event_indexer.app.infrastructure.adapters.storage.json_file_event_store import JsonFileEventStore
from event_indexer.app.infrastructure.adapters.storage.sqlalchemy_event_store import SqlAlchemyEventStore
from event_indexer.app.infrastructure.db.engine import create_app_async_engine
from event_indexer.app.infrastructure.decoders.abi_event_decoder import AbiEventDecoder, event_topic


NFT_ADDRESS = "0x1e3d7fd130aaadf17dfafa50370044813854bf53"
GASLESS_ADDRESS = "0x00000000000000000000000000000000000000aa"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

TRANSFER_ABI: dict[str, Any] = {
    "type": "event",
    "name": "Transfer",
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "from", "type": "address"},
        {"indexed": True, "name": "to", "type": "address"},
        {"indexed": True, "name": "tokenId", "type": "uint256"},
    ],
}

MESSAGE_POSTED_ABI: dict[str, Any] = {
    "type": "event",
    "name": "MessagePosted",
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "user", "type": "address"},
        {"indexed": False, "name": "message", "type": "string"},
    ],
}

NFT = ContractConfig(name="nft", address=NFT_ADDRESS, events=(TRANSFER_ABI,))
GASLESS = ContractConfig(name="gasless", address=GASLESS_ADDRESS, events=(MESSAGE_POSTED_ABI,))


def tx_hash(n: int) -> str:
    return f"0x{n:064x}"


def block_hash(n: int) -> str:
    return f"0x{'b' * 56}{n:08x}"


def transfer_log(
    *,
    block: int,
    log_index: int,
    tx: int | None = None,
    token_id: int = 1,
    sender: str = ALICE,
    recipient: str = BOB,
    with_block_hash: bool = True,
) -> RawLog:
    return RawLog(
        address=NFT_ADDRESS,
        topics=(
            event_topic(TRANSFER_ABI),
            encode(["address"], [sender]),
            encode(["address"], [recipient]),
            encode(["uint256"], [token_id]),
        ),
        data=b"",
        block_number=block,
        block_hash=block_hash(block) if with_block_hash else None,
        transaction_hash=tx_hash(tx if tx is not None else block * 1000 + log_index),
        transaction_index=0,
        log_index=log_index,
    )


def message_log(*, block: int, log_index: int, message: str = "gm", user: str = ALICE) -> RawLog:
    return RawLog(
        address=GASLESS_ADDRESS,
        topics=(event_topic(MESSAGE_POSTED_ABI), encode(["address"], [user])),
        data=encode(["string"], [message]),
        block_number=block,
        block_hash=block_hash(block),
        transaction_hash=tx_hash(block * 1000 + log_index),
        transaction_index=1,
        log_index=log_index,
    )


def make_record(
    *,
    block: int,
    log_index: int,
    contract_name: str = "nft",
    event_name: str = "Transfer",
    tx: int | None = None,
    event_data: dict[str, Any] | None = None,
) -> EventRecord:
    return EventRecord(
        contract_name=contract_name,
        contract_address=NFT_ADDRESS if contract_name == "nft" else GASLESS_ADDRESS,
        event_name=event_name,
        block_number=block,
        block_hash=block_hash(block),
        transaction_hash=tx_hash(tx if tx is not None else block * 1000 + log_index),
        transaction_index=0,
        log_index=log_index,
        event_data=event_data if event_data is not None else {"tokenId": str(log_index)},
        indexed_at=FIXED_NOW,
    )


class FakeSubscription:
    def __init__(self, *, address: str, event_abi: EventAbi, on_event: Any) -> None:
        self.address = address
        self.event_abi = event_abi
        self.on_event = on_event
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeChainClient:
    """In-memory ChainClient; decoding goes through the real ABI decoder."""

    def __init__(self, *, head: int = 0, chain_id: int = 421614) -> None:
        self.head = head
        self.chain_id = chain_id
        self.logs: list[RawLog] = []
        self.subscriptions: list[FakeSubscription] = []
        self.get_logs_calls: list[tuple[str, str, int, int]] = []
        self.get_block_calls: list[int] = []
        self.fail_block_number = False
        self.fail_get_logs = False

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_current_block_number(self) -> int:
        if self.fail_block_number:
            raise RpcError("eth_blockNumber failed: timeout")
        return self.head

    async def get_logs(
        self,
        *,
        address: str,
        event_abi: EventAbi,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        if from_block > to_block:
            return []
        self.get_logs_calls.append((address, str(event_abi["name"]), from_block, to_block))
        if self.fail_get_logs:
            raise RpcError("eth_getLogs failed: connection reset")
        topic0 = event_topic(event_abi)
        return [
            log
            for log in self.logs
            if log.address == address.lower()
            and log.topics
            and log.topics[0] == topic0
            and from_block <= log.block_number <= to_block
        ]

    def subscribe(self, *, address: str, event_abi: EventAbi, on_event: Any) -> FakeSubscription:
        subscription = FakeSubscription(address=address, event_abi=event_abi, on_event=on_event)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def active_subscriptions(self) -> list[FakeSubscription]:
        return [s for s in self.subscriptions if not s.cancelled]

    async def push(self, raw_log: RawLog) -> None:
        topic0 = raw_log.topics[0]
        for subscription in self.active_subscriptions:
            if subscription.address == raw_log.address and event_topic(subscription.event_abi) == topic0:
                await subscription.on_event(raw_log)

    def decode_log(self, raw_log: RawLog, events: Any) -> DecodedLog:
        return AbiEventDecoder(events).decode(raw_log)

    async def get_block(self, block_number: int) -> BlockInfo:
        self.get_block_calls.append(block_number)
        return BlockInfo(number=block_number, hash=block_hash(block_number))


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient(head=0)


@pytest.fixture(params=["sqlalchemy", "json"])
def store_factory(request, tmp_path):
    """Builds (uninitialized) stores of the parametrized backend over the same files."""

    def _make():
        if request.param == "sqlalchemy":
            engine = create_app_async_engine(
                database_url=f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}"
            )
            return SqlAlchemyEventStore(engine=engine)
        return JsonFileEventStore(database_path=tmp_path / "indexer.db")

    _make.backend = request.param
    return _make


@pytest.fixture
async def store(store_factory):
    s = store_factory()
    await s.initialize()
    yield s
    await s.dispose()
