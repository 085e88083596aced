from __future__ import annotations

import logging
from typing import Any, Awaitable, Mapping, Sequence, TypeVar

from eth_utils import to_bytes, to_checksum_address, to_hex
from web3 import AsyncHTTPProvider, AsyncWeb3

from event_indexer.app.domain.errors import RpcError
from event_indexer.app.domain.models import BlockInfo, DecodedLog, EventAbi, RawLog
from event_indexer.app.domain.ports.out import LogCallback
from event_indexer.app.infrastructure.chain.subscriptions import PollingLogSubscription
from event_indexer.app.infrastructure.decoders.abi_event_decoder import (
    AbiEventDecoder,
    event_signature,
    event_topic,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return to_hex(bytes(value))
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _raw_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return to_bytes(hexstr=str(value))


def to_raw_log(log: Mapping[str, Any]) -> RawLog:
    """Normalise a web3 ``LogReceipt`` (HexBytes, checksum addresses) into a RawLog."""
    block_hash = log.get("blockHash")
    return RawLog(
        address=_hex(log["address"]),
        topics=tuple(_raw_bytes(t) for t in log.get("topics", [])),
        data=_raw_bytes(log.get("data") or b""),
        block_number=int(log["blockNumber"]),
        block_hash=_hex(block_hash) if block_hash else None,
        transaction_hash=_hex(log["transactionHash"]),
        transaction_index=int(log.get("transactionIndex") or 0),
        log_index=int(log["logIndex"]),
    )


class Web3ChainClient:
    """
    ChainClient on top of AsyncWeb3.

    Every RPC goes through ``_rpc`` so transport problems (timeouts, resets,
    JSON-RPC errors) surface as ``RpcError``.
    """

    def __init__(self, *, w3: AsyncWeb3, subscription_interval: float = 2.0) -> None:
        self._w3 = w3
        self._subscription_interval = subscription_interval
        self._decoders: dict[tuple[str, ...], AbiEventDecoder] = {}

    @classmethod
    def from_url(
        cls,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        subscription_interval: float = 2.0,
    ) -> "Web3ChainClient":
        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
            )
        )
        return cls(w3=w3, subscription_interval=subscription_interval)

    async def get_chain_id(self) -> int:
        return int(await self._rpc("eth_chainId", self._w3.eth.chain_id))

    async def get_current_block_number(self) -> int:
        return int(await self._rpc("eth_blockNumber", self._w3.eth.block_number))

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

        params = {
            "address": to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [to_hex(event_topic(event_abi))],
        }
        logs = await self._rpc(
            f"eth_getLogs {event_abi.get('name')} [{from_block}, {to_block}]",
            self._w3.eth.get_logs(params),
        )
        try:
            return [to_raw_log(log) for log in logs]
        except (KeyError, TypeError, ValueError) as exc:
            raise RpcError(f"eth_getLogs returned a malformed log: {exc!r}") from exc

    def subscribe(
        self,
        *,
        address: str,
        event_abi: EventAbi,
        on_event: LogCallback,
    ) -> PollingLogSubscription:
        subscription = PollingLogSubscription(
            source=self,
            address=address,
            event_abi=event_abi,
            on_event=on_event,
            interval=self._subscription_interval,
        )
        subscription.start()
        return subscription

    def decode_log(self, raw_log: RawLog, events: Sequence[EventAbi]) -> DecodedLog:
        key = tuple(event_signature(e) for e in events)
        decoder = self._decoders.get(key)
        if decoder is None:
            decoder = self._decoders[key] = AbiEventDecoder(events)
        return decoder.decode(raw_log)

    async def get_block(self, block_number: int) -> BlockInfo:
        block = await self._rpc(
            f"eth_getBlockByNumber {block_number}",
            self._w3.eth.get_block(block_number),
        )
        if block is None or not block.get("hash"):
            raise RpcError(f"Block {block_number} not available")
        return BlockInfo(
            number=int(block["number"]),
            hash=_hex(block["hash"]),
            timestamp=int(block["timestamp"]) if block.get("timestamp") is not None else None,
        )

    @staticmethod
    async def _rpc(what: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except RpcError:
            raise
        except Exception as exc:
            # Network / timeout / provider error
            raise RpcError(f"{what} failed: {exc}") from exc
