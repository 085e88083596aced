import asyncio
import logging

import pytest

from conftest import NFT_ADDRESS, TRANSFER_ABI, FakeChainClient, transfer_log

from event_indexer.app.domain.errors import RpcError
from event_indexer.app.infrastructure.chain.subscriptions import PollingLogSubscription
from event_indexer.app.infrastructure.chain.web3_chain_client import Web3ChainClient, to_raw_log


def _subscription(chain, on_event, interval=0.01):
    return PollingLogSubscription(
        source=chain,
        address=NFT_ADDRESS,
        event_abi=TRANSFER_ABI,
        on_event=on_event,
        interval=interval,
    )


async def test_first_poll_only_anchors_the_head():
    chain = FakeChainClient(head=100)
    chain.logs.append(transfer_log(block=90, log_index=0))
    delivered = []

    async def on_event(raw_log):
        delivered.append(raw_log)

    subscription = _subscription(chain, on_event)

    assert await subscription.poll_once() == 0
    assert chain.get_logs_calls == []
    assert delivered == []


async def test_new_blocks_are_fetched_and_delivered():
    chain = FakeChainClient(head=100)
    delivered = []

    async def on_event(raw_log):
        delivered.append(raw_log)

    subscription = _subscription(chain, on_event)
    await subscription.poll_once()

    chain.head = 103
    chain.logs.extend([transfer_log(block=101, log_index=0), transfer_log(block=103, log_index=2)])

    assert await subscription.poll_once() == 2
    await asyncio.gather(*subscription.pending_deliveries)

    assert chain.get_logs_calls == [(NFT_ADDRESS, "Transfer", 101, 103)]
    assert sorted(log.block_number for log in delivered) == [101, 103]
    assert await subscription.poll_once() == 0


async def test_callback_failure_is_logged_and_polling_continues(caplog):
    chain = FakeChainClient(head=10)

    async def on_event(raw_log):
        raise RuntimeError("boom")

    subscription = _subscription(chain, on_event)
    await subscription.poll_once()
    chain.head = 11
    chain.logs.append(transfer_log(block=11, log_index=0))

    with caplog.at_level(logging.ERROR):
        await subscription.poll_once()
        await asyncio.gather(*subscription.pending_deliveries)

    assert "callback failed" in caplog.text
    chain.head = 12
    assert await subscription.poll_once() == 0


async def test_rpc_failures_do_not_stop_the_subscription_task():
    chain = FakeChainClient(head=10)
    chain.fail_block_number = True
    delivered = []

    async def on_event(raw_log):
        delivered.append(raw_log)

    subscription = _subscription(chain, on_event)
    subscription.start()
    await asyncio.sleep(0.05)
    assert subscription.active

    chain.fail_block_number = False
    await asyncio.sleep(0.05)
    chain.head = 12
    chain.logs.append(transfer_log(block=12, log_index=0))
    await asyncio.sleep(0.05)

    subscription.cancel()
    await asyncio.sleep(0)
    assert not subscription.active
    assert [log.block_number for log in delivered] == [12]


async def test_web3_client_returns_empty_for_inverted_range_without_rpc():
    client = Web3ChainClient(w3=None)  # type: ignore[arg-type]

    logs = await client.get_logs(address=NFT_ADDRESS, event_abi=TRANSFER_ABI, from_block=11, to_block=10)

    assert logs == []


def test_to_raw_log_normalises_web3_log():
    expected = transfer_log(block=7, log_index=3)
    web3_log = {
        "address": "0x1E3D7FD130AAADF17DFAFA50370044813854BF53",
        "topics": list(expected.topics),
        "data": "0x",
        "blockNumber": 7,
        "blockHash": bytes.fromhex(expected.block_hash[2:]),
        "transactionHash": bytes.fromhex(expected.transaction_hash[2:]),
        "transactionIndex": 0,
        "logIndex": 3,
    }

    assert to_raw_log(web3_log) == expected


async def test_unexpected_poll_error_is_logged_and_subscription_keeps_going(caplog):
    class GlitchyChain(FakeChainClient):
        glitches = 1

        async def get_logs(self, **kwargs):
            if self.glitches:
                self.glitches -= 1
                raise KeyError("logIndex")
            return await super().get_logs(**kwargs)

    chain = GlitchyChain(head=10)
    delivered = []

    async def on_event(raw_log):
        delivered.append(raw_log)

    subscription = _subscription(chain, on_event)
    with caplog.at_level(logging.ERROR):
        subscription.start()
        await asyncio.sleep(0.03)
        chain.head = 11
        await asyncio.sleep(0.05)

        chain.head = 12
        chain.logs.append(transfer_log(block=12, log_index=0))
        await asyncio.sleep(0.05)

    assert subscription.active
    subscription.cancel()
    assert "poll crashed" in caplog.text
    assert [log.block_number for log in delivered] == [12]


class _StubEth:
    def __init__(self, logs):
        self._logs = logs

    async def get_logs(self, params):
        return self._logs


class _StubWeb3:
    def __init__(self, logs):
        self.eth = _StubEth(logs)


async def test_web3_client_reports_malformed_logs_as_rpc_errors():
    client = Web3ChainClient(w3=_StubWeb3([{"address": NFT_ADDRESS, "topics": []}]))  # type: ignore[arg-type]

    with pytest.raises(RpcError):
        await client.get_logs(address=NFT_ADDRESS, event_abi=TRANSFER_ABI, from_block=1, to_block=2)
