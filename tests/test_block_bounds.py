import pytest

from conftest import FakeChainClient

from event_indexer.app.application.services.block_bounds import (
    BlockRange,
    resolve_block_bounds,
    sweep_range,
)


def test_sweep_range_stops_short_of_confirmations():
    assert sweep_range(last_block=99, current_block=111, confirmations=1) == BlockRange(100, 110)


def test_sweep_range_is_none_until_chain_advances_past_confirmations():
    assert sweep_range(last_block=110, current_block=111, confirmations=1) is None
    assert sweep_range(last_block=110, current_block=110, confirmations=0) is None
    assert sweep_range(last_block=110, current_block=111, confirmations=0) == BlockRange(111, 111)


def test_block_range_validate():
    BlockRange(5, 5).validate()
    assert BlockRange(5, 9).size == 5
    with pytest.raises(ValueError):
        BlockRange(6, 5).validate()
    with pytest.raises(ValueError):
        BlockRange(-1, 5).validate()


async def test_resolve_earliest_and_latest():
    chain = FakeChainClient(head=500)

    block_range = await resolve_block_bounds(
        chain=chain,
        from_block="earliest",
        to_block="latest",
        start_block=120,
        confirmations=2,
    )

    assert block_range == BlockRange(120, 498)


async def test_resolve_passes_numbers_through():
    chain = FakeChainClient(head=500)

    block_range = await resolve_block_bounds(
        chain=chain, from_block="10", to_block=20, start_block=0, confirmations=1
    )

    assert block_range == BlockRange(10, 20)


async def test_resolve_rejects_unknown_selector_and_inverted_range():
    chain = FakeChainClient(head=500)

    with pytest.raises(ValueError):
        await resolve_block_bounds(
            chain=chain, from_block="genesis", to_block="latest", start_block=0, confirmations=1
        )
    with pytest.raises(ValueError):
        await resolve_block_bounds(
            chain=chain, from_block=30, to_block=20, start_block=0, confirmations=1
        )


def test_block_range_batches_cover_range_without_gaps():
    assert list(BlockRange(1, 10).batches(4)) == [BlockRange(1, 4), BlockRange(5, 8), BlockRange(9, 10)]
    assert list(BlockRange(7, 7).batches(100)) == [BlockRange(7, 7)]
    with pytest.raises(ValueError):
        list(BlockRange(1, 2).batches(0))
