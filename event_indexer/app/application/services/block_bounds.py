from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal

from event_indexer.app.domain.ports.out import ChainClient


BlockSelector = int | str
_EARLIEST: Literal["earliest"] = "earliest"
_LATEST: Literal["latest"] = "latest"


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")

    @property
    def size(self) -> int:
        return max(0, self.to_block - self.from_block + 1)

    def batches(self, batch_size: int) -> Iterator["BlockRange"]:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        current = self.from_block
        while current <= self.to_block:
            batch_to = min(current + batch_size - 1, self.to_block)
            yield BlockRange(from_block=current, to_block=batch_to)
            current = batch_to + 1

    def __str__(self) -> str:
        return f"[{self.from_block}, {self.to_block}]"


def sweep_range(
    *,
    last_block: int,
    current_block: int,
    confirmations: int,
) -> BlockRange | None:
    """
    Next range the historical sweep should cover, or None if the chain has
    not advanced past the confirmation depth yet.
    """
    from_block = last_block + 1
    to_block = current_block - confirmations
    if from_block > to_block:
        return None
    return BlockRange(from_block=from_block, to_block=to_block)


def _parse_selector(value: BlockSelector) -> int | str:
    if isinstance(value, int):
        return value
    text = value.strip().lower()
    if text.isdigit():
        return int(text)
    return text


async def resolve_block_bounds(
    *,
    chain: ChainClient,
    from_block: BlockSelector,
    to_block: BlockSelector,
    start_block: int,
    confirmations: int,
) -> BlockRange:
    """
    Resolve from_block / to_block into concrete block numbers.

    - ints (or digit strings) are returned as-is,
    - "earliest" / "" -> the configured start block,
    - "latest" / ""   -> chain head minus the confirmation depth.
    """
    fb = _parse_selector(from_block)
    tb = _parse_selector(to_block)

    if isinstance(fb, str):
        if fb not in ("", _EARLIEST):
            raise ValueError(f"Unsupported from_block value: {from_block!r}")
        fb = start_block

    if isinstance(tb, str):
        if tb not in ("", _LATEST):
            raise ValueError(f"Unsupported to_block value: {to_block!r}")
        tb = max(0, await chain.get_current_block_number() - confirmations)

    block_range = BlockRange(from_block=fb, to_block=tb)
    block_range.validate()
    return block_range
