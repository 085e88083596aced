from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Sequence

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from event_indexer.app.domain.errors import DecodeError
from event_indexer.app.domain.models import DecodedLog, EventAbi, RawLog


def load_abi(abi_path: Path) -> list[dict[str, Any]]:
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")
    data = json.loads(abi_path.read_text(encoding="utf-8"))

    # Common formats:
    # - [ ... ] (ABI list)
    # - { "abi": [ ... ] } (artifact)
    if isinstance(data, list):
        abi = data
    elif isinstance(data, dict) and isinstance(data.get("abi"), list):
        abi = data["abi"]
    else:
        raise ValueError(
            f"Unsupported ABI JSON format in {abi_path}. Expected list or dict with 'abi' list."
        )
    return [x for x in abi if isinstance(x, dict)]


def canonical_type(abi_input: Mapping[str, Any]) -> str:
    """``tuple`` types are expanded into ``(t1,t2,...)`` keeping any array suffix."""
    typ = abi_input.get("type")
    if not isinstance(typ, str):
        raise ValueError("Invalid event ABI inputs")
    if typ.startswith("tuple"):
        components = abi_input.get("components") or []
        inner = ",".join(canonical_type(c) for c in components)
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def event_signature(event_abi: EventAbi) -> str:
    name = event_abi.get("name")
    inputs = event_abi.get("inputs", [])
    if not isinstance(name, str) or not isinstance(inputs, list):
        raise ValueError("Invalid event ABI: missing name/inputs")
    return f"{name}({','.join(canonical_type(i) for i in inputs)})"


def event_topic(event_abi: EventAbi) -> bytes:
    """topic0 = keccak("EventName(type1,type2,...)")"""
    return keccak(text=event_signature(event_abi))


def _is_dynamic(typ: str) -> bool:
    # Indexed dynamic values are stored as keccak(value) and cannot be recovered.
    return typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("(")


class _EventLayout:
    def __init__(self, event_abi: EventAbi) -> None:
        self.name = str(event_abi["name"])
        self.signature = event_signature(event_abi)
        self.topic0 = keccak(text=self.signature)

        inputs: list[Mapping[str, Any]] = list(event_abi.get("inputs", []))
        self.inputs = inputs
        self.indexed = [i for i in inputs if i.get("indexed") is True]
        self.non_indexed = [i for i in inputs if not i.get("indexed")]
        self.non_indexed_types = [canonical_type(i) for i in self.non_indexed]


class AbiEventDecoder:
    """
    ABI-based decoder for every event of one contract.

    It:
    - computes topic0 for each non-anonymous event in the ABI,
    - decodes indexed args from topics (dynamic types stay as their hash),
    - decodes non-indexed args from `data` with eth_abi,
    - normalises values so they survive a JSON round-trip.

    Output args keep the ABI argument order.
    """

    def __init__(self, events: Sequence[EventAbi]) -> None:
        self._layouts: dict[bytes, _EventLayout] = {}
        for event_abi in events:
            if event_abi.get("type", "event") != "event" or event_abi.get("anonymous"):
                continue
            layout = _EventLayout(event_abi)
            self._layouts[layout.topic0] = layout

    def decode(self, raw_log: RawLog) -> DecodedLog:
        if not raw_log.topics:
            raise DecodeError(f"Log {raw_log.transaction_hash}:{raw_log.log_index} has no topics")

        layout = self._layouts.get(bytes(raw_log.topics[0]))
        if layout is None:
            raise DecodeError(
                f"Unknown event topic 0x{bytes(raw_log.topics[0]).hex()} "
                f"in log {raw_log.transaction_hash}:{raw_log.log_index}"
            )

        topics = raw_log.topics[1:]
        if len(topics) != len(layout.indexed):
            raise DecodeError(
                f"{layout.signature}: expected {len(layout.indexed)} indexed topics, got {len(topics)}"
            )

        args: dict[str, Any] = {}
        try:
            topic_values = iter(topics)
            data_values = iter(self._decode_data(layout, raw_log.data))
            for position, inp in enumerate(layout.inputs):
                name = str(inp.get("name") or f"arg{position}")
                if inp.get("indexed") is True:
                    args[name] = self._decode_topic(inp, next(topic_values))
                else:
                    args[name] = next(data_values)
        except (DecodingError, ValueError, OverflowError) as exc:
            raise DecodeError(f"{layout.signature}: {exc}") from exc

        return DecodedLog(event_name=layout.name, args=args)

    # ---------------------------------------------------------------------
    # ABI helpers
    # ---------------------------------------------------------------------

    def _decode_topic(self, abi_input: Mapping[str, Any], topic: bytes) -> Any:
        typ = canonical_type(abi_input)
        topic = bytes(topic)
        if len(topic) != 32:
            raise ValueError(f"Expected 32 bytes (topic), got len={len(topic)}")
        if _is_dynamic(typ):
            return "0x" + topic.hex()
        (value,) = abi_decode([typ], topic)
        return self._normalize_abi_value(abi_input, typ, value)

    def _decode_data(self, layout: _EventLayout, data: bytes) -> list[Any]:
        # If event has no non-indexed inputs, data should be empty
        if not layout.non_indexed:
            return []

        values = abi_decode(layout.non_indexed_types, bytes(data))
        return [
            self._normalize_abi_value(inp, typ, val)
            for inp, typ, val in zip(layout.non_indexed, layout.non_indexed_types, values, strict=True)
        ]

    # ---------------------------------------------------------------------
    # Value normalization
    # ---------------------------------------------------------------------

    def _normalize_abi_value(self, abi_input: Mapping[str, Any], typ: str, val: Any) -> Any:
        if typ.endswith("]"):
            element_type = typ[: typ.rindex("[")]
            abi_type = str(abi_input.get("type", ""))
            element_input = dict(abi_input, type=abi_type[: abi_type.rindex("[")])
            return [self._normalize_abi_value(element_input, element_type, v) for v in val]

        if typ.startswith("("):
            components = abi_input.get("components") or []
            return {
                str(c.get("name") or f"field{i}"): self._normalize_abi_value(c, canonical_type(c), v)
                for i, (c, v) in enumerate(zip(components, val))
            }

        if typ == "address":
            return str(val).lower()

        if typ == "bool":
            return bool(val)

        if typ.startswith("uint") or typ.startswith("int"):
            # uint256 routinely exceeds what JSON consumers can hold as numbers.
            return str(int(val))

        if typ.startswith("bytes"):
            return "0x" + bytes(val).hex()

        return val
