from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from eth_utils import is_address

from event_indexer.app.domain.errors import ConfigurationError
from event_indexer.app.domain.models import ContractConfig
from event_indexer.app.infrastructure.decoders.abi_event_decoder import event_signature, load_abi


logger = logging.getLogger(__name__)


def _address_override(name: str, environ: Mapping[str, str]) -> str | None:
    # e.g. nft -> NFT_CONTRACT_ADDRESS
    return environ.get(f"{name.upper()}_CONTRACT_ADDRESS") or None


def _entry_abi(name: str, entry: Mapping[str, Any], base_dir: Path) -> list[dict[str, Any]]:
    if isinstance(entry.get("abi"), list):
        return [x for x in entry["abi"] if isinstance(x, dict)]

    abi_path = entry.get("abi_path")
    if not isinstance(abi_path, str):
        raise ConfigurationError(f"Contract {name!r}: expected 'abi' list or 'abi_path'")

    path = Path(abi_path)
    if not path.is_absolute():
        path = base_dir / path
    try:
        return load_abi(path)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Contract {name!r}: cannot load ABI from {path}: {exc}") from exc


def build_contract(
    name: str,
    entry: Mapping[str, Any],
    *,
    base_dir: Path,
    environ: Mapping[str, str] | None = None,
) -> ContractConfig:
    environ = os.environ if environ is None else environ

    address = _address_override(name, environ) or entry.get("address")
    if not isinstance(address, str) or not is_address(address):
        raise ConfigurationError(f"Contract {name!r}: invalid address {address!r}")

    abi = _entry_abi(name, entry, base_dir)
    events = [x for x in abi if x.get("type") == "event" and not x.get("anonymous")]
    if not events:
        raise ConfigurationError(f"Contract {name!r}: ABI has no (non-anonymous) events")

    names = [e.get("name") for e in events]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        # Overloaded event names would need signature-based selectors.
        raise ConfigurationError(f"Contract {name!r}: duplicate event names {duplicates}")

    try:
        for event_abi in events:
            event_signature(event_abi)
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(f"Contract {name!r}: invalid event ABI: {exc}") from exc

    return ContractConfig(name=name, address=address.lower(), events=tuple(events))


def load_contracts(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[ContractConfig]:
    """
    Load the contract registry: ``{name: {address, abi | abi_path}}``.

    Any problem is a ``ConfigurationError``; the indexer must not start
    without a valid registry.
    """
    if not path.exists():
        raise ConfigurationError(f"Contract registry not found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Contract registry {path} is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError(f"Contract registry {path} must be a non-empty object")

    contracts: list[ContractConfig] = []
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Contract {name!r}: entry must be an object")
        contract = build_contract(name, entry, base_dir=path.parent, environ=environ)
        logger.info(
            "Loaded contract %s at %s (events: %s)",
            contract.name,
            contract.address,
            ", ".join(contract.event_names),
        )
        contracts.append(contract)

    return contracts
