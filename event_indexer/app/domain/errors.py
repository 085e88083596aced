from __future__ import annotations


class IndexerError(Exception):
    """Base class for every error raised by the indexer."""


class ConfigurationError(IndexerError):
    """Invalid or missing startup configuration (e.g. the contract registry)."""


class RpcError(IndexerError):
    """Transport-level failure talking to the RPC endpoint (timeouts, resets, bad responses)."""


class DecodeError(IndexerError):
    """A log does not match any event of the schema it was decoded against."""


class StorageError(IndexerError):
    """Durable storage could not complete a read or write."""
