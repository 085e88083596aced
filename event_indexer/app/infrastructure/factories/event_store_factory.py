from __future__ import annotations

from typing import Callable, Dict

from event_indexer.app.config import Settings
from event_indexer.app.domain.ports.out import EventStore
from event_indexer.app.infrastructure.adapters.storage.json_file_event_store import (
    JsonFileEventStore,
)
from event_indexer.app.infrastructure.adapters.storage.sqlalchemy_event_store import (
    SqlAlchemyEventStore,
)
from event_indexer.app.infrastructure.db.engine import create_engine_from_settings


EventStoreFactory = Callable[[Settings], EventStore]

_EVENT_STORE_REGISTRY: Dict[str, EventStoreFactory] = {
    "sqlalchemy": lambda cfg: SqlAlchemyEventStore(engine=create_engine_from_settings(cfg)),
    "json": lambda cfg: JsonFileEventStore(database_path=cfg.database_path),
}


def event_store_factory(
    backend: str,
    cfg: Settings,
) -> EventStore:
    try:
        factory = _EVENT_STORE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported event store backend: {backend!r}")
    return factory(cfg)
