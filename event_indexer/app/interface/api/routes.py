from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from event_indexer.app.domain.models import EventFilter
from event_indexer.app.domain.ports.out import EventStore
from event_indexer.app.interface.api.serialization import serialize_event, serialize_stats


log = logging.getLogger(__name__)
router = APIRouter(tags=["events"])

MAX_PAGE_SIZE = 1000


def get_store(request: Request) -> EventStore:
    return request.app.state.store


def error_response(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# ---------------- reads ----------------

@router.get("/events")
async def api_events(
    contract: str | None = Query(None, description="Contract name, e.g. nft"),
    event: str | None = Query(None, description="Event name, e.g. Transfer"),
    from_block: int | None = Query(None, alias="fromBlock", ge=0),
    to_block: int | None = Query(None, alias="toBlock", ge=0),
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    store: EventStore = Depends(get_store),
) -> Any:
    filters = EventFilter(
        contract_name=contract,
        event_name=event,
        from_block=from_block,
        to_block=to_block,
        limit=limit,
        offset=offset,
    )
    try:
        events = await store.get_events(filters)
        return {
            "success": True,
            "count": len(events),
            "events": [serialize_event(e) for e in events],
        }
    except Exception as exc:
        log.exception("GET /events failed")
        return error_response(str(exc))


@router.get("/events/tx/{tx_hash}")
async def api_events_by_transaction(
    tx_hash: str,
    store: EventStore = Depends(get_store),
) -> Any:
    try:
        events = await store.get_events_by_transaction(tx_hash)
        return {
            "success": True,
            "transactionHash": tx_hash,
            "count": len(events),
            "events": [serialize_event(e) for e in events],
        }
    except Exception as exc:
        log.exception("GET /events/tx/%s failed", tx_hash)
        return error_response(str(exc))


@router.get("/events/contract/{contract_name}")
async def api_events_by_contract(
    contract_name: str,
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    store: EventStore = Depends(get_store),
) -> Any:
    try:
        events = await store.get_events_by_contract(contract_name, limit=limit, offset=offset)
        return {
            "success": True,
            "contract": contract_name,
            "count": len(events),
            "events": [serialize_event(e) for e in events],
        }
    except Exception as exc:
        log.exception("GET /events/contract/%s failed", contract_name)
        return error_response(str(exc))


@router.get("/stats")
async def api_stats(store: EventStore = Depends(get_store)) -> Any:
    try:
        stats = await store.get_stats()
        return {"success": True, "stats": serialize_stats(stats)}
    except Exception as exc:
        log.exception("GET /stats failed")
        return error_response(str(exc))


@router.get("/health")
def api_health() -> Dict[str, Any]:
    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
