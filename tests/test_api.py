import httpx
import pytest

from conftest import make_record, tx_hash

from event_indexer.app.domain.errors import StorageError
from event_indexer.app.interface.api.app import create_app
from event_indexer.app.interface.api.serialization import MAX_SAFE_INTEGER, json_safe


@pytest.fixture
async def client(store):
    app = create_app(store)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def _seed(store):
    await store.save_event(make_record(block=10, log_index=0, tx=1))
    await store.save_event(make_record(block=10, log_index=1, tx=1))
    await store.save_event(make_record(block=12, log_index=0, tx=2, event_data={"value": str(2**200)}))
    await store.save_event(
        make_record(block=11, log_index=0, tx=3, contract_name="gasless", event_name="MessagePosted")
    )
    await store.save_last_block(12)


async def test_events_are_newest_first_in_envelope(client, store):
    await _seed(store)

    response = await client.get("/events")
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["count"] == 4
    assert [(e["block_number"], e["log_index"]) for e in body["events"]] == [
        (12, 0),
        (11, 0),
        (10, 1),
        (10, 0),
    ]
    assert list(body["events"][0])[0] == "id"
    assert body["events"][0]["event_data"] == {"value": str(2**200)}
    assert body["events"][0]["indexed_at"].startswith("2026-01-01T12:00:00")


async def test_events_filters_and_pagination(client, store):
    await _seed(store)

    by_contract = (await client.get("/events", params={"contract": "gasless"})).json()
    by_range = (await client.get("/events", params={"fromBlock": 11, "toBlock": 12})).json()
    page = (await client.get("/events", params={"event": "Transfer", "limit": 1, "offset": 1})).json()

    assert [e["event_name"] for e in by_contract["events"]] == ["MessagePosted"]
    assert [e["block_number"] for e in by_range["events"]] == [12, 11]
    assert [(e["block_number"], e["log_index"]) for e in page["events"]] == [(10, 1)]


async def test_events_by_transaction(client, store):
    await _seed(store)

    body = (await client.get(f"/events/tx/{tx_hash(1)}")).json()

    assert body["success"] is True
    assert body["transactionHash"] == tx_hash(1)
    assert [e["log_index"] for e in body["events"]] == [0, 1]


async def test_events_by_contract(client, store):
    await _seed(store)

    body = (await client.get("/events/contract/nft", params={"limit": 2})).json()

    assert body["contract"] == "nft"
    assert body["count"] == 2
    assert [e["block_number"] for e in body["events"]] == [12, 10]


async def test_stats(client, store):
    await _seed(store)

    body = (await client.get("/stats")).json()

    assert body == {
        "success": True,
        "stats": {
            "totalEvents": 4,
            "eventsByContract": [{"name": "gasless", "count": 1}, {"name": "nft", "count": 3}],
            "eventsByType": [{"name": "MessagePosted", "count": 1}, {"name": "Transfer", "count": 3}],
            "lastProcessedBlock": 12,
        },
    }


async def test_health(client):
    body = (await client.get("/health")).json()

    assert body["success"] is True
    assert body["status"] == "healthy"
    assert body["timestamp"].endswith("+00:00")


async def test_unknown_route_is_404_envelope(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 1001}, {"offset": -1}, {"fromBlock": "abc"}])
async def test_invalid_query_is_400_envelope(client, params):
    response = await client.get("/events", params=params)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Invalid request")


async def test_storage_failure_is_500_envelope():
    class BrokenStore:
        async def get_stats(self):
            raise StorageError("database is locked")

    app = create_app(BrokenStore())
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get("/stats")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "database is locked"}


async def test_cors_allows_any_origin(client):
    response = await client.get("/health", headers={"Origin": "http://dashboard.local"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_json_safe_stringifies_unsafe_integers():
    payload = {"small": MAX_SAFE_INTEGER, "big": MAX_SAFE_INTEGER + 1, "neg": -(2**60), "flag": True}

    assert json_safe(payload) == {
        "small": MAX_SAFE_INTEGER,
        "big": str(MAX_SAFE_INTEGER + 1),
        "neg": str(-(2**60)),
        "flag": True,
    }


async def test_unserializable_results_are_500_envelope():
    class OddStore:
        async def get_events(self, filters):
            return [object()]

    app = create_app(OddStore())
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get("/events")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["success"] is False
