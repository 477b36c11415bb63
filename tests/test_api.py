"""
Admin API.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import StubProvider
from leaseworker.bootstrap import build_runtime
from leaseworker.db import init_db
from leaseworker.main import create_app
from leaseworker.utils.time import utc_now


@pytest.fixture
async def runtime(test_settings):
    runtime = build_runtime(test_settings, provider=StubProvider())
    await init_db(runtime.engine)
    yield runtime
    await runtime.aclose()


@pytest.fixture
async def client(runtime):
    """Async test client bound to a runtime on a temporary SQLite database."""
    app = create_app(runtime.settings, runtime=runtime)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint reports status and version."""
    response = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_enqueue_and_get_item(client):
    """Enqueued payloads are readable as pending items."""
    response = await client.post("/v1/items", json={"payloads": [{"title": "a"}, "b"]})

    assert response.status_code == 201
    ids = response.json()["ids"]
    assert len(ids) == 2

    item = (await client.get(f"/v1/items/{ids[0]}")).json()
    assert item["payload"] == {"title": "a"}
    assert item["status"] == "pending"
    assert item["lease_owner"] is None


@pytest.mark.asyncio
async def test_enqueue_requires_payloads(client):
    response = await client.post("/v1/items", json={"payloads": []})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_missing_item_is_404(client):
    response = await client.get("/v1/items/12345")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stats_counts_by_status(client, runtime):
    """Stats report every status plus the metrics snapshot."""
    items = await runtime.repository.enqueue(["a", "b", "c"])
    await runtime.repository.mark_done(items[0].id, {"ok": True}, utc_now())

    body = (await client.get("/v1/stats")).json()

    assert body["counts"] == {"pending": 2, "done": 1, "failed": 0}
    assert "counters" in body["metrics"]


@pytest.mark.asyncio
async def test_requeue_failed_items(client, runtime):
    """Operator requeue returns failed items to pending."""
    items = await runtime.repository.enqueue(["a", "b"])
    for item in items:
        await runtime.repository.mark_failed(item.id, "MALFORMED_RESULT: x", utc_now())

    response = await client.post("/v1/items/requeue", json={"ids": [items[0].id]})
    assert response.json() == {"requeued": 1}

    response = await client.post("/v1/items/requeue", json={})
    assert response.json() == {"requeued": 1}

    item = (await client.get(f"/v1/items/{items[1].id}")).json()
    assert item["status"] == "pending"
    assert item["error"] is None


@pytest.mark.asyncio
async def test_reclaim_endpoint(client):
    response = await client.post("/v1/leases/reclaim")

    assert response.status_code == 200
    assert response.json() == {"reclaimed": 0}


@pytest.mark.asyncio
async def test_api_key_is_enforced_when_configured(runtime):
    """With an API key set, requests need a matching bearer or X-API-Key header."""
    runtime.settings.api_key = "s3cret"
    app = create_app(runtime.settings, runtime=runtime)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        assert (await client.get("/v1/health")).status_code == 401
        assert (
            await client.get("/v1/health", headers={"Authorization": "Bearer wrong"})
        ).status_code == 401
        assert (
            await client.get("/v1/health", headers={"Authorization": "Bearer s3cret"})
        ).status_code == 200
        assert (await client.get("/v1/health", headers={"X-API-Key": "s3cret"})).status_code == 200
