from __future__ import annotations

import httpx
import pytest
from conftest import ping

from lanmonitor.config import get_settings
from lanmonitor.main import app
from lanmonitor.services.prober import TraceOutcome
from lanmonitor.services.store import get_store
from lanmonitor.utils.time_utils import now_ms

HOUR = 60 * 60 * 1000


@pytest.fixture
async def client(store, cfg):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: cfg
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class BrokenStore:
    async def probes_since(self, since_ts, limit=None):
        raise RuntimeError("database is locked")

    async def latest_probe(self, target):
        raise RuntimeError("database is locked")

    async def latest_trace(self, target):
        raise RuntimeError("database is locked")

    async def iter_probes_between(self, start_ts, end_ts, targets=None):
        raise RuntimeError("database is locked")
        yield []


async def test_pings_returns_recent_rows_oldest_first(client, store) -> None:
    now = now_ms()
    await store.insert_probe(ping(now - 3 * HOUR, "A", True, 1.0))
    await store.insert_probe(ping(now - 1000, "B", False))
    await store.insert_probe(ping(now - 2000, "A", True, 12.5))

    response = await client.get("/api/pings", params={"hours": 1})
    body = response.json()

    assert response.status_code == 200
    assert body["ok"] is True
    assert now - HOUR - 5000 <= body["since"] <= now - HOUR + 5000
    assert [(r["target"], r["alive"], r["time_ms"]) for r in body["rows"]] == [
        ("A", True, 12.5),
        ("B", False, None),
    ]
    assert set(body["rows"][0]) == {"id", "ts", "target", "alive", "time_ms", "ttl", "raw"}


async def test_pings_window_is_at_least_one_hour(client, store) -> None:
    await store.insert_probe(ping(now_ms() - 30 * 60 * 1000, "A", True))

    body = (await client.get("/api/pings", params={"hours": 0})).json()
    assert len(body["rows"]) == 1


async def test_pings_default_window_and_limit(client, store) -> None:
    now = now_ms()
    await store.insert_probe(ping(now - 23 * HOUR, "A", True))
    await store.insert_probe(ping(now - 25 * HOUR, "A", True))
    await store.insert_probe(ping(now - 1000, "A", True))

    body = (await client.get("/api/pings")).json()
    assert len(body["rows"]) == 2

    body = (await client.get("/api/pings", params={"limit": 1})).json()
    assert len(body["rows"]) == 1


async def test_malformed_parameters_report_ok_false(client) -> None:
    response = await client.get("/api/pings", params={"hours": "soon"})
    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert "hours" in body["err"]


async def test_query_errors_report_ok_false(client) -> None:
    app.dependency_overrides[get_store] = lambda: BrokenStore()

    for url in ("/api/pings", "/api/status", "/api/traceroute?target=A", "/api/timeline", "/api/failures"):
        response = await client.get(url)
        assert response.status_code == 200
        assert response.json() == {"ok": False, "err": "database is locked"}


async def test_status_lists_every_target(client, store, cfg) -> None:
    await store.insert_probe(ping(1000, "A", True, 3.0))
    await store.insert_probe(ping(2000, "A", False))

    body = (await client.get("/api/status")).json()

    assert body["ok"] is True
    assert body["targets"] == list(cfg.targets)
    assert body["latest"]["A"]["ts"] == 2000
    assert body["latest"]["A"]["alive"] is False
    assert body["latest"]["B"] is None
    assert body["latest"]["C"] is None


async def test_traceroutes_newest_first_with_default_limit(client, store) -> None:
    for ts in range(12):
        await store.insert_trace(TraceOutcome(ts=ts, target="A", raw=f"trace {ts}"))

    body = (await client.get("/api/traceroutes")).json()
    assert body["ok"] is True
    assert [r["ts"] for r in body["rows"]] == list(range(11, 1, -1))

    body = (await client.get("/api/traceroutes", params={"limit": 2})).json()
    assert [r["raw"] for r in body["rows"]] == ["trace 11", "trace 10"]


async def test_latest_traceroute_of_one_target(client, store) -> None:
    body = (await client.get("/api/traceroute", params={"target": "A"})).json()
    assert body == {"ok": True, "row": None}

    await store.insert_trace(TraceOutcome(ts=100, target="A", raw="hop a1"))
    await store.insert_trace(TraceOutcome(ts=200, target="A", raw="hop a2"))
    await store.insert_trace(TraceOutcome(ts=300, target="B", raw="hop b"))

    body = (await client.get("/api/traceroute", params={"target": "A"})).json()
    assert body["ok"] is True
    assert body["row"]["ts"] == 200
    assert body["row"]["raw"] == "hop a2"


async def test_traceroute_requires_a_target(client) -> None:
    response = await client.get("/api/traceroute")
    assert response.status_code == 400
    assert response.json()["ok"] is False


async def test_timeline_buckets_every_target(client, store, cfg) -> None:
    await store.insert_probe(ping(now_ms() - 1000, "A", True, 8.0))

    body = (await client.get("/api/timeline", params={"hours": 1, "bucket_seconds": 60})).json()

    assert body["ok"] is True
    assert body["bucket_ms"] == 60_000
    assert list(body["buckets"]) == list(cfg.targets)
    counts = {len(buckets) for buckets in body["buckets"].values()}
    assert len(counts) == 1
    assert counts.pop() in (60, 61)

    last_a = body["buckets"]["A"][-1]
    if last_a["total"] == 0:
        # sample landed in the previous minute
        last_a = body["buckets"]["A"][-2]
    assert last_a["state"] == "UP"
    assert last_a["avg_ms"] == 8.0
    assert all(b["state"] == "NO_DATA" for b in body["buckets"]["B"])


async def test_failures_correlates_other_targets(client, store) -> None:
    now = now_ms()
    await store.insert_probe(ping(now - 5000, "A", False))
    await store.insert_probe(ping(now - 4500, "B", True, 5.0))
    await store.insert_probe(ping(now - 4000, "A", True, 5.0))

    body = (await client.get("/api/failures")).json()

    assert body["ok"] is True
    assert body["primary"] == "A"
    assert body["others"] == ["B", "C"]
    assert body["tolerance_ms"] == 1500
    assert body["rows"] == [
        {"ts": now - 5000, "state": "fail", "others": {"B": "success", "C": "no_data"}},
    ]


async def test_failures_rejects_unknown_primary(client) -> None:
    body = (await client.get("/api/failures", params={"primary": "Z"})).json()
    assert body["ok"] is False


async def test_health(client) -> None:
    body = (await client.get("/health")).json()
    assert body["status"] == "healthy"


async def test_timeline_rejects_oversized_requests(client, store) -> None:
    await store.insert_probe(ping(now_ms() - 1000, "A", True, 8.0))

    response = await client.get("/api/timeline", params={"hours": 8784, "bucket_seconds": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert "buckets" in body["err"]


async def test_timeline_year_with_hourly_buckets_fits(client) -> None:
    body = (await client.get("/api/timeline", params={"hours": 8784, "bucket_seconds": 3600})).json()
    assert body["ok"] is True
    assert len(body["buckets"]["A"]) in (8784, 8785)


async def test_failures_rejects_excessive_tolerance(client, cfg) -> None:
    params = {"tolerance_ms": cfg.max_correlation_tolerance_ms + 1}
    body = (await client.get("/api/failures", params=params)).json()
    assert body["ok"] is False
    assert "tolerance_ms" in body["err"]


async def test_error_body_is_documented(client) -> None:
    schema = (await client.get("/openapi.json")).json()
    declared = schema["paths"]["/api/timeline"]["get"]["responses"]["400"]
    assert declared["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
