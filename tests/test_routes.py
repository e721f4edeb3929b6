"""
Tests for API routes — health, trendlog refresh/query, partitions, sync status.
"""

from unittest.mock import AsyncMock, patch

from trendlog.errors import (
    BadRequestError,
    NotFoundError,
    PartialFailureError,
    PermissionDeniedError,
    StoreError,
    UnauthorizedError,
)

from tests.conftest import DAY, NOW, T_DAY

T = T_DAY + 3600
TABLE = "trendlog_data"

REFRESH_BODY = {
    "serialNumber": 121,
    "dataType": "VARIABLES",
    "points": [
        {"pointType": "VARIABLE", "pointNumber": 1, "value": 21.5, "timestamp": T},
        {"pointType": "VARIABLE", "pointNumber": 1, "value": 22.0, "timestamp": T + 60},
    ],
}

RANGE = {"serial_number": 121, "point_type": "VARIABLE", "point_number": 1, "start": T, "end": T + 120}


class TestHealthEndpoint:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert "timestamp" in data


class TestRootEndpoint:
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert "Trendlog" in resp.json()["service"]


class TestSchedulerEndpoint:
    async def test_status_when_idle(self, client):
        resp = await client.get("/api/v1/scheduler")
        assert resp.status_code == 200
        data = resp.json()
        assert data["running"] is False
        assert data["sweepCycles"] == 0


class TestTrendlogsAPI:
    async def test_refresh_then_query(self, client):
        resp = await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["recordsSynced"] == 2
        assert data["partitions"] == ["2025-01-25"]

        resp = await client.get("/api/v1/trendlogs", params=RANGE)
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["value"] for r in rows] == ["21.5", "22.0"]
        assert rows[0]["dataSource"] == "MANUAL"
        assert rows[0]["createdBy"] == "FRONTEND"
        assert rows[0]["timestamp"] == T
        assert len(rows[0]["timestampFmt"]) == 19

    async def test_summary(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        resp = await client.get("/api/v1/trendlogs/summary", params=RANGE)
        assert resp.status_code == 200
        [summary] = resp.json()
        assert summary["count"] == 2
        assert summary["avg"] == 21.75

    async def test_refresh_bad_value(self, client):
        body = {**REFRESH_BODY, "points": [{"pointType": "VARIABLE", "pointNumber": 1, "value": "ON", "timestamp": T}]}
        resp = await client.post("/api/v1/trendlogs/refresh", json=body)
        assert resp.status_code == 400
        assert "not numeric" in resp.json()["detail"]

    async def test_refresh_millisecond_timestamp(self, client):
        body = {**REFRESH_BODY, "points": [{"pointType": "VARIABLE", "pointNumber": 1, "value": 1, "timestamp": T * 1000}]}
        resp = await client.post("/api/v1/trendlogs/refresh", json=body)
        assert resp.status_code == 400
        assert "timestamp" in resp.json()["detail"]

        resp = await client.get("/api/v1/sync-status/121/VARIABLES")
        assert resp.json()["success"] is False

    async def test_query_several_points(self, client):
        body = {**REFRESH_BODY, "points": [
            {"pointType": "VARIABLE", "pointNumber": 2, "value": 5, "timestamp": T + 60},
            {"pointType": "VARIABLE", "pointNumber": 1, "value": 4, "timestamp": T},
            {"pointType": "VARIABLE", "pointNumber": 3, "value": 6, "timestamp": T + 30},
        ]}
        await client.post("/api/v1/trendlogs/refresh", json=body)

        params = {**RANGE, "point_type": ["VARIABLE", "VARIABLE"], "point_number": [1, 2]}
        resp = await client.get("/api/v1/trendlogs", params=params)
        assert resp.status_code == 200
        assert [(r["pointNumber"], r["timestamp"]) for r in resp.json()] == [(1, T), (2, T + 60)]

    async def test_query_unpaired_point_refs(self, client):
        params = {**RANGE, "point_type": ["VARIABLE", "INPUT"], "point_number": [1]}
        resp = await client.get("/api/v1/trendlogs", params=params)
        assert resp.status_code == 400

    async def test_recent(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        resp = await client.get("/api/v1/trendlogs/recent", params={"serial_number": 121, "limit": 1})
        assert resp.status_code == 200
        assert [r["value"] for r in resp.json()] == ["22.0"]

        resp = await client.get(
            "/api/v1/trendlogs/recent", params={"serial_number": 121, "point_type": "INPUT"}
        )
        assert resp.json() == []

    async def test_device_stats(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        resp = await client.get("/api/v1/trendlogs/stats/121")
        assert resp.status_code == 200
        data = resp.json()
        assert data["totalRecords"] == 2
        assert data["byPointType"] == {"VARIABLE": 2}
        assert data["latestTimestamp"] == T + 60

    async def test_refresh_validation(self, client):
        resp = await client.post("/api/v1/trendlogs/refresh", json={"serialNumber": 121})
        assert resp.status_code == 422

    async def test_query_empty_range(self, client):
        resp = await client.get("/api/v1/trendlogs", params={**RANGE, "end": T})
        assert resp.status_code == 400

    async def test_query_unknown_table(self, client):
        resp = await client.get("/api/v1/trendlogs", params={**RANGE, "table": "nope"})
        assert resp.status_code == 404


class TestPartitionsAPI:
    async def test_stats(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        resp = await client.get(f"/api/v1/partitions/{TABLE}/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["partitionCount"] == 1
        assert data["totalRecords"] == 2
        assert data["partitions"][0]["partitionIdentifier"] == "2025-01-25"
        assert data["partitions"][0]["isArchived"] is False

    async def test_cleanup(self, client):
        old = {**REFRESH_BODY, "points": [
            {"pointType": "VARIABLE", "pointNumber": 1, "value": 1, "timestamp": NOW - 400 * DAY}
        ]}
        await client.post("/api/v1/trendlogs/refresh", json=old)
        resp = await client.post(f"/api/v1/partitions/{TABLE}/cleanup")
        assert resp.status_code == 200
        data = resp.json()
        assert data["partitionsDeleted"] == 1
        assert data["recordsRemoved"] == 1

    async def test_optimize(self, client):
        resp = await client.post(f"/api/v1/partitions/{TABLE}/optimize")
        assert resp.status_code == 200
        assert resp.json()["sizeAfterBytes"] > 0

    async def test_unknown_table(self, client):
        resp = await client.get("/api/v1/partitions/nope/stats")
        assert resp.status_code == 404
        assert "nope" in resp.json()["detail"]


class TestSyncStatusAPI:
    async def test_latest_not_found(self, client):
        resp = await client.get("/api/v1/sync-status/121/VARIABLES")
        assert resp.status_code == 404

    async def test_latest_and_history(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)

        resp = await client.get("/api/v1/sync-status/121/VARIABLES")
        assert resp.status_code == 200
        data = resp.json()
        assert data["serialNumber"] == "121"
        assert data["syncMethod"] == "UI_REFRESH"
        assert data["recordsSynced"] == 2
        assert data["success"] is True
        assert "syncTimeFmt" in data

        resp = await client.get("/api/v1/sync-status/121/VARIABLES/history", params={"limit": 5})
        assert len(resp.json()) == 2

        resp = await client.get("/api/v1/sync-status/121")
        assert len(resp.json()) == 2

    async def test_bad_data_type(self, client):
        resp = await client.get("/api/v1/sync-status/121/WEATHER")
        assert resp.status_code == 422


class TestCollectionStatusAPI:
    async def test_after_refresh(self, client):
        await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)
        resp = await client.get("/api/v1/collection-status/121")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "collecting"
        assert data["totalCollections"] == 1
        assert data["successRate"] == 1.0

    async def test_unknown_device(self, client):
        resp = await client.get("/api/v1/collection-status/999")
        assert resp.status_code == 404


class TestErrorMapping:
    async def test_store_failure_is_500_and_recorded(self, client, services):
        with patch.object(
            services.directory,
            "resolve_or_create_partition",
            new_callable=AsyncMock,
            side_effect=StoreError("disk I/O error"),
        ):
            resp = await client.post("/api/v1/trendlogs/refresh", json=REFRESH_BODY)

        assert resp.status_code == 500
        assert resp.json()["detail"] == "attempted 2, written 0: disk I/O error"

        resp = await client.get("/api/v1/sync-status/121/VARIABLES")
        assert resp.json()["success"] is False

    def test_status_codes(self):
        assert NotFoundError().status_code == 404
        assert BadRequestError().status_code == 400
        assert UnauthorizedError().status_code == 401
        assert PermissionDeniedError().status_code == 403
        assert PartialFailureError("x", attempted=2).status_code == 500
