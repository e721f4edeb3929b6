"""
Tests for ORM models, schemas and the collection status tracker.
"""

import pytest
from pydantic import ValidationError

from trendlog.errors import BadRequestError, StoreError
from trendlog.models.collection_status import CollectionStatus
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.schemas import IngestRequest, PointReading, PointRef, SyncStatusResponse
from trendlog.services.collection_status import CollectionTracker


class TestPartitionModel:
    def test_covers_half_open(self):
        p = Partition(start_ts=100, end_ts=200)
        assert p.covers(100)
        assert p.covers(199)
        assert not p.covers(200)

    def test_to_dict(self):
        p = Partition(table_name="trendlog_data", partition_type="daily", partition_identifier="2025-01-25",
                      start_ts=0, end_ts=86400, record_count=0, size_bytes=0)
        d = p.to_dict()
        assert d["partition_identifier"] == "2025-01-25"
        assert d["end_ts"] == 86400


class TestTrendlogPoint:
    def test_numeric_value(self):
        assert TrendlogPoint(value="21.50").numeric_value == 21.5

    def test_repr(self):
        point = TrendlogPoint(serial_number=5, point_type="INPUT", point_number=3, timestamp=1, value="2")
        assert "INPUT3" in repr(point)


class TestCollectionStatusModel:
    def test_success_rate_empty(self):
        assert CollectionStatus(total_collections=0, error_count=0).success_rate == 0.0

    def test_success_rate(self):
        assert CollectionStatus(total_collections=4, error_count=1).success_rate == 0.75

    def test_too_many_errors(self):
        status = CollectionStatus(error_count=3)
        assert status.too_many_errors(3)
        assert not status.too_many_errors(4)


class TestSchemas:
    def test_reading_stringifies_numbers(self):
        assert PointReading(point_type="VAR", point_number=1, value=21, timestamp=0).value == "21"

    def test_camel_case_input(self):
        req = IngestRequest.model_validate(
            {"serialNumber": 121, "dataType": "VARIABLES", "points": [
                {"pointType": "VARIABLE", "pointNumber": 2, "value": "3.5", "timestamp": 10}
            ]}
        )
        assert req.serial_number == 121
        assert req.points[0].point_number == 2

    def test_point_ref_key(self):
        assert PointRef(serial_number=5, point_type="input", point_number=1).key() == (5, "INPUT", 1)

    def test_negative_point_number_rejected(self):
        with pytest.raises(ValidationError):
            PointRef(serial_number=5, point_type="INPUT", point_number=-1)

    def test_sync_status_camel_output(self):
        dumped = SyncStatusResponse(
            id=1, sync_time=10, sync_time_fmt="x", data_type="INPUTS", serial_number="5",
            records_synced=3, sync_method="FFI_BACKEND", success=True, created_at=10,
        ).model_dump(by_alias=True)
        assert {"syncTime", "syncTimeFmt", "recordsSynced", "errorMessage"} <= dumped.keys()


class TestCollectionTracker:
    @pytest.fixture
    def tracker(self, app_sessions):
        return CollectionTracker(app_sessions, clock=lambda: 1000)

    async def test_unknown_device(self, tracker):
        assert await tracker.get(42) is None

    async def test_success_then_error(self, tracker):
        await tracker.mark_success(42)
        await tracker.mark_success(42)
        await tracker.mark_error(42, "timeout")

        status = await tracker.get(42)
        assert status.status == "error"
        assert status.total_collections == 3
        assert status.error_count == 1
        assert status.last_error == "timeout"
        assert status.last_collection == 1000
        assert status.success_rate == pytest.approx(2 / 3)

    async def test_point_level_is_separate(self, tracker):
        await tracker.mark_success(42)
        await tracker.mark_success(42, point_id=7)
        assert (await tracker.get(42)).total_collections == 1
        assert (await tracker.get(42, point_id=7)).total_collections == 1

    async def test_set_status(self, tracker):
        await tracker.set_status(42, "paused")
        assert (await tracker.get(42)).status == "paused"

    async def test_set_status_rejects_unknown(self, tracker):
        with pytest.raises(BadRequestError):
            await tracker.set_status(42, "sleeping")


def test_store_error_keeps_native_text():
    class Wrapped(Exception):
        orig = "UNIQUE constraint failed: database_partitions.table_name"

    err = StoreError.wrap(Wrapped("outer"), "create partition")
    assert err.message == "create partition: UNIQUE constraint failed: database_partitions.table_name"
    assert err.status_code == 500
