"""
Tests for the partition directory — lazy creation, races, lifecycle.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from trendlog.errors import BadRequestError, NotFoundError
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.services.partition_directory import PartitionDirectory

from tests.conftest import DAY, NOW, T_DAY

TABLE = "trendlog_data"


@pytest.fixture
def directory(ts_sessions, test_settings):
    return PartitionDirectory(ts_sessions, test_settings, clock=lambda: NOW)


async def _count(ts_sessions, model=Partition):
    async with ts_sessions() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _active_ids(ts_sessions):
    async with ts_sessions() as session:
        result = await session.execute(select(Partition.id).where(Partition.is_active.is_(True)))
        return list(result.scalars().all())


class TestResolveOrCreate:
    async def test_creates_with_defaults(self, directory):
        p = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY + 60)
        assert p.id is not None
        assert p.partition_identifier == "2025-01-25"
        assert (p.start_ts, p.end_ts) == (T_DAY, T_DAY + DAY)
        assert p.retention_days == 30
        assert p.auto_cleanup_enabled is True
        assert p.record_count == 0
        assert p.is_archived is False

    async def test_idempotent(self, directory, ts_sessions):
        first = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY + 10)
        second = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY + 5000)
        assert first.id == second.id
        assert first.partition_identifier == second.partition_identifier
        assert await _count(ts_sessions) == 1

    async def test_concurrent_callers_share_one_row(self, directory, ts_sessions):
        results = await asyncio.gather(
            *(directory.resolve_or_create_partition(TABLE, "daily", T_DAY + i) for i in range(10))
        )
        assert len({p.id for p in results}) == 1
        assert await _count(ts_sessions) == 1

    async def test_boundary_resolves_to_next_day(self, directory):
        today = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY)
        boundary = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY + DAY)
        assert boundary.id != today.id
        assert boundary.partition_identifier == "2025-01-26"

    async def test_kind_retention_defaults(self, directory):
        weekly = await directory.resolve_or_create_partition(TABLE, "weekly", T_DAY)
        monthly = await directory.resolve_or_create_partition(TABLE, "monthly", T_DAY)
        assert weekly.retention_days == 84
        assert monthly.retention_days == 365

    async def test_only_current_partition_is_active(self, directory):
        past = await directory.resolve_or_create_partition(TABLE, "daily", NOW - 3 * DAY)
        assert past.is_active is False

        current = await directory.resolve_or_create_partition(TABLE, "daily", NOW + 60)
        assert current.is_active is True

    async def test_new_current_partition_deactivates_previous(self, ts_sessions, test_settings):
        clock = {"now": NOW - DAY + 60}
        directory = PartitionDirectory(ts_sessions, test_settings, clock=lambda: clock["now"])

        yesterday = await directory.resolve_or_create_partition(TABLE, "daily", clock["now"])
        assert yesterday.is_active is True

        clock["now"] = NOW + 60
        await directory.resolve_or_create_partition(TABLE, "daily", clock["now"])
        assert (await directory.get(yesterday.id)).is_active is False


    async def test_early_partition_activated_when_its_period_arrives(self, ts_sessions, test_settings):
        clock = {"now": NOW - 60}
        directory = PartitionDirectory(ts_sessions, test_settings, clock=lambda: clock["now"])

        today = await directory.resolve_or_create_partition(TABLE, "daily", NOW - 60)
        clock["now"] = NOW - 30
        # controller clock a few seconds ahead
        tomorrow = await directory.resolve_or_create_partition(TABLE, "daily", NOW + 10)
        assert tomorrow.is_active is False

        clock["now"] = NOW + 3600
        resolved = await directory.resolve_or_create_partition(TABLE, "daily", NOW + 3600)
        await directory.deactivate_expired(TABLE, clock["now"])

        assert resolved.id == tomorrow.id
        assert resolved.is_active is True
        assert (await directory.get(today.id)).is_active is False
        assert await _active_ids(ts_sessions) == [tomorrow.id]

    async def test_archived_partition_never_activated(self, directory, ts_sessions):
        current = await directory.resolve_or_create_partition(TABLE, "daily", NOW)
        await directory.archive(current.id)
        again = await directory.resolve_or_create_partition(TABLE, "daily", NOW + 5)
        assert again.is_active is False
        assert await _active_ids(ts_sessions) == []


class TestLookup:
    async def test_list_covering_half_open(self, directory):
        for offset in (0, 1, 2):
            await directory.resolve_or_create_partition(TABLE, "daily", T_DAY + offset * DAY)

        found = await directory.list_partitions_covering(TABLE, T_DAY + DAY, T_DAY + 2 * DAY)
        assert [p.partition_identifier for p in found] == ["2025-01-26"]

        found = await directory.list_partitions_covering(TABLE, T_DAY + 100, T_DAY + DAY + 1)
        assert [p.partition_identifier for p in found] == ["2025-01-25", "2025-01-26"]

    async def test_list_covering_rejects_empty_range(self, directory):
        with pytest.raises(BadRequestError):
            await directory.list_partitions_covering(TABLE, T_DAY, T_DAY)

    async def test_get_missing(self, directory):
        with pytest.raises(NotFoundError):
            await directory.get(999)


class TestLifecycle:
    async def test_update_stats_accumulates(self, directory):
        p = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY)
        await directory.update_stats(p.id, 3, 150)
        await directory.update_stats(p.id, 2, 100)
        fresh = await directory.get(p.id)
        assert fresh.record_count == 5
        assert fresh.size_bytes == 250

    async def test_update_stats_missing(self, directory):
        with pytest.raises(NotFoundError):
            await directory.update_stats(12345, 1, 1)

    async def test_archive_idempotent(self, directory):
        p = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY)
        assert await directory.archive(p.id) is True
        assert await directory.archive(p.id) is False
        fresh = await directory.get(p.id)
        assert fresh.is_archived is True
        assert fresh.is_active is False

    async def test_delete_cascades_rows(self, directory, ts_sessions):
        p = await directory.resolve_or_create_partition(TABLE, "daily", T_DAY)
        async with ts_sessions() as session:
            session.add_all(
                TrendlogPoint(
                    partition_id=p.id, table_name=TABLE, serial_number=5, point_type="INPUT",
                    point_number=1, value=str(i), quality=0, timestamp=T_DAY + i,
                    data_source="REALTIME", created_by="BACKEND",
                )
                for i in range(4)
            )
            await session.commit()

        assert await directory.delete(p.id) == 4
        assert await directory.delete(p.id) == 0
        assert await _count(ts_sessions) == 0
        assert await _count(ts_sessions, TrendlogPoint) == 0

    async def test_lock_registry(self, directory):
        assert directory.lock_for(1) is directory.lock_for(1)
        assert directory.lock_for(1) is not directory.lock_for(2)
