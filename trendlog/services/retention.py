"""
Retention & Cleanup Engine.

A cleanup cycle walks every partition of one logical table:
  end passed                      → no longer active
  covers now                      → active, even if created early
  end <= now - retention_days     → deleted together with its rows
  end <= now - archive_grace_days → archived (read-only)
Partitions without a retention period are permanent and never touched.
Each partition is handled under its directory lock; one failure is logged
and recorded in the result without stopping the rest of the cycle.
"""

import logging
from typing import Optional

from sqlalchemy import LargeBinary, cast, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from trendlog.config import Settings, settings as default_settings
from trendlog.database import timeseries_engine
from trendlog.errors import StoreError, TrendlogError
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.schemas import CleanupResult, OptimizeResult, PartitionStats, TableStats
from trendlog.services.partition_directory import PartitionDirectory
from trendlog.services.periods import days_ago

logger = logging.getLogger("trendlog.retention")


class RetentionEngine:
    def __init__(
        self,
        directory: PartitionDirectory,
        engine: Optional[AsyncEngine] = None,
        settings: Optional[Settings] = None,
    ):
        self.directory = directory
        self._engine = engine or timeseries_engine
        self._settings = settings or default_settings

    async def run_cleanup_cycle(self, table: str, now: int | None = None) -> CleanupResult:
        now = self.directory.now() if now is None else now
        result = CleanupResult(table=table)

        await self.directory.deactivate_expired(table, now)
        await self.directory.activate_current(table, now)
        archive_cutoff = days_ago(now, self._settings.archive_grace_days)

        for partition in await self.directory.list_partitions(table):
            if partition.retention_days is None or not partition.auto_cleanup_enabled:
                continue
            try:
                async with self.directory.lock_for(partition.id):
                    if partition.end_ts <= days_ago(now, partition.retention_days):
                        removed = await self.directory.delete(partition.id)
                        result.partitions_deleted += 1
                        result.records_removed += removed
                        result.bytes_reclaimed += partition.size_bytes
                        logger.info(
                            "🗑️  Deleted partition %s/%s (%d rows, %d bytes)",
                            table, partition.partition_identifier, removed, partition.size_bytes,
                        )
                    elif not partition.is_archived and partition.end_ts <= archive_cutoff:
                        if await self.directory.archive(partition.id):
                            result.partitions_archived += 1
                            logger.info("📦 Archived partition %s/%s", table, partition.partition_identifier)
            except TrendlogError as e:
                logger.error("Cleanup of partition %s/%s failed: %s", table, partition.partition_identifier, e)
                result.errors.append(f"{partition.partition_identifier}: {e.message}")

        result.message = (
            f"Archived {result.partitions_archived}, deleted {result.partitions_deleted} partitions, "
            f"removed {result.records_removed} records"
        )
        logger.info("🧹 Cleanup %s: %s", table, result.message)
        return result

    async def _store_size(self, conn) -> int:
        page_count = (await conn.exec_driver_sql("PRAGMA page_count")).scalar() or 0
        page_size = (await conn.exec_driver_sql("PRAGMA page_size")).scalar() or 0
        return page_count * page_size

    async def refresh_stats(self, table: str) -> None:
        """Recompute partition counters from the rows actually stored."""
        overhead = self._settings.row_overhead_bytes
        try:
            async with self.directory.session_factory() as session:
                totals = await session.execute(
                    select(
                        TrendlogPoint.partition_id,
                        func.count(TrendlogPoint.id),
                        func.coalesce(func.sum(func.length(cast(TrendlogPoint.value, LargeBinary))), 0),
                    )
                    .where(TrendlogPoint.table_name == table)
                    .group_by(TrendlogPoint.partition_id)
                )
                counted = {pid: (n, size + n * overhead) for pid, n, size in totals.all()}
                ids = (
                    await session.execute(select(Partition.id).where(Partition.table_name == table))
                ).scalars().all()
                for pid in ids:
                    records, size = counted.get(pid, (0, 0))
                    await session.execute(
                        update(Partition)
                        .where(Partition.id == pid)
                        .values(record_count=records, size_bytes=size)
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "refresh partition stats")

    async def optimize(self, table: str) -> OptimizeResult:
        """Refresh counters, then VACUUM / ANALYZE the time-series store."""
        await self.refresh_stats(table)
        if self._engine.dialect.name != "sqlite":
            logger.warning("optimize() only compacts SQLite stores, skipping %s", self._engine.dialect.name)
            return OptimizeResult(table=table, size_before_bytes=0, size_after_bytes=0)

        try:
            async with self._engine.connect() as conn:
                # VACUUM cannot run inside a transaction
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
                before = await self._store_size(conn)
                await conn.exec_driver_sql("VACUUM")
                await conn.exec_driver_sql("ANALYZE")
                after = await self._store_size(conn)
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "optimize store")

        logger.info("⚙️  Optimized %s store: %d → %d bytes", table, before, after)
        return OptimizeResult(table=table, size_before_bytes=before, size_after_bytes=after)

    async def stats(self, table: str) -> TableStats:
        partitions = await self.directory.list_partitions(table)
        return TableStats(
            table=table,
            partition_count=len(partitions),
            total_records=sum(p.record_count for p in partitions),
            total_size_bytes=sum(p.size_bytes for p in partitions),
            partitions=[PartitionStats.model_validate(p) for p in partitions],
        )
