"""
Partition Directory — maps (table, kind, time) to a concrete partition row.

Partitions are created lazily the first time a write lands in a period that
has no row yet. Creation is idempotent under concurrency: the UNIQUE
(table_name, partition_type, partition_identifier) constraint lets exactly one
INSERT win; every loser catches the IntegrityError, rolls back and re-reads
the winner's row, so all callers end up holding the same partition id.

"Active" means "the partition covering now", at most one per (table, kind).
Archived partitions are read-only and never active.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trendlog.config import Settings, settings as default_settings
from trendlog.database import timeseries_session
from trendlog.errors import BadRequestError, NotFoundError, StoreError
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.services.periods import PeriodBounds, period_bounds

logger = logging.getLogger("trendlog.partitions")


class PartitionDirectory:
    """Owns partition metadata for every partitioned trendlog table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._session_factory = session_factory or timeseries_session
        self._settings = settings or default_settings
        self._clock = clock or time.time
        # In-process serialization between ingestion and cleanup on one partition
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    def now(self) -> int:
        return int(self._clock())

    def lock_for(self, partition_id: int) -> asyncio.Lock:
        lock = self._locks.get(partition_id)
        if lock is None:
            lock = self._locks[partition_id] = asyncio.Lock()
        return lock

    def bounds_for(self, table: str, ts: int, kind: str | None = None) -> PeriodBounds:
        return period_bounds(kind or self._settings.partition_kind_for(table), ts)

    # ── Lookup ─────────────────────────────────────────

    async def get(self, partition_id: int) -> Partition:
        try:
            async with self._session_factory() as session:
                partition = await session.get(Partition, partition_id)
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "load partition")
        if partition is None:
            raise NotFoundError(f"Partition {partition_id} not found")
        return partition

    async def find(self, table: str, kind: str, identifier: str) -> Partition | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Partition).where(
                        Partition.table_name == table,
                        Partition.partition_type == kind,
                        Partition.partition_identifier == identifier,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "find partition")

    async def list_partitions(self, table: str) -> list[Partition]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Partition)
                    .where(Partition.table_name == table)
                    .order_by(Partition.start_ts.asc(), Partition.id.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "list partitions")

    async def list_partitions_covering(self, table: str, start: int, end: int) -> list[Partition]:
        """Partitions whose [start_ts, end_ts) intersects [start, end), by start ascending."""
        if start >= end:
            raise BadRequestError(f"Empty range: start {start} must be before end {end}")
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Partition)
                    .where(
                        Partition.table_name == table,
                        Partition.start_ts < end,
                        Partition.end_ts > start,
                    )
                    .order_by(Partition.start_ts.asc(), Partition.id.asc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "list covering partitions")

    # ── Lifecycle ──────────────────────────────────────

    async def resolve_or_create_partition(self, table: str, kind: str, ts: int) -> Partition:
        bounds = period_bounds(kind, ts)

        existing = await self.find(table, kind, bounds.identifier)
        if existing is not None:
            # Created early (future-dated) and its period has now arrived
            if not existing.is_active and not existing.is_archived and bounds.covers(self.now()):
                existing = await self.activate(existing)
            return existing

        now = self.now()
        partition = Partition(
            table_name=table,
            partition_type=kind,
            partition_identifier=bounds.identifier,
            start_ts=bounds.start_ts,
            end_ts=bounds.end_ts,
            record_count=0,
            size_bytes=0,
            is_active=bounds.covers(now),
            is_archived=False,
            retention_days=self._settings.retention_days_for(kind),
            auto_cleanup_enabled=True,
        )
        try:
            async with self._session_factory() as session:
                session.add(partition)
                await session.commit()
        except IntegrityError:
            # Lost the creation race, read the winner
            winner = await self.find(table, kind, bounds.identifier)
            if winner is None:
                raise StoreError(
                    f"Partition {table}/{kind}/{bounds.identifier} vanished after a duplicate insert"
                )
            logger.debug("Partition %s/%s already created concurrently", table, bounds.identifier)
            return winner
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "create partition")

        logger.info(
            "🗂️  Created %s partition %s for %s (retention=%sd)",
            kind, bounds.identifier, table, partition.retention_days,
        )
        if partition.is_active:
            await self.deactivate_expired(table, now, kind=kind)
        return partition

    async def activate(self, partition: Partition) -> Partition:
        """Make ``partition`` the only active one of its (table, kind)."""
        now = self.now()
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Partition)
                    .where(
                        Partition.table_name == partition.table_name,
                        Partition.partition_type == partition.partition_type,
                        Partition.id != partition.id,
                        Partition.is_active.is_(True),
                    )
                    .values(is_active=False, updated_at=now)
                )
                result = await session.execute(
                    update(Partition)
                    .where(Partition.id == partition.id, Partition.is_archived.is_(False))
                    .values(is_active=True, updated_at=now)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "activate partition")
        if result.rowcount:
            partition.is_active = True
            logger.info(
                "Activated %s partition %s for %s",
                partition.partition_type, partition.partition_identifier, partition.table_name,
            )
        return partition

    async def activate_current(self, table: str, now: int) -> Partition | None:
        """Activate the existing partition covering ``now``, if it is not already."""
        kind = self._settings.partition_kind_for(table)
        current = await self.find(table, kind, period_bounds(kind, now).identifier)
        if current is None or current.is_active or current.is_archived:
            return current
        return await self.activate(current)

    async def deactivate_expired(self, table: str, now: int, kind: str | None = None) -> int:
        """Clear ``is_active`` on every partition whose period has ended."""
        stmt = (
            update(Partition)
            .where(
                Partition.table_name == table,
                Partition.is_active.is_(True),
                Partition.end_ts <= now,
            )
            .values(is_active=False, updated_at=now)
        )
        if kind:
            stmt = stmt.where(Partition.partition_type == kind)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "deactivate partitions")
        return result.rowcount or 0

    async def update_stats(
        self,
        partition_id: int,
        record_delta: int,
        byte_delta: int,
        session: AsyncSession | None = None,
    ) -> None:
        """Accumulate row/byte counters. Runs inside ``session`` when the caller owns a transaction."""
        stmt = (
            update(Partition)
            .where(Partition.id == partition_id)
            .values(
                record_count=Partition.record_count + record_delta,
                size_bytes=Partition.size_bytes + byte_delta,
                updated_at=self.now(),
            )
        )
        if session is not None:
            result = await session.execute(stmt)
        else:
            try:
                async with self._session_factory() as own:
                    result = await own.execute(stmt)
                    await own.commit()
            except SQLAlchemyError as e:
                raise StoreError.wrap(e, "update partition stats")
        if not result.rowcount:
            raise NotFoundError(f"Partition {partition_id} not found")

    async def archive(self, partition_id: int) -> bool:
        """Mark read-only. Returns False when already archived or absent."""
        now = self.now()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Partition)
                    .where(Partition.id == partition_id, Partition.is_archived.is_(False))
                    .values(is_archived=True, is_active=False, last_cleanup_at=now, updated_at=now)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "archive partition")
        return bool(result.rowcount)

    async def delete(self, partition_id: int) -> int:
        """Drop a partition and all of its rows. Returns rows removed (0 when already gone)."""
        try:
            async with self._session_factory() as session:
                rows = await session.execute(
                    delete(TrendlogPoint).where(TrendlogPoint.partition_id == partition_id)
                )
                await session.execute(delete(Partition).where(Partition.id == partition_id))
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "delete partition")
        self._locks.pop(partition_id, None)
        return rows.rowcount or 0
