"""
Multi-Partition Query Engine — ordered reads across partition boundaries.

Every intersecting partition gets its own lazy, keyset-paginated scan
ordered by ``(timestamp, id)``; a heap merges the scan heads so memory stays
bounded by ``partitions × page_size`` no matter how wide the range is.
The merge is an async generator, so an abandoned consumer (``aclose()`` or
task cancellation) closes every open scan.
"""

import heapq
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from trendlog.config import Settings, settings as default_settings
from trendlog.errors import BadRequestError, StoreError
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.schemas import DeviceStats, PointRef, PointSummary, TrendlogRow
from trendlog.services.partition_directory import PartitionDirectory
from trendlog.services.periods import format_local

logger = logging.getLogger("trendlog.query")


def _to_row(point: TrendlogPoint) -> TrendlogRow:
    return TrendlogRow(
        id=point.id,
        serial_number=point.serial_number,
        panel_id=point.panel_id,
        point_type=point.point_type,
        point_number=point.point_number,
        value=point.value,
        quality=point.quality,
        timestamp=point.timestamp,
        timestamp_fmt=format_local(point.timestamp),
        data_source=point.data_source,
        created_by=point.created_by,
    )


def _ref_filter(point_refs: Sequence[PointRef]):
    """OR of exact point matches; no refs means every point in the table."""
    if not point_refs:
        return None
    return or_(
        *(
            and_(
                TrendlogPoint.serial_number == ref.serial_number,
                TrendlogPoint.point_type == ref.point_type.upper(),
                TrendlogPoint.point_number == ref.point_number,
            )
            for ref in point_refs
        )
    )


class QueryEngine:
    def __init__(self, directory: PartitionDirectory, settings: Optional[Settings] = None):
        self.directory = directory
        self._settings = settings or default_settings

    async def _scan(
        self, partition: Partition, point_refs: Sequence[PointRef], start: int, end: int
    ) -> AsyncIterator[TrendlogPoint]:
        page_size = self._settings.query_page_size
        refs = _ref_filter(point_refs)
        last: tuple[int, int] | None = None

        while True:
            stmt = select(TrendlogPoint).where(
                TrendlogPoint.partition_id == partition.id,
                TrendlogPoint.timestamp >= start,
                TrendlogPoint.timestamp < end,
            )
            if refs is not None:
                stmt = stmt.where(refs)
            if last is not None:
                ts, row_id = last
                stmt = stmt.where(
                    or_(
                        TrendlogPoint.timestamp > ts,
                        and_(TrendlogPoint.timestamp == ts, TrendlogPoint.id > row_id),
                    )
                )
            stmt = stmt.order_by(TrendlogPoint.timestamp.asc(), TrendlogPoint.id.asc()).limit(page_size)

            try:
                async with self.directory.session_factory() as session:
                    page = list((await session.execute(stmt)).scalars().all())
            except SQLAlchemyError as e:
                logger.warning(
                    "Scan of partition %s (%s) failed, skipping: %s",
                    partition.id, partition.partition_identifier, e,
                )
                return

            for point in page:
                yield point
            if len(page) < page_size:
                return
            last = (page[-1].timestamp, page[-1].id)

    async def query_range(
        self, table: str, point_refs: Sequence[PointRef], start: int, end: int
    ) -> AsyncIterator[TrendlogRow]:
        """Rows in ``[start, end)`` for ``point_refs``, ordered by timestamp then row id."""
        partitions = await self.directory.list_partitions_covering(table, start, end)
        logger.debug("Query %s [%d, %d) spans %d partitions", table, start, end, len(partitions))

        scans = [self._scan(p, point_refs, start, end) for p in partitions]
        heap: list[tuple[int, int, int, TrendlogPoint]] = []
        try:
            for idx, scan in enumerate(scans):
                head = await anext(scan, None)
                if head is not None:
                    heapq.heappush(heap, (head.timestamp, head.id, idx, head))

            while heap:
                _, _, idx, point = heapq.heappop(heap)
                yield _to_row(point)
                head = await anext(scans[idx], None)
                if head is not None:
                    heapq.heappush(heap, (head.timestamp, head.id, idx, head))
        finally:
            for scan in scans:
                await scan.aclose()

    async def collect_range(
        self,
        table: str,
        point_refs: Sequence[PointRef],
        start: int,
        end: int,
        limit: int | None = None,
    ) -> list[TrendlogRow]:
        if limit is not None and limit < 1:
            raise BadRequestError("limit must be positive")
        rows: list[TrendlogRow] = []
        async with aclosing(self.query_range(table, point_refs, start, end)) as stream:
            async for row in stream:
                rows.append(row)
                if limit is not None and len(rows) >= limit:
                    break
        return rows

    async def summarize_range(
        self, table: str, point_refs: Sequence[PointRef], start: int, end: int
    ) -> list[PointSummary]:
        """Per-point count / min / max / avg over the numeric form of each value."""
        acc: dict[tuple[int, str, int], dict] = {}
        async with aclosing(self.query_range(table, point_refs, start, end)) as stream:
            async for row in stream:
                try:
                    value = row.numeric_value
                except ValueError:
                    logger.warning("Row %d holds non-numeric value %r", row.id, row.value)
                    continue
                key = (row.serial_number, row.point_type, row.point_number)
                s = acc.get(key)
                if s is None:
                    acc[key] = {
                        "count": 1, "min": value, "max": value, "sum": value,
                        "first": row.timestamp, "last": row.timestamp,
                    }
                    continue
                s["count"] += 1
                s["min"] = min(s["min"], value)
                s["max"] = max(s["max"], value)
                s["sum"] += value
                s["last"] = row.timestamp

        return [
            PointSummary(
                serial_number=serial,
                point_type=point_type,
                point_number=number,
                count=s["count"],
                min=s["min"],
                max=s["max"],
                avg=s["sum"] / s["count"],
                first_timestamp=s["first"],
                last_timestamp=s["last"],
            )
            for (serial, point_type, number), s in sorted(acc.items())
        ]

    async def recent(
        self,
        table: str,
        serial_number: int,
        panel_id: int | None = None,
        point_types: Sequence[str] | None = None,
        limit: int = 100,
    ) -> list[TrendlogRow]:
        """Newest rows first for one device, for the realtime display.

        Partitions are read newest-first and the walk stops as soon as
        ``limit`` rows are in hand, so old partitions are never touched.
        """
        if limit < 1:
            raise BadRequestError("limit must be positive")
        types = [t.upper() for t in point_types or []]
        rows: list[TrendlogRow] = []

        for partition in reversed(await self.directory.list_partitions(table)):
            stmt = select(TrendlogPoint).where(
                TrendlogPoint.partition_id == partition.id,
                TrendlogPoint.serial_number == serial_number,
            )
            if panel_id is not None:
                stmt = stmt.where(TrendlogPoint.panel_id == panel_id)
            if types:
                stmt = stmt.where(TrendlogPoint.point_type.in_(types))
            stmt = stmt.order_by(TrendlogPoint.timestamp.desc(), TrendlogPoint.id.desc()).limit(
                limit - len(rows)
            )
            try:
                async with self.directory.session_factory() as session:
                    page = (await session.execute(stmt)).scalars().all()
            except SQLAlchemyError as e:
                raise StoreError.wrap(e, "read recent trendlogs")

            rows.extend(_to_row(point) for point in page)
            if len(rows) >= limit:
                break
        return rows

    async def device_stats(
        self, table: str, serial_number: int, panel_id: int | None = None
    ) -> DeviceStats:
        stmt = (
            select(
                TrendlogPoint.point_type,
                func.count(TrendlogPoint.id),
                func.max(TrendlogPoint.timestamp),
            )
            .where(TrendlogPoint.table_name == table, TrendlogPoint.serial_number == serial_number)
            .group_by(TrendlogPoint.point_type)
        )
        if panel_id is not None:
            stmt = stmt.where(TrendlogPoint.panel_id == panel_id)
        try:
            async with self.directory.session_factory() as session:
                counts = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "count device trendlogs")

        latest = max((ts for _, _, ts in counts), default=None)
        return DeviceStats(
            serial_number=serial_number,
            panel_id=panel_id,
            total_records=sum(n for _, n, _ in counts),
            by_point_type=dict(sorted((point_type, n) for point_type, n, _ in counts)),
            latest_timestamp=latest,
            latest_timestamp_fmt=format_local(latest) if latest is not None else None,
        )
