"""
Ingestion Pipeline — turns one controller/UI batch into trendlog rows.

Flow for a batch:
  validate every point      → BadRequest before anything is written
  group by partition period → one directory lookup per distinct period
  write rows + stats        → single time-series transaction (all or nothing)
  record provenance         → exactly one ledger entry per batch, ok or failed

Failures are never retried here; the scheduler simply tries again next tick.
"""

from __future__ import annotations

import logging
import math
from contextlib import AsyncExitStack
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from trendlog.config import Settings, settings as default_settings
from trendlog.errors import BadRequestError, StoreError, TrendlogError
from trendlog.models.partition import Partition
from trendlog.models.trendlog import TrendlogPoint
from trendlog.schemas import (
    CreatedBy,
    DataSource,
    PointReading,
    PointRef,
    SyncDataType,
    SyncMethod,
    SyncOutcome,
)
from trendlog.services.collection_status import CollectionTracker
from trendlog.services.partition_directory import PartitionDirectory
from trendlog.services.sync_ledger import SyncLedger

logger = logging.getLogger("trendlog.ingest")

# method → (data_source, created_by) when the caller does not tag the batch
DEFAULT_TAGS = {
    SyncMethod.FFI_BACKEND: (DataSource.FFI_SYNC, CreatedBy.FFI_SYNC_SERVICE),
    SyncMethod.UI_REFRESH: (DataSource.MANUAL, CreatedBy.FRONTEND),
}


@dataclass
class _Sample:
    serial_number: int
    panel_id: int | None
    point_type: str
    point_number: int
    value: str
    quality: int
    timestamp: int


def _coerce(device: int, panel_id: int | None, point, index: int, max_ts: int) -> _Sample:
    """Accept a PointReading, a mapping, or a ``(PointRef, value, quality, ts)`` tuple."""
    if isinstance(point, tuple):
        if len(point) != 4 or not isinstance(point[0], PointRef):
            raise BadRequestError(f"Point #{index}: expected (point_ref, value, quality, timestamp)")
        ref, value, quality, ts = point
        if ref.serial_number != device:
            raise BadRequestError(
                f"Point #{index}: belongs to device {ref.serial_number}, batch is for {device}"
            )
        point_type, point_number = ref.point_type, ref.point_number
        panel = ref.panel_id if ref.panel_id is not None else panel_id
    else:
        if isinstance(point, Mapping):
            try:
                point = PointReading.model_validate(point)
            except ValueError as e:
                raise BadRequestError(f"Point #{index}: {e}") from e
        if not isinstance(point, PointReading):
            raise BadRequestError(f"Point #{index}: unsupported point type {type(point).__name__}")
        point_type, point_number = point.point_type, point.point_number
        value, quality, ts = point.value, point.quality, point.timestamp
        panel = panel_id

    if not point_type or point_number is None or point_number < 0:
        raise BadRequestError(f"Point #{index}: missing point reference")
    if isinstance(value, bool):
        raise BadRequestError(f"Point #{index}: value {value!r} is not numeric")
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        raise BadRequestError(f"Point #{index}: value {value!r} is not numeric") from None
    if not math.isfinite(number):
        raise BadRequestError(f"Point #{index}: value {value!r} is not finite")
    if not isinstance(ts, int) or isinstance(ts, bool) or ts < 0:
        raise BadRequestError(f"Point #{index}: timestamp must be a non-negative integer")
    if ts > max_ts:
        raise BadRequestError(
            f"Point #{index}: timestamp {ts} is past {max_ts} (milliseconds instead of seconds?)"
        )

    return _Sample(
        serial_number=device,
        panel_id=panel,
        point_type=point_type.upper(),
        point_number=int(point_number),
        value=text,
        quality=int(quality or 0),
        timestamp=int(ts),
    )


class IngestionPipeline:
    """Single entry point for both scheduled FFI sweeps and manual UI refreshes."""

    def __init__(
        self,
        directory: PartitionDirectory,
        ledger: SyncLedger,
        tracker: Optional[CollectionTracker] = None,
        settings: Optional[Settings] = None,
    ):
        self.directory = directory
        self.ledger = ledger
        self.tracker = tracker
        self._settings = settings or default_settings

    async def ingest_batch(
        self,
        device: int,
        data_type: str,
        points: Iterable,
        source: str | None = None,
        method: str = SyncMethod.FFI_BACKEND,
        *,
        panel_id: int | None = None,
        created_by: str | None = None,
        table: str | None = None,
    ) -> SyncOutcome:
        """
        Write a batch atomically and record its provenance.

        Raises BadRequestError for a malformed batch (after recording the
        failed attempt). Store failures are returned as an unsuccessful
        ``SyncOutcome``; the ledger already holds the matching failed record.
        """
        try:
            data_type = SyncDataType(data_type)
            method = SyncMethod(method)
            default_source, default_creator = DEFAULT_TAGS[method]
            source = DataSource(source) if source else default_source
            created_by = CreatedBy(created_by) if created_by else default_creator
        except ValueError as e:
            raise BadRequestError(str(e)) from e

        table = table or self._settings.default_table
        points = list(points)
        attempted = len(points)

        try:
            max_ts = self._settings.max_timestamp
            samples = [_coerce(device, panel_id, p, i, max_ts) for i, p in enumerate(points)]
            written, identifiers = await self._write(table, samples, source, created_by)
        except TrendlogError as e:
            return await self._fail(device, data_type, method, panel_id, attempted, e)
        except SQLAlchemyError as e:
            return await self._fail(
                device, data_type, method, panel_id, attempted, StoreError.wrap(e, "write batch")
            )

        sync_id = None
        try:
            entry = await self.ledger.record(
                device, data_type, written, method, success=True, panel_id=panel_id
            )
            sync_id = entry.id
        except TrendlogError as e:
            logger.error("Batch for %s/%s written but provenance failed: %s", device, data_type.value, e)
        await self._track(device, None)

        logger.info(
            "📥 Ingested %d %s points for device %s into %s %s",
            written, data_type.value, device, table, ", ".join(identifiers) or "-",
        )
        return SyncOutcome(
            success=True, records_synced=written, partitions=identifiers, sync_id=sync_id
        )

    async def _write(
        self, table: str, samples: list[_Sample], source: DataSource, created_by: CreatedBy
    ) -> tuple[int, list[str]]:
        if not samples:
            return 0, []

        kind = self._settings.partition_kind_for(table)

        # Group in input order; one directory resolution per distinct period
        groups: dict[str, list[_Sample]] = {}
        for sample in samples:
            bounds = self.directory.bounds_for(table, sample.timestamp, kind)
            groups.setdefault(bounds.identifier, []).append(sample)

        # Archived periods fail the batch before any new partition is created
        for identifier in groups:
            existing = await self.directory.find(table, kind, identifier)
            if existing is not None and existing.is_archived:
                raise BadRequestError(f"Partition {table}/{identifier} is archived (read-only)")

        resolved: list[tuple[Partition, list[_Sample]]] = []
        for identifier, group in groups.items():
            partition = await self.directory.resolve_or_create_partition(
                table, kind, group[0].timestamp
            )
            resolved.append((partition, group))

        async with AsyncExitStack() as stack:
            # Locks are always taken in partition id order
            for partition, _ in sorted(resolved, key=lambda r: r[0].id):
                await stack.enter_async_context(self.directory.lock_for(partition.id))

            async with self.directory.session_factory() as session:
                for partition, group in resolved:
                    current = await session.get(Partition, partition.id)
                    if current is None:
                        raise StoreError(
                            f"Partition {partition.partition_identifier} was removed during ingestion"
                        )
                    if current.is_archived:
                        raise BadRequestError(
                            f"Partition {table}/{current.partition_identifier} is archived (read-only)"
                        )

                    session.add_all(
                        TrendlogPoint(
                            partition_id=partition.id,
                            table_name=table,
                            serial_number=s.serial_number,
                            panel_id=s.panel_id,
                            point_type=s.point_type,
                            point_number=s.point_number,
                            value=s.value,
                            quality=s.quality,
                            timestamp=s.timestamp,
                            data_source=source.value,
                            created_by=created_by.value,
                        )
                        for s in group
                    )
                    size = sum(
                        len(s.value.encode()) + self._settings.row_overhead_bytes for s in group
                    )
                    await self.directory.update_stats(partition.id, len(group), size, session=session)
                await session.commit()
        return len(samples), [p.partition_identifier for p, _ in resolved]

    async def _fail(self, device, data_type, method, panel_id, attempted, error: TrendlogError) -> SyncOutcome:
        message = f"attempted {attempted}, written 0: {error.message}"
        logger.warning("⚠️ Batch for %s/%s failed: %s", device, data_type.value, message)

        sync_id = None
        try:
            entry = await self.ledger.record(
                device, data_type, 0, method,
                success=False, error_message=message, panel_id=panel_id,
            )
            sync_id = entry.id
        except TrendlogError as e:
            logger.error("Could not record failed sync for %s/%s: %s", device, data_type.value, e)
        await self._track(device, message)

        if isinstance(error, BadRequestError):
            raise error
        return SyncOutcome(success=False, records_synced=0, sync_id=sync_id, error_message=message)

    async def _track(self, device: int, error: str | None) -> None:
        if self.tracker is None:
            return
        try:
            if error is None:
                await self.tracker.mark_success(device)
            else:
                await self.tracker.mark_error(device, error)
        except TrendlogError as e:
            logger.warning("Collection status update failed for device %s: %s", device, e)
