"""
Sync Provenance Ledger — one immutable record per sync attempt.

Each (serial_number, data_type) key keeps only its newest ``keep_count``
records. Pruning runs right after every insert; two concurrent writers on the
same key may briefly leave one or two extra rows until the next insert.
"""

import logging
import time
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trendlog.config import Settings, settings as default_settings
from trendlog.database import app_session
from trendlog.errors import BadRequestError, StoreError
from trendlog.models.sync_metadata import SyncMetadata
from trendlog.schemas import SyncDataType, SyncMethod
from trendlog.services.periods import format_local

logger = logging.getLogger("trendlog.ledger")


def _newest_first(stmt):
    return stmt.order_by(SyncMetadata.sync_time.desc(), SyncMetadata.id.desc())


class SyncLedger:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._session_factory = session_factory or app_session
        self._settings = settings or default_settings
        self._clock = clock or time.time

    @property
    def keep_count(self) -> int:
        return self._settings.sync_keep_count

    async def record(
        self,
        serial_number,
        data_type: str,
        records_synced: int,
        sync_method: str,
        success: bool = True,
        error_message: str | None = None,
        panel_id: int | None = None,
        sync_time: int | None = None,
    ) -> SyncMetadata:
        """Insert one provenance record and prune its key to the newest ``keep_count``."""
        try:
            data_type = SyncDataType(data_type).value
            sync_method = SyncMethod(sync_method).value
        except ValueError as e:
            raise BadRequestError(str(e)) from e

        now = int(self._clock())
        sync_time = now if sync_time is None else sync_time
        entry = SyncMetadata(
            sync_time=sync_time,
            sync_time_fmt=format_local(sync_time),
            data_type=data_type,
            serial_number=str(serial_number),
            panel_id=panel_id,
            records_synced=records_synced,
            sync_method=sync_method,
            success=success,
            error_message=error_message,
            created_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
                pruned = await self._prune(session, entry.serial_number, data_type)
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "record sync metadata")

        if pruned:
            logger.debug(
                "Pruned %d old sync records for %s/%s", pruned, entry.serial_number, data_type
            )
        log = logger.info if success else logger.warning
        log(
            "📝 Sync %s/%s via %s: %s (%d records)",
            entry.serial_number, data_type, sync_method,
            "ok" if success else f"failed: {error_message}", records_synced,
        )
        return entry

    async def _prune(self, session: AsyncSession, serial_number: str, data_type: str) -> int:
        keep = (
            _newest_first(
                select(SyncMetadata.id).where(
                    SyncMetadata.serial_number == serial_number,
                    SyncMetadata.data_type == data_type,
                )
            )
            .limit(self.keep_count)
            .scalar_subquery()
        )
        result = await session.execute(
            delete(SyncMetadata).where(
                SyncMetadata.serial_number == serial_number,
                SyncMetadata.data_type == data_type,
                SyncMetadata.id.not_in(keep),
            )
        )
        await session.commit()
        return result.rowcount or 0

    async def latest(self, serial_number, data_type: str) -> SyncMetadata | None:
        rows = await self.history(serial_number, data_type, limit=1)
        return rows[0] if rows else None

    async def history(self, serial_number, data_type: str, limit: int = 10) -> list[SyncMetadata]:
        data_type = getattr(data_type, "value", data_type)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    _newest_first(
                        select(SyncMetadata).where(
                            SyncMetadata.serial_number == str(serial_number),
                            SyncMetadata.data_type == data_type,
                        )
                    ).limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "read sync history")

    async def all_for_device(self, serial_number) -> list[SyncMetadata]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    _newest_first(
                        select(SyncMetadata).where(
                            SyncMetadata.serial_number == str(serial_number)
                        )
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "read device sync records")
