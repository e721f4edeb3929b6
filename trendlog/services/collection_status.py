"""
Collection status — liveness of ingestion per device (point_id 0) or per point.
"""

import logging
import time
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from trendlog.database import app_session
from trendlog.errors import BadRequestError, StoreError
from trendlog.models.collection_status import CollectionStatus
from trendlog.schemas import CollectionState

logger = logging.getLogger("trendlog.collection")

DEVICE_LEVEL = 0


class CollectionTracker:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._session_factory = session_factory or app_session
        self._clock = clock or time.time

    async def get(self, device_id: int, point_id: int = DEVICE_LEVEL) -> CollectionStatus | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CollectionStatus).where(
                        CollectionStatus.device_id == device_id,
                        CollectionStatus.point_id == point_id,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError.wrap(e, "read collection status")

    async def mark_success(self, device_id: int, point_id: int = DEVICE_LEVEL) -> CollectionStatus:
        now = int(self._clock())

        def mutate(row: CollectionStatus):
            row.status = CollectionState.COLLECTING.value
            row.last_collection = now
            row.total_collections = (row.total_collections or 0) + 1

        return await self._apply(device_id, point_id, mutate)

    async def mark_error(
        self, device_id: int, message: str, point_id: int = DEVICE_LEVEL
    ) -> CollectionStatus:
        def mutate(row: CollectionStatus):
            row.status = CollectionState.ERROR.value
            row.last_error = message
            row.error_count = (row.error_count or 0) + 1
            row.total_collections = (row.total_collections or 0) + 1

        return await self._apply(device_id, point_id, mutate)

    async def set_status(
        self, device_id: int, status: str, point_id: int = DEVICE_LEVEL
    ) -> CollectionStatus:
        try:
            status = CollectionState(status).value
        except ValueError as e:
            raise BadRequestError(str(e)) from e

        def mutate(row: CollectionStatus):
            row.status = status

        return await self._apply(device_id, point_id, mutate)

    async def _apply(self, device_id: int, point_id: int, mutate) -> CollectionStatus:
        # One retry covers the first-insert race on (device_id, point_id)
        for attempt in range(2):
            try:
                async with self._session_factory() as session:
                    result = await session.execute(
                        select(CollectionStatus).where(
                            CollectionStatus.device_id == device_id,
                            CollectionStatus.point_id == point_id,
                        )
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        row = CollectionStatus(
                            device_id=device_id,
                            point_id=point_id,
                            status=CollectionState.STOPPED.value,
                            error_count=0,
                            total_collections=0,
                        )
                        session.add(row)
                    mutate(row)
                    await session.commit()
                    return row
            except IntegrityError:
                if attempt:
                    raise StoreError(f"Could not create collection status for device {device_id}")
                logger.debug("Collection status for device %s created concurrently", device_id)
            except SQLAlchemyError as e:
                raise StoreError.wrap(e, "update collection status")
