"""
T3000 Trendlog Store — Collection status model (application store).
Tracks liveness of ongoing ingestion per device (point_id NULL) or per point.
"""

import time

from sqlalchemy import BigInteger, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trendlog.database import AppBase


def _now_ts() -> int:
    return int(time.time())


class CollectionStatus(AppBase):
    __tablename__ = "collection_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # 0 stands for "device level" so the unique key also holds on SQLite,
    # which treats NULLs as distinct.
    point_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="stopped")
    last_collection: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_collections: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[int] = mapped_column(BigInteger, default=_now_ts)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=_now_ts, onupdate=_now_ts)

    __table_args__ = (
        UniqueConstraint("device_id", "point_id", name="uq_collection_status_target"),
    )

    @property
    def success_rate(self) -> float:
        if not self.total_collections:
            return 0.0
        return (self.total_collections - self.error_count) / self.total_collections

    def too_many_errors(self, threshold: int) -> bool:
        return self.error_count >= threshold

    def __repr__(self):
        return f"<CollectionStatus device={self.device_id} point={self.point_id} {self.status}>"
