"""
T3000 Trendlog Store — Partition directory model (time-series store).

One row per physical, time-bounded shard of a logical trendlog table.
Ranges are half-open: ``start_ts`` inclusive, ``end_ts`` exclusive, both
Unix seconds UTC.
"""

import time

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trendlog.database import TimeseriesBase


def _now_ts() -> int:
    return int(time.time())


class Partition(TimeseriesBase):
    __tablename__ = "database_partitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    partition_type: Mapped[str] = mapped_column(String(20), nullable=False)  # daily / weekly / monthly
    partition_identifier: Mapped[str] = mapped_column(String(20), nullable=False)

    start_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)

    record_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # NULL retention = permanent
    retention_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_cleanup_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_cleanup_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, default=_now_ts)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=_now_ts, onupdate=_now_ts)

    __table_args__ = (
        UniqueConstraint(
            "table_name", "partition_type", "partition_identifier", name="uq_partition_identity"
        ),
        CheckConstraint("start_ts < end_ts", name="ck_partition_range"),
    )

    def covers(self, ts: int) -> bool:
        return self.start_ts <= ts < self.end_ts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_name": self.table_name,
            "partition_type": self.partition_type,
            "partition_identifier": self.partition_identifier,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "record_count": self.record_count,
            "size_bytes": self.size_bytes,
            "is_active": self.is_active,
            "is_archived": self.is_archived,
            "retention_days": self.retention_days,
            "auto_cleanup_enabled": self.auto_cleanup_enabled,
            "last_cleanup_at": self.last_cleanup_at,
        }

    def __repr__(self):
        return (
            f"<Partition {self.table_name}/{self.partition_type}/{self.partition_identifier} "
            f"({self.record_count} rows)>"
        )
