"""
T3000 Trendlog Store — trendlog sample rows (time-series store).

Rows are append-only. ``value`` stays TEXT to keep the controller's legacy
formatting; callers parse it with ``numeric_value`` when they need a number.
"""

import time

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trendlog.database import TimeseriesBase


class TrendlogPoint(TimeseriesBase):
    __tablename__ = "trendlog_data"

    # autoincrement id doubles as the insertion-order tie breaker
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partition_id: Mapped[int] = mapped_column(Integer, nullable=False)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Point reference
    serial_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    panel_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    point_type: Mapped[str] = mapped_column(String(20), nullable=False)   # INPUT / OUTPUT / VARIABLE
    point_number: Mapped[int] = mapped_column(Integer, nullable=False)

    value: Mapped[str] = mapped_column(Text, nullable=False)
    quality: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    data_source: Mapped[str] = mapped_column(String(20), nullable=False)  # REALTIME / FFI_SYNC / ...
    created_by: Mapped[str] = mapped_column(String(20), nullable=False)   # FRONTEND / BACKEND / ...
    created_at: Mapped[int] = mapped_column(BigInteger, default=lambda: int(time.time()))

    __table_args__ = (
        Index("ix_trendlog_partition_time", "partition_id", "timestamp", "id"),
        Index("ix_trendlog_point_time", "serial_number", "point_type", "point_number", "timestamp"),
    )

    @property
    def numeric_value(self) -> float:
        return float(self.value)

    def __repr__(self):
        return (
            f"<TrendlogPoint {self.serial_number}/{self.point_type}{self.point_number} "
            f"@{self.timestamp}={self.value}>"
        )
