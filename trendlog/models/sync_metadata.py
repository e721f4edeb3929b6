"""
T3000 Trendlog Store — Data sync metadata model (application store).

One row per sync attempt, from either the FFI background service or a manual
UI refresh. Never updated; pruned to the newest N rows per device/data type.
"""

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text

from trendlog.database import AppBase


class SyncMetadata(AppBase):
    """Immutable record of one sync attempt."""
    __tablename__ = "data_sync_metadata"

    id = Column(Integer, primary_key=True, autoincrement=True)

    sync_time = Column(BigInteger, nullable=False)          # Unix seconds
    sync_time_fmt = Column(String(32), nullable=False)      # "2025-01-25 14:03:00" local time

    data_type = Column(String(20), nullable=False)          # INPUTS, OUTPUTS, VARIABLES, ...
    serial_number = Column(String(32), nullable=False)
    panel_id = Column(Integer, nullable=True)

    records_synced = Column(Integer, default=0, nullable=False)
    sync_method = Column(String(20), nullable=False)        # FFI_BACKEND / UI_REFRESH
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_sync_meta_key_time", "serial_number", "data_type", "sync_time"),
    )

    def __repr__(self):
        state = "ok" if self.success else "failed"
        return f"<SyncMetadata {self.serial_number}/{self.data_type} @{self.sync_time} {state}>"
