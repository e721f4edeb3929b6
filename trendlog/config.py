"""
T3000 Trendlog Store — Configuration via environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Databases. Application data and time-series partitions live apart;
    # cleanup on the time-series store never touches the ledger.
    app_database_url: str = Field(
        default="sqlite+aiosqlite:///./webview_database.db",
        description="Async SQLAlchemy URL for application data (sync ledger, collection status)",
    )
    timeseries_database_url: str = Field(
        default="sqlite+aiosqlite:///./webview_t3_device.db",
        description="Async SQLAlchemy URL for the partitioned trendlog store",
    )

    # Partitioning
    default_table: str = Field(default="trendlog_data")
    table_partition_kinds: dict[str, str] = Field(
        default_factory=lambda: {"trendlog_data": "daily"},
        description="Logical table → partition kind (daily / weekly / monthly)",
    )
    daily_retention_days: int = Field(default=30)
    weekly_retention_days: int = Field(default=84)     # 12 weeks
    monthly_retention_days: int = Field(default=365)
    archive_grace_days: int = Field(
        default=1, description="Days after a partition closes before it becomes read-only"
    )
    row_overhead_bytes: int = Field(
        default=48, description="Per-row byte estimate added on top of the value text"
    )
    max_timestamp: int = Field(
        default=4102444800,
        description="Latest accepted sample time in Unix seconds (2100-01-01Z)",
    )

    # Sync ledger
    sync_keep_count: int = Field(default=10, description="Ledger rows kept per device/data type")

    # Query
    query_page_size: int = Field(default=500, description="Rows fetched per partition page")

    # Scheduler (seconds)
    scheduler_enabled: bool = Field(default=True)
    scheduler_startup_delay: int = Field(default=0)
    trendlog_sync_interval: int = Field(default=900, description="Full LOGGING_DATA sweep")
    realtime_sync_interval: int = Field(default=0, description="Near-real-time sync, 0 disables")
    cleanup_interval: int = Field(default=86400)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def retention_days_for(self, kind: str) -> int:
        """Default retention for a freshly created partition of ``kind``."""
        return {
            "daily": self.daily_retention_days,
            "weekly": self.weekly_retention_days,
            "monthly": self.monthly_retention_days,
        }.get(kind, self.daily_retention_days)

    def partition_kind_for(self, table: str) -> str:
        return self.table_partition_kinds.get(table, "daily")


settings = Settings()
