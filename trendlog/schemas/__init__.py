"""
T3000 Trendlog Store — Pydantic request/response schemas.

Wire format is camelCase; services build these models with snake_case field
names (``populate_by_name``).
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PartitionKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SyncDataType(str, Enum):
    INPUTS = "INPUTS"
    OUTPUTS = "OUTPUTS"
    VARIABLES = "VARIABLES"
    PROGRAMS = "PROGRAMS"
    SCHEDULES = "SCHEDULES"
    HOLIDAYS = "HOLIDAYS"
    GRAPHICS = "GRAPHICS"
    ALARMS = "ALARMS"


class SyncMethod(str, Enum):
    FFI_BACKEND = "FFI_BACKEND"
    UI_REFRESH = "UI_REFRESH"


class DataSource(str, Enum):
    REALTIME = "REALTIME"
    FFI_SYNC = "FFI_SYNC"
    HISTORICAL = "HISTORICAL"
    MANUAL = "MANUAL"


class CreatedBy(str, Enum):
    FRONTEND = "FRONTEND"
    BACKEND = "BACKEND"
    FFI_SYNC_SERVICE = "FFI_SYNC_SERVICE"
    API = "API"


class CollectionState(str, Enum):
    COLLECTING = "collecting"
    STOPPED = "stopped"
    ERROR = "error"
    PAUSED = "paused"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Ingestion ──────────────────────────────────────────

class PointRef(CamelModel):
    """Identity of one monitored point: device serial + point type + number."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    serial_number: int
    point_type: str = Field(..., min_length=1, max_length=20)
    point_number: int = Field(..., ge=0)
    panel_id: int | None = None

    def key(self) -> tuple[int, str, int]:
        return (self.serial_number, self.point_type.upper(), self.point_number)


class PointReading(CamelModel):
    """One sample as delivered by the controller or the UI."""

    point_type: str = Field(..., min_length=1, max_length=20)
    point_number: int = Field(..., ge=0)
    value: str
    quality: int = 0
    timestamp: int

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, v):
        # legacy text form; numbers are kept as the controller printed them
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class IngestRequest(CamelModel):
    serial_number: int
    data_type: SyncDataType
    panel_id: int | None = None
    points: list[PointReading] = Field(default_factory=list, max_length=50000)
    data_source: DataSource | None = None
    created_by: CreatedBy | None = None
    table: str | None = Field(None, max_length=100)


class SyncOutcome(CamelModel):
    success: bool
    records_synced: int = 0
    partitions: list[str] = Field(default_factory=list)
    sync_id: int | None = None
    error_message: str | None = None


# ── Query ──────────────────────────────────────────────

class TrendlogRow(CamelModel):
    id: int
    serial_number: int
    panel_id: int | None = None
    point_type: str
    point_number: int
    value: str
    quality: int
    timestamp: int
    timestamp_fmt: str
    data_source: str
    created_by: str

    @property
    def numeric_value(self) -> float:
        return float(self.value)


class PointSummary(CamelModel):
    serial_number: int
    point_type: str
    point_number: int
    count: int
    min: float
    max: float
    avg: float
    first_timestamp: int
    last_timestamp: int


class DeviceStats(CamelModel):
    """Per-device row counts, broken down by point type."""

    serial_number: int
    panel_id: int | None = None
    total_records: int = 0
    by_point_type: dict[str, int] = Field(default_factory=dict)
    latest_timestamp: int | None = None
    latest_timestamp_fmt: str | None = None


# ── Sync ledger ────────────────────────────────────────

class SyncStatusResponse(CamelModel):
    id: int
    sync_time: int
    sync_time_fmt: str
    data_type: str
    serial_number: str
    panel_id: int | None = None
    records_synced: int
    sync_method: str
    success: bool
    error_message: str | None = None
    created_at: int

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Partitions / cleanup ───────────────────────────────

class PartitionStats(CamelModel):
    id: int
    partition_identifier: str
    partition_type: str
    start_ts: int
    end_ts: int
    record_count: int
    size_bytes: int
    is_active: bool
    is_archived: bool
    retention_days: int | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TableStats(CamelModel):
    table: str
    partition_count: int
    total_records: int
    total_size_bytes: int
    partitions: list[PartitionStats] = Field(default_factory=list)


class CleanupResult(CamelModel):
    table: str
    partitions_archived: int = 0
    partitions_deleted: int = 0
    bytes_reclaimed: int = 0
    records_removed: int = 0
    errors: list[str] = Field(default_factory=list)
    message: str = ""


class OptimizeResult(CamelModel):
    table: str
    size_before_bytes: int
    size_after_bytes: int


# ── Collection status / scheduler ──────────────────────

class CollectionStatusResponse(CamelModel):
    device_id: int
    point_id: int | None = None
    status: str
    last_collection: int | None = None
    last_error: str | None = None
    error_count: int
    total_collections: int
    success_rate: float


class SchedulerStatus(CamelModel):
    running: bool
    started_at: int | None = None
    sweep_cycles: int = 0
    realtime_cycles: int = 0
    cleanup_cycles: int = 0
    errors: int = 0
    last_sweep_at: int | None = None
    last_cleanup_at: int | None = None
    last_error: str | None = None


class HealthResponse(CamelModel):
    status: str = "ok"
    version: str = "1.0.0"
    timestamp: str | None = None
