"""
Controller data source — the boundary to the T3000 controller link.

The transport (FFI, serial, BACnet...) lives outside this package. The
scheduler only needs something that hands back LOGGING_DATA batches.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from trendlog.schemas import PointReading, SyncDataType


@dataclass
class LoggingDataBatch:
    """One device/panel worth of readings from a LOGGING_DATA response."""

    serial_number: int
    data_type: SyncDataType
    points: list[PointReading] = field(default_factory=list)
    panel_id: int | None = None


@runtime_checkable
class ControllerSource(Protocol):
    async def fetch_logging_data(self, full: bool) -> list[LoggingDataBatch]:
        """``full`` asks for every point; otherwise only what changed since the last call."""
        ...


class NullControllerSource:
    """Used when no controller link is configured; every sweep is empty."""

    async def fetch_logging_data(self, full: bool) -> list[LoggingDataBatch]:
        return []
