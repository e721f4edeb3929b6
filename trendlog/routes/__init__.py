"""
API Routes — trendlog refresh/query, partitions, sync status, health.

Thin adapter: every handler delegates to a service from ``app.state.services``
and lets ``TrendlogError`` propagate to the handler registered in main.py.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request

from trendlog.errors import BadRequestError, NotFoundError, PartialFailureError
from trendlog.schemas import (
    CleanupResult,
    CollectionStatusResponse,
    DeviceStats,
    HealthResponse,
    IngestRequest,
    OptimizeResult,
    PointRef,
    PointSummary,
    SchedulerStatus,
    SyncDataType,
    SyncMethod,
    SyncOutcome,
    SyncStatusResponse,
    TableStats,
    TrendlogRow,
)
from trendlog.services.registry import Services

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def _known_table(services: Services, table: str | None) -> str:
    table = table or services.settings.default_table
    if table not in services.settings.table_partition_kinds:
        raise NotFoundError(f"Unknown trendlog table '{table}'")
    return table


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0",
    )


@router.get("/scheduler", response_model=SchedulerStatus, tags=["system"])
async def scheduler_status(services: Services = Depends(get_services)):
    return services.scheduler.status


# ── Trendlogs ───────────────────────────────────────────

@router.post("/trendlogs/refresh", response_model=SyncOutcome, tags=["trendlogs"])
async def refresh_trendlogs(req: IngestRequest, services: Services = Depends(get_services)):
    """Manual UI refresh: same pipeline as the FFI sweep, tagged UI_REFRESH."""
    table = _known_table(services, req.table)
    outcome = await services.pipeline.ingest_batch(
        req.serial_number,
        req.data_type,
        req.points,
        req.data_source,
        SyncMethod.UI_REFRESH,
        panel_id=req.panel_id,
        created_by=req.created_by,
        table=table,
    )
    if not outcome.success:
        raise PartialFailureError(
            outcome.error_message or "Refresh failed", attempted=len(req.points), written=0
        )
    return outcome


def _range_args(
    serial_number: int = Query(...),
    point_type: list[str] = Query(..., description="Repeat together with point_number, one per point"),
    point_number: list[int] = Query(...),
    start: int = Query(..., ge=0, description="Unix seconds, inclusive"),
    end: int = Query(..., ge=0, description="Unix seconds, exclusive"),
    panel_id: int | None = Query(None),
) -> tuple[list[PointRef], int, int]:
    if start >= end:
        raise BadRequestError("start must be before end")
    if len(point_type) != len(point_number):
        raise BadRequestError(
            f"{len(point_type)} point_type values but {len(point_number)} point_number values"
        )
    refs = []
    for kind, number in zip(point_type, point_number):
        if not kind or len(kind) > 20 or number < 0:
            raise BadRequestError(f"Invalid point reference {kind!r}/{number}")
        refs.append(
            PointRef(serial_number=serial_number, point_type=kind, point_number=number, panel_id=panel_id)
        )
    return refs, start, end


@router.get("/trendlogs", response_model=list[TrendlogRow], tags=["trendlogs"])
async def query_trendlogs(
    args: tuple = Depends(_range_args),
    table: str | None = Query(None),
    limit: int = Query(10000, ge=1, le=100000),
    services: Services = Depends(get_services),
):
    refs, start, end = args
    table = _known_table(services, table)
    return await services.query.collect_range(table, refs, start, end, limit=limit)


@router.get("/trendlogs/summary", response_model=list[PointSummary], tags=["trendlogs"])
async def summarize_trendlogs(
    args: tuple = Depends(_range_args),
    table: str | None = Query(None),
    services: Services = Depends(get_services),
):
    refs, start, end = args
    table = _known_table(services, table)
    return await services.query.summarize_range(table, refs, start, end)


@router.get("/trendlogs/recent", response_model=list[TrendlogRow], tags=["trendlogs"])
async def recent_trendlogs(
    serial_number: int = Query(...),
    panel_id: int | None = Query(None),
    point_type: list[str] | None = Query(None),
    limit: int = Query(100, ge=1, le=10000),
    table: str | None = Query(None),
    services: Services = Depends(get_services),
):
    """Newest samples first for the realtime display."""
    table = _known_table(services, table)
    return await services.query.recent(table, serial_number, panel_id, point_type, limit)


@router.get("/trendlogs/stats/{serial_number}", response_model=DeviceStats, tags=["trendlogs"])
async def device_trendlog_stats(
    serial_number: int,
    panel_id: int | None = Query(None),
    table: str | None = Query(None),
    services: Services = Depends(get_services),
):
    table = _known_table(services, table)
    return await services.query.device_stats(table, serial_number, panel_id)


# ── Partitions ──────────────────────────────────────────

@router.post("/partitions/{table}/cleanup", response_model=CleanupResult, tags=["partitions"])
async def cleanup_partitions(table: str, services: Services = Depends(get_services)):
    return await services.retention.run_cleanup_cycle(_known_table(services, table))


@router.post("/partitions/{table}/optimize", response_model=OptimizeResult, tags=["partitions"])
async def optimize_partitions(table: str, services: Services = Depends(get_services)):
    return await services.retention.optimize(_known_table(services, table))


@router.get("/partitions/{table}/stats", response_model=TableStats, tags=["partitions"])
async def partition_stats(table: str, services: Services = Depends(get_services)):
    return await services.retention.stats(_known_table(services, table))


# ── Sync status ─────────────────────────────────────────

@router.get("/sync-status/{serial_number}", response_model=list[SyncStatusResponse], tags=["sync"])
async def device_sync_status(serial_number: str, services: Services = Depends(get_services)):
    rows = await services.ledger.all_for_device(serial_number)
    return [SyncStatusResponse.model_validate(r) for r in rows]


@router.get(
    "/sync-status/{serial_number}/{data_type}",
    response_model=SyncStatusResponse,
    tags=["sync"],
)
async def latest_sync_status(
    serial_number: str, data_type: SyncDataType, services: Services = Depends(get_services)
):
    entry = await services.ledger.latest(serial_number, data_type.value)
    if entry is None:
        raise NotFoundError(f"No {data_type.value} sync recorded for device {serial_number}")
    return SyncStatusResponse.model_validate(entry)


@router.get(
    "/sync-status/{serial_number}/{data_type}/history",
    response_model=list[SyncStatusResponse],
    tags=["sync"],
)
async def sync_history(
    serial_number: str,
    data_type: SyncDataType,
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    rows = await services.ledger.history(serial_number, data_type.value, limit)
    return [SyncStatusResponse.model_validate(r) for r in rows]


# ── Collection status ───────────────────────────────────

@router.get(
    "/collection-status/{device_id}",
    response_model=CollectionStatusResponse,
    tags=["collection"],
)
async def collection_status(device_id: int, services: Services = Depends(get_services)):
    row = await services.tracker.get(device_id)
    if row is None:
        raise NotFoundError(f"No collection status for device {device_id}")
    return CollectionStatusResponse(
        device_id=row.device_id,
        point_id=row.point_id or None,
        status=row.status,
        last_collection=row.last_collection,
        last_error=row.last_error,
        error_count=row.error_count,
        total_collections=row.total_collections,
        success_rate=row.success_rate,
    )
