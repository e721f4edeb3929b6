"""
Trendlog Scheduler — background loops driving sync and cleanup.

Three independent loops share one stop event:
  sweep     full LOGGING_DATA pull every ``trendlog_sync_interval`` seconds
  realtime  changed-points pull every ``realtime_sync_interval`` (0 = off)
  cleanup   retention cycle over every configured table every ``cleanup_interval``

A failing cycle is logged and counted; the loop just waits for its next tick.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from trendlog.config import Settings, settings as default_settings
from trendlog.errors import BadRequestError
from trendlog.schemas import SchedulerStatus, SyncMethod
from trendlog.services.controller_source import ControllerSource, NullControllerSource
from trendlog.services.ingestion import IngestionPipeline
from trendlog.services.retention import RetentionEngine

logger = logging.getLogger("trendlog.scheduler")


class TrendlogScheduler:
    def __init__(
        self,
        pipeline: IngestionPipeline,
        retention: RetentionEngine,
        source: Optional[ControllerSource] = None,
        settings: Optional[Settings] = None,
        stop_timeout: float = 30.0,
    ):
        self.pipeline = pipeline
        self.retention = retention
        self.source = source or NullControllerSource()
        self._settings = settings or default_settings
        self._stop_timeout = stop_timeout
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._stats = {
            "started_at": None,
            "sweep_cycles": 0,
            "realtime_cycles": 0,
            "cleanup_cycles": 0,
            "errors": 0,
            "last_sweep_at": None,
            "last_cleanup_at": None,
            "last_error": None,
        }

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def status(self) -> SchedulerStatus:
        return SchedulerStatus(running=self.running, **self._stats)

    def start(self) -> None:
        if self.running:
            logger.warning("Trendlog scheduler already running")
            return
        self._stop = asyncio.Event()
        self._stats["started_at"] = int(time.time())

        loops = [
            ("sweep", self._settings.trendlog_sync_interval, self.run_sweep),
            ("realtime", self._settings.realtime_sync_interval, self.run_realtime),
            ("cleanup", self._settings.cleanup_interval, self.run_cleanup),
        ]
        self._tasks = [
            asyncio.create_task(self._loop(name, interval, cycle), name=f"trendlog-{name}")
            for name, interval, cycle in loops
            if interval > 0
        ]
        logger.info(
            "🚀 Trendlog scheduler started (sweep=%ds, realtime=%ds, cleanup=%ds)",
            self._settings.trendlog_sync_interval,
            self._settings.realtime_sync_interval,
            self._settings.cleanup_interval,
        )

    async def stop(self) -> None:
        """Signal every loop and wait for it to exit; stragglers are cancelled."""
        self._stop.set()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=self._stop_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Trendlog scheduler stopped")

    async def _sleep(self, seconds: float) -> bool:
        """Wait ``seconds`` or until stopped. True means stop was requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self, name: str, interval: int, cycle: Callable[[], Awaitable]) -> None:
        delay = self._settings.scheduler_startup_delay
        if delay and await self._sleep(delay):
            return

        while not self._stop.is_set():
            try:
                await cycle()
                self._stats[f"{name}_cycles"] += 1
            except Exception as e:
                self._stats["errors"] += 1
                self._stats["last_error"] = f"{name}: {e}"
                logger.error("Trendlog %s cycle error: %s", name, e, exc_info=True)

            if await self._sleep(interval):
                break

    # ── Cycles ─────────────────────────────────────────

    async def _ingest_from_source(self, full: bool) -> int:
        batches = await self.source.fetch_logging_data(full)
        written = 0
        for batch in batches:
            try:
                outcome = await self.pipeline.ingest_batch(
                    batch.serial_number,
                    batch.data_type,
                    batch.points,
                    method=SyncMethod.FFI_BACKEND,
                    panel_id=batch.panel_id,
                )
            except BadRequestError as e:
                # Already in the ledger as a failed sync; other devices still run
                logger.warning("Rejected batch from device %s: %s", batch.serial_number, e.message)
                continue
            written += outcome.records_synced
        return written

    async def run_sweep(self) -> int:
        written = await self._ingest_from_source(full=True)
        self._stats["last_sweep_at"] = int(time.time())
        logger.info("🔄 Trendlog sweep complete: %d records", written)
        return written

    async def run_realtime(self) -> int:
        return await self._ingest_from_source(full=False)

    async def run_cleanup(self) -> None:
        for table in self._settings.table_partition_kinds:
            await self.retention.run_cleanup_cycle(table)
        self._stats["last_cleanup_at"] = int(time.time())
