"""
Service wiring — builds one set of collaborating services over two stores.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from trendlog.config import Settings, settings as default_settings
from trendlog.services.collection_status import CollectionTracker
from trendlog.services.controller_source import ControllerSource
from trendlog.services.ingestion import IngestionPipeline
from trendlog.services.partition_directory import PartitionDirectory
from trendlog.services.query_engine import QueryEngine
from trendlog.services.retention import RetentionEngine
from trendlog.services.scheduler import TrendlogScheduler
from trendlog.services.sync_ledger import SyncLedger


@dataclass
class Services:
    settings: Settings
    directory: PartitionDirectory
    ledger: SyncLedger
    tracker: CollectionTracker
    pipeline: IngestionPipeline
    query: QueryEngine
    retention: RetentionEngine
    scheduler: TrendlogScheduler


def build_services(
    app_sessions: Optional[async_sessionmaker] = None,
    ts_sessions: Optional[async_sessionmaker] = None,
    ts_engine: Optional[AsyncEngine] = None,
    settings: Optional[Settings] = None,
    source: Optional[ControllerSource] = None,
) -> Services:
    settings = settings or default_settings
    directory = PartitionDirectory(ts_sessions, settings)
    ledger = SyncLedger(app_sessions, settings)
    tracker = CollectionTracker(app_sessions)
    pipeline = IngestionPipeline(directory, ledger, tracker, settings)
    retention = RetentionEngine(directory, ts_engine, settings)
    return Services(
        settings=settings,
        directory=directory,
        ledger=ledger,
        tracker=tracker,
        pipeline=pipeline,
        query=QueryEngine(directory, settings),
        retention=retention,
        scheduler=TrendlogScheduler(pipeline, retention, source, settings),
    )
