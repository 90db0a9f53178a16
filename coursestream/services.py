# coursestream/services.py
"""Wires the service objects for one process; the app keeps them on app.state."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .catalog import VideoCatalog
from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .dynamodb_service import DynamoDBStore
from .manifest import ManifestBuilder
from .orchestrator import JobOrchestrator
from .probe import MediaInspector
from .publishing import build_publisher
from .store import KeyValueStore, MemoryStore
from .streaming import StreamingSessionManager
from .transcoding import RenditionEncoder
from .utils import run_tool
from .worker import JobScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: KeyValueStore
    catalog: VideoCatalog
    orchestrator: JobOrchestrator
    scheduler: JobScheduler
    sessions: StreamingSessionManager


def build_store(settings: Settings, clock: Callable[[], float] = time.time) -> KeyValueStore:
    if settings.store_backend == "dynamodb":
        logger.info("Using DynamoDB table %s for state", settings.dynamodb_table)
        return DynamoDBStore(settings.dynamodb_table, region=settings.aws_region, clock=clock)
    return MemoryStore(clock=clock)


def build_services(settings: Settings, runner: Callable = run_tool, clock: Callable[[], float] = time.time,
                   store: Optional[KeyValueStore] = None, publisher=None) -> Services:
    store = store or build_store(settings, clock)

    engine = make_engine(settings.database_url)
    init_db(engine)
    catalog = VideoCatalog(make_session_factory(engine))

    orchestrator = JobOrchestrator(
        settings,
        store,
        inspector=MediaInspector(settings, runner=runner),
        encoder=RenditionEncoder(settings, runner=runner),
        manifest_builder=ManifestBuilder(settings),
        publisher=publisher or build_publisher(settings),
        catalog=catalog,
        clock=clock,
    )
    sessions = StreamingSessionManager(settings, store, catalog=catalog, clock=clock)
    return Services(
        settings=settings,
        store=store,
        catalog=catalog,
        orchestrator=orchestrator,
        scheduler=JobScheduler(orchestrator),
        sessions=sessions,
    )
