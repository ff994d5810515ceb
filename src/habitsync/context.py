"""Application context for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlmodel import Session

from .config import BaseConfig
from .infra.database import bootstrap_database
from .infra.remote import RemoteCompletionService, RemoteHabitService, create_http_client
from .infra.repositories import SQLModelHabitStore, SQLModelPendingCompletionQueue
from .scheduler import SyncScheduler
from .services.sync import SyncEngine
from .services.tracker import HabitTracker


@dataclass
class AppContext:
    """Centralized application context with services and state."""

    config: BaseConfig
    session_factory: Callable[[], Session]

    # Local persistence
    habit_store: SQLModelHabitStore
    completion_queue: SQLModelPendingCompletionQueue

    # Remote
    http_client: httpx.AsyncClient
    remote_habits: RemoteHabitService
    remote_completions: RemoteCompletionService

    # Services
    engine: SyncEngine
    tracker: HabitTracker
    scheduler: SyncScheduler

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.http_client.aclose()


def create_app_context(
    config: Optional[BaseConfig] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppContext:
    """Create and initialize the application context."""

    if config is None:
        config = BaseConfig()

    _engine, session_factory = bootstrap_database(config)

    habit_store = SQLModelHabitStore(session_factory)
    completion_queue = SQLModelPendingCompletionQueue(session_factory)

    http_client = create_http_client(config, transport=transport)
    remote_habits = RemoteHabitService(http_client)
    remote_completions = RemoteCompletionService(http_client)

    engine = SyncEngine(habit_store, completion_queue, remote_habits, remote_completions)
    tracker = HabitTracker(habit_store, completion_queue, remote_habits, remote_completions)
    scheduler = SyncScheduler(engine, interval=config.SYNC_INTERVAL)

    return AppContext(
        config=config,
        session_factory=session_factory,
        habit_store=habit_store,
        completion_queue=completion_queue,
        http_client=http_client,
        remote_habits=remote_habits,
        remote_completions=remote_completions,
        engine=engine,
        tracker=tracker,
        scheduler=scheduler,
    )
