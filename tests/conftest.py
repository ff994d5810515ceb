"""Pytest configuration and shared fixtures for habitsync tests.

This module provides a temp-file SQLite store, an in-memory fake of the remote
habit API mounted on ``httpx.MockTransport``, and factories wiring the two into
the sync engine and tracker without touching the real app database or network.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any

import httpx
import pytest

from habitsync.config import TestConfig
from habitsync.infra.database import bootstrap_database
from habitsync.infra.remote import (
    RemoteCompletionService,
    RemoteHabitService,
    create_http_client,
)
from habitsync.infra.repositories import SQLModelHabitStore, SQLModelPendingCompletionQueue
from habitsync.models.habit import Habit, parse_tags
from habitsync.services.habits import with_derived_fields
from habitsync.services.periods import current_month_dates, current_week_dates, period_key
from habitsync.services.sync import SyncEngine
from habitsync.services.tracker import HabitTracker

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def test_config(tmp_path):
    """Configuration whose data directory lives in a per-test temp folder."""

    config = TestConfig(tmp_path)
    config.API_URL = "http://habits.test"
    config.API_TOKEN = "test-token"
    return config


@pytest.fixture(scope="function")
def session_factory(test_config):
    """Session factory over a fresh SQLite file with all tables created."""

    engine, factory = bootstrap_database(test_config)
    yield factory
    engine.dispose()


@pytest.fixture
def habit_store(session_factory):
    return SQLModelHabitStore(session_factory)


@pytest.fixture
def completion_queue(session_factory):
    return SQLModelPendingCompletionQueue(session_factory)


# =============================================================================
# Fake remote
# =============================================================================


class FakeRemoteServer:
    """In-memory stand-in for the habit API.

    Mirrors the server's behavior: completions are upserted on
    ``(habit_id, date)``, deleting a habit cascades to its completions, and
    changing a habit's frequency clears its history. ``fail(method, path)``
    makes the next matching requests answer with an error status.
    """

    def __init__(self, *, today: date | None = None):
        self.today = today or date.today()
        self.habits: dict[int, dict[str, Any]] = {}
        self.completions: dict[tuple[int, str], bool] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], list[int]] = {}
        self.offline = False
        self._next_id = 1

    # -- test helpers -----------------------------------------------------

    def add_habit(self, title: str, frequency: str = "daily", tags: list[str] | None = None) -> int:
        habit_id = self._next_id
        self._next_id += 1
        self.habits[habit_id] = {
            "id": habit_id,
            "title": title,
            "frequency": frequency,
            "tags": json.dumps(tags or ["health"]),
            "created_at": "2025-01-01T00:00:00Z",
        }
        return habit_id

    def fail(self, method: str, path: str, status: int = 500, times: int = 1) -> None:
        self.failures.setdefault((method, path), []).extend([status] * times)

    def calls_to(self, method: str, path: str | None = None) -> list[tuple[str, str]]:
        return [
            call for call in self.calls if call[0] == method and (path is None or call[1] == path)
        ]

    def completed(self, habit_id: int, key: str) -> bool | None:
        return self.completions.get((habit_id, key))

    def _habit_view(self, habit_id: int) -> dict[str, Any]:
        record = dict(self.habits[habit_id])
        rows = [
            {"date": key, "completed": done}
            for (owner, key), done in self.completions.items()
            if owner == habit_id
        ]
        derived = with_derived_fields(Habit.from_dict(record), rows, as_of=self.today)
        record.update(
            streak_count=derived.streak_count,
            completed_today=1 if derived.completed_today else 0,
            total_completions=derived.total_completions,
        )
        return record

    # -- transport --------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.calls.append((method, path))

        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.headers.get("Authorization") != "Bearer test-token":
            return httpx.Response(401, json={"error": "Unauthorized"})
        queued = self.failures.get((method, path))
        if queued:
            return httpx.Response(queued.pop(0), json={"error": "injected failure"})

        body = json.loads(request.content) if request.content else None
        parts = [part for part in path.split("/") if part]

        if parts == ["habits"]:
            if method == "GET":
                return httpx.Response(200, json=[self._habit_view(i) for i in sorted(self.habits)])
            if method == "POST":
                habit_id = self.add_habit(body["title"], body["frequency"], parse_tags(body["tags"]))
                return httpx.Response(201, json=self._habit_view(habit_id))

        if len(parts) == 2 and parts[0] == "habits":
            habit_id = int(parts[1])
            if habit_id not in self.habits:
                return httpx.Response(404, json={"error": "Habit not found"})
            if method == "PUT":
                record = self.habits[habit_id]
                if body["frequency"] != record["frequency"]:
                    self.completions = {
                        key: done for key, done in self.completions.items() if key[0] != habit_id
                    }
                record.update(
                    title=body["title"],
                    frequency=body["frequency"],
                    tags=json.dumps(body["tags"]),
                )
                return httpx.Response(200, json=self._habit_view(habit_id))
            if method == "DELETE":
                del self.habits[habit_id]
                self.completions = {
                    key: done for key, done in self.completions.items() if key[0] != habit_id
                }
                return httpx.Response(204)

        if parts == ["completions"]:
            if method == "GET":
                return httpx.Response(
                    200,
                    json=[
                        {"habit_id": owner, "date": key, "completed": done}
                        for (owner, key), done in self.completions.items()
                    ],
                )
            if method == "POST":
                habit_id = int(body["habit_id"])
                if habit_id not in self.habits:
                    return httpx.Response(404, json={"error": "Habit not found"})
                self.completions[(habit_id, body["date"])] = bool(body["completed"])
                return httpx.Response(
                    200,
                    json={
                        "habit_id": habit_id,
                        "date": body["date"],
                        "completed": body["completed"],
                        "frequency": body["frequency"],
                    },
                )

        if len(parts) == 3 and parts[:2] == ["completions", "stats"]:
            habit_id = int(parts[2])
            if habit_id not in self.habits:
                return httpx.Response(404, json={"error": "Habit not found"})
            return httpx.Response(200, json=self._stats(habit_id))

        return httpx.Response(404, json={"error": "No route"})

    def _stats(self, habit_id: int) -> dict[str, Any]:
        frequency = self.habits[habit_id]["frequency"]

        def _row(day: str) -> dict[str, Any]:
            key = period_key(date.fromisoformat(day), frequency)
            return {"date": day, "completed": bool(self.completions.get((habit_id, key)))}

        return {
            "habit": self._habit_view(habit_id),
            "week": [_row(day) for day in current_week_dates(self.today)],
            "month": [_row(day) for day in current_month_dates(self.today)],
        }


@pytest.fixture
def fake_server():
    return FakeRemoteServer()


@pytest.fixture
def make_client(test_config, fake_server):
    """Build AsyncClients routed to the fake server; call inside a running loop."""

    def _make() -> httpx.AsyncClient:
        return create_http_client(test_config, transport=httpx.MockTransport(fake_server))

    return _make


@pytest.fixture
def make_engine(habit_store, completion_queue, make_client):
    """Factory for a SyncEngine plus its client, for use inside ``asyncio.run``."""

    def _make() -> tuple[SyncEngine, httpx.AsyncClient]:
        client = make_client()
        engine = SyncEngine(
            habit_store,
            completion_queue,
            RemoteHabitService(client),
            RemoteCompletionService(client),
        )
        return engine, client

    return _make


@pytest.fixture
def make_tracker(habit_store, completion_queue, make_client):
    def _make() -> tuple[HabitTracker, httpx.AsyncClient]:
        client = make_client()
        tracker = HabitTracker(
            habit_store,
            completion_queue,
            RemoteHabitService(client),
            RemoteCompletionService(client),
        )
        return tracker, client

    return _make
