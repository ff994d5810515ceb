"""Tests for the five-phase reconciliation pass."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from habitsync.errors import AuthenticationError, StorageError
from habitsync.infra.remote import RemoteCompletionService, RemoteHabitService
from habitsync.models.habit import Habit, PendingCompletion
from habitsync.services.periods import period_key
from habitsync.services.sync import SyncEngine, SyncState

TODAY = date.today().isoformat()
OFFLINE_ID = "offline-1717430400000"


def _sync(make_engine, passes: int = 1):
    async def _main():
        engine, client = make_engine()
        try:
            reports = [await engine.run_pass() for _ in range(passes)]
        finally:
            await client.aclose()
        return engine, reports

    return asyncio.run(_main())


def _server_view(fake_server) -> list[Habit]:
    return [Habit.from_dict(fake_server._habit_view(i)) for i in sorted(fake_server.habits)]


class TestConvergence:
    def test_full_pass_converges_to_remote(self, make_engine, habit_store, completion_queue, fake_server):
        read = fake_server.add_habit("Read", tags=["mind"])
        run = fake_server.add_habit("Run")
        swim = fake_server.add_habit("Swim")
        habit_store.save(
            [
                Habit(id=read, title="Read more", tags=["mind"], updated=True),
                Habit(id=run, title="Run", tags=["health"], deleted=True),
                Habit(id=swim, title="Swim", tags=["health"]),
                Habit(id=OFFLINE_ID, title="Walk", tags=["health"]),
            ]
        )
        completion_queue.save(
            [
                PendingCompletion(swim, TODAY, True, "daily"),
                PendingCompletion(run, TODAY, True, "daily"),
            ]
        )

        engine, [report] = _sync(make_engine)

        assert report.ok
        assert report.completions_flushed == 1
        assert report.completions_dropped == 1
        assert (report.deleted, report.updated, report.created) == (1, 1, 1)
        assert engine.state is SyncState.IDLE

        cached = habit_store.load()
        assert cached == _server_view(fake_server)
        assert [habit.title for habit in cached] == ["Read more", "Swim", "Walk"]
        assert not any(habit.is_dirty for habit in cached)
        assert completion_queue.load() == []
        assert fake_server.completed(swim, TODAY) is True

    def test_clean_cache_only_refreshes(self, make_engine, fake_server):
        fake_server.add_habit("Read")

        _engine, [report] = _sync(make_engine)

        assert report.refreshed
        assert [call[0] for call in fake_server.calls] == ["GET"]

    def test_queued_frequency_falls_back_to_habit(self, make_engine, habit_store, completion_queue, fake_server):
        weekly = fake_server.add_habit("Review", frequency="weekly")
        habit_store.save([Habit(id=weekly, title="Review", frequency="weekly", tags=["work"])])
        key = period_key(date.today(), "weekly")
        completion_queue.save([PendingCompletion(weekly, key, True, None)])

        _sync(make_engine)

        assert fake_server.completed(weekly, key) is True
        assert habit_store.load()[0].completed_today is True

    def test_deleted_habit_is_never_updated(self, make_engine, habit_store, fake_server):
        habit_id = fake_server.add_habit("Read")
        habit_store.save([Habit(id=habit_id, title="Read", updated=True, deleted=True)])

        _engine, [report] = _sync(make_engine)

        assert fake_server.calls_to("PUT") == []
        assert report.deleted == 1
        assert habit_store.load() == []

    def test_delete_of_missing_habit_counts_as_success(self, make_engine, habit_store, fake_server):
        habit_store.save([Habit(id=41, title="Gone", deleted=True)])

        _engine, [report] = _sync(make_engine)

        assert report.delete_failed == 0
        assert habit_store.load() == []

    def test_completion_for_unknown_habit_is_dropped(self, make_engine, completion_queue):
        completion_queue.save([PendingCompletion(99, TODAY, True, "daily")])

        _engine, [report] = _sync(make_engine)

        assert report.completions_dropped == 1
        assert completion_queue.load() == []


class TestPartialFailure:
    def test_failed_items_stay_dirty_and_retry(self, make_engine, habit_store, completion_queue, fake_server):
        read = fake_server.add_habit("Read")
        run = fake_server.add_habit("Run")
        habit_store.save(
            [
                Habit(id=read, title="Read daily", tags=["mind"], updated=True),
                Habit(id=run, title="Run", tags=["health"], deleted=True),
                Habit(id=OFFLINE_ID, title="Walk", tags=["health"]),
            ]
        )
        completion_queue.save([PendingCompletion(read, TODAY, True, "daily")])
        fake_server.fail("POST", "/completions")
        fake_server.fail("PUT", f"/habits/{read}")

        _engine, [report] = _sync(make_engine)

        assert report.completions_failed == 1
        assert report.update_failed == 1
        assert report.created == 1
        assert report.deleted == 1
        assert run not in fake_server.habits
        assert report.refreshed
        assert not report.ok
        cached = {habit.title: habit for habit in habit_store.load()}
        assert cached["Read daily"].updated is True
        assert "Run" not in cached
        assert not cached["Walk"].is_offline
        assert completion_queue.load() == [PendingCompletion(read, TODAY, True, "daily")]

        _engine, [retry] = _sync(make_engine)

        assert retry.ok
        assert fake_server.habits[read]["title"] == "Read daily"
        assert fake_server.completed(read, TODAY) is True
        assert completion_queue.load() == []
        assert len(fake_server.calls_to("POST", "/habits")) == 1

    def test_update_404_drops_local_record(self, make_engine, habit_store):
        habit_store.save([Habit(id=12, title="Stale", updated=True)])

        _engine, [report] = _sync(make_engine)

        assert report.update_failed == 0
        assert habit_store.load() == []

    def test_refresh_failure_keeps_post_push_cache(self, make_engine, habit_store, fake_server):
        habit_store.save([Habit(id=OFFLINE_ID, title="Walk", tags=["health"])])
        fake_server.fail("GET", "/habits")

        _engine, [report] = _sync(make_engine)

        assert report.created == 1
        assert report.refreshed is False
        [cached] = habit_store.load()
        assert cached.id == 1
        assert not cached.is_dirty

    def test_malformed_remote_record_does_not_abort_pass(self, make_engine, habit_store, fake_server, monkeypatch):
        read = fake_server.add_habit("Read")
        fake_server.add_habit("Walk")
        view = fake_server._habit_view

        def broken_view(habit_id):
            record = view(habit_id)
            if habit_id == read:
                record["streak_count"] = {"n": 1}
            return record

        monkeypatch.setattr(fake_server, "_habit_view", broken_view)

        _engine, [report] = _sync(make_engine)

        assert report.refreshed
        assert [habit.title for habit in habit_store.load()] == ["Walk"]


class TestOfflineCreate:
    def test_offline_habit_and_completion_reach_server(self, make_engine, habit_store, completion_queue, fake_server):
        habit_store.save([Habit(id=OFFLINE_ID, title="Walk", tags=["health"])])
        completion_queue.save([PendingCompletion(OFFLINE_ID, TODAY, True, "daily")])

        _engine, [first] = _sync(make_engine)

        assert first.created == 1
        assert first.followup_required
        assert first.completions_flushed == 0
        [created] = habit_store.load()
        assert created.id == 1
        assert completion_queue.load() == [PendingCompletion(1, TODAY, True, "daily")]

        _engine, [second] = _sync(make_engine)

        assert second.completions_flushed == 1
        assert not second.followup_required
        assert completion_queue.load() == []
        [synced] = habit_store.load()
        assert synced.completed_today is True
        assert synced.streak_count == 1

    def test_failed_create_keeps_offline_record_and_queue(self, make_engine, habit_store, completion_queue, fake_server):
        habit_store.save([Habit(id=OFFLINE_ID, title="Walk", tags=["health"])])
        completion_queue.save([PendingCompletion(OFFLINE_ID, TODAY, True, "daily")])
        fake_server.fail("POST", "/habits", status=503)

        _engine, [report] = _sync(make_engine)

        assert report.create_failed == 1
        assert report.refreshed
        assert [habit.id for habit in habit_store.load()] == [OFFLINE_ID]
        assert completion_queue.load()[0].habit_id == OFFLINE_ID
        assert fake_server.calls_to("POST", "/completions") == []

    def test_orphaned_offline_completion_is_dropped(self, make_engine, completion_queue):
        completion_queue.save([PendingCompletion("offline-1", TODAY, True, "daily")])

        _engine, [report] = _sync(make_engine)

        assert report.completions_dropped == 1
        assert completion_queue.load() == []


class _BlockingRemote:
    def __init__(self):
        self.release = asyncio.Event()
        self.listed = 0

    async def list_habits(self):
        self.listed += 1
        await self.release.wait()
        return []

    async def create_habit(self, habit):  # pragma: no cover - unused
        raise AssertionError

    async def update_habit(self, habit):  # pragma: no cover - unused
        raise AssertionError

    async def delete_habit(self, habit_id):  # pragma: no cover - unused
        raise AssertionError

    async def upsert_completion(self, entry, *, frequency):  # pragma: no cover - unused
        raise AssertionError


class _FailingSaveStore:
    def __init__(self, inner):
        self.inner = inner

    def load(self):
        return self.inner.load()

    def save(self, items):
        raise StorageError("disk full")


class TestGuardAndAborts:
    def test_overlapping_trigger_is_dropped(self, habit_store, completion_queue):
        remote = _BlockingRemote()
        engine = SyncEngine(habit_store, completion_queue, remote, remote)

        async def _main():
            first = asyncio.create_task(engine.run_pass())
            await asyncio.sleep(0)
            assert engine.is_syncing
            dropped = await engine.run_pass()
            remote.release.set()
            return dropped, await first

        dropped, report = asyncio.run(_main())

        assert dropped is None
        assert report.refreshed
        assert remote.listed == 1
        assert engine.state is SyncState.IDLE

    def test_authentication_error_propagates_and_releases_guard(self, habit_store, completion_queue, fake_server, make_client):
        read = fake_server.add_habit("Read")
        habit_store.save([Habit(id=read, title="Read", deleted=True)])
        completion_queue.save([PendingCompletion(read, TODAY, True, "daily")])
        fake_server.fail("DELETE", f"/habits/{read}", status=401)

        async def _main():
            client = make_client()
            engine = SyncEngine(
                habit_store, completion_queue, RemoteHabitService(client), RemoteCompletionService(client)
            )
            try:
                with pytest.raises(AuthenticationError):
                    await engine.run_pass()
                return engine
            finally:
                await client.aclose()

        engine = asyncio.run(_main())

        assert not engine.is_syncing
        assert habit_store.load()[0].deleted is True
        assert fake_server.calls_to("GET", "/habits") == []

    def test_storage_failure_aborts_without_raising(self, habit_store, completion_queue, fake_server, make_client):
        read = fake_server.add_habit("Read")
        habit_store.save([Habit(id=read, title="Read", deleted=True)])

        async def _main():
            client = make_client()
            engine = SyncEngine(
                _FailingSaveStore(habit_store),
                completion_queue,
                RemoteHabitService(client),
                RemoteCompletionService(client),
            )
            try:
                return engine, await engine.run_pass()
            finally:
                await client.aclose()

        engine, report = asyncio.run(_main())

        assert report.aborted
        assert report.error == "disk full"
        assert not report.refreshed
        assert engine.state is SyncState.IDLE
        assert fake_server.calls_to("GET", "/habits") == []
        assert habit_store.load()[0].deleted is True
