"""HTTP adapters for the remote habit and completion API."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..config import BaseConfig
from ..errors import AuthenticationError, NotFoundError, RemoteError
from ..logging_config import get_logger
from ..models.habit import (
    Completion,
    Habit,
    HabitId,
    HabitStats,
    PendingCompletion,
    is_offline_id,
)

logger = get_logger(__name__)


def create_http_client(
    config: BaseConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    """Build the shared AsyncClient for both remote services."""

    return httpx.AsyncClient(
        base_url=config.API_URL,
        headers={"Accept": "application/json", **config.auth_headers()},
        timeout=config.REQUEST_TIMEOUT,
        transport=transport,
    )


class _RemoteService:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"{method} {path} rejected with {status}", status_code=status)
        if status == 404:
            raise NotFoundError(f"{method} {path} not found", status_code=status)
        if status >= 400:
            raise RemoteError(
                f"{method} {path} returned {status}: {_error_detail(response)}",
                status_code=status,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"{method} {path} returned a non-JSON body", status_code=status) from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return str(body)[:200]


def _habit_from(body: Any, context: str) -> Habit:
    if not isinstance(body, dict):
        raise RemoteError(f"{context}: expected a habit object")
    try:
        return Habit.from_dict(body)
    except (TypeError, ValueError) as exc:
        raise RemoteError(f"{context}: malformed habit ({exc})") from exc


class RemoteHabitService(_RemoteService):
    """CRUD for habits: ``/habits``."""

    async def list_habits(self) -> list[Habit]:
        body = await self._request("GET", "/habits")
        if not isinstance(body, list):
            raise RemoteError("GET /habits: expected a list")
        habits = []
        for record in body:
            try:
                habits.append(Habit.from_dict(record))
            except (TypeError, ValueError) as exc:
                logger.warning(f"Ignoring malformed remote habit: {exc}")
        return habits

    async def create_habit(self, habit: Habit) -> Habit:
        body = await self._request("POST", "/habits", json=habit.to_payload())
        return _habit_from(body, "POST /habits")

    async def update_habit(self, habit: Habit) -> Habit:
        if is_offline_id(habit.id):
            raise ValueError(f"Cannot update habit with temporary id {habit.id}")
        path = f"/habits/{habit.id}"
        body = await self._request("PUT", path, json=habit.to_payload())
        if isinstance(body, dict) and "id" in body:
            return _habit_from(body, f"PUT {path}")
        # Older servers answer {"updated": n}; keep the submitted fields.
        return habit.clean()

    async def delete_habit(self, habit_id: HabitId) -> None:
        if is_offline_id(habit_id):
            raise ValueError(f"Cannot delete habit with temporary id {habit_id}")
        await self._request("DELETE", f"/habits/{habit_id}")


class RemoteCompletionService(_RemoteService):
    """Idempotent completion upserts and history reads: ``/completions``."""

    async def upsert_completion(self, entry: PendingCompletion, *, frequency: str) -> Completion:
        payload = {
            "habit_id": entry.habit_id,
            "date": entry.period_key,
            "completed": bool(entry.completed),
            "frequency": frequency,
        }
        body = await self._request("POST", "/completions", json=payload)
        if not isinstance(body, dict):
            return Completion(entry.habit_id, entry.period_key, entry.completed)
        try:
            return Completion.from_dict({**payload, **body})
        except ValueError as exc:
            raise RemoteError(f"POST /completions: malformed completion ({exc})") from exc

    async def list_completions(self) -> list[Completion]:
        body = await self._request("GET", "/completions")
        if not isinstance(body, list):
            raise RemoteError("GET /completions: expected a list")
        rows = []
        for record in body:
            try:
                rows.append(Completion.from_dict(record))
            except (TypeError, ValueError) as exc:
                logger.warning(f"Ignoring malformed remote completion: {exc}")
        return rows

    async def get_stats(self, habit_id: HabitId) -> HabitStats:
        path = f"/completions/stats/{habit_id}"
        body = await self._request("GET", path)
        if not isinstance(body, dict):
            raise RemoteError(f"GET {path}: expected an object")
        try:
            return HabitStats.from_dict(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteError(f"GET {path}: malformed stats ({exc})") from exc


__all__ = ["RemoteCompletionService", "RemoteHabitService", "create_http_client"]
