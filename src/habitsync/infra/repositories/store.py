"""SQLModel implementation of the local habit cache and completion queue."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ...errors import StorageError
from ...logging_config import get_logger
from ...models.collection import StoredCollection
from ...models.habit import Habit, PendingCompletion

logger = get_logger(__name__)

T = TypeVar("T")

HABITS_KEY = "habits"
PENDING_COMPLETIONS_KEY = "pendingCompletions"


class SQLModelCollectionStore(Generic[T]):
    """Persist one collection as a JSON document under a fixed key."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        key: str,
        *,
        decode: Callable[[Mapping[str, Any]], T],
        encode: Callable[[T], dict[str, Any]],
    ):
        self.session_factory = session_factory
        self.key = key
        self._decode = decode
        self._encode = encode

    def _read_payload(self) -> str | None:
        try:
            with self.session_factory() as session:
                row = session.get(StoredCollection, self.key)
                return row.payload if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read '{self.key}' from local store: {exc}") from exc

    def load(self) -> list[T]:
        """Return the stored collection; absent or malformed documents read as empty."""
        payload = self._read_payload()
        if payload is None:
            return []
        try:
            raw = json.loads(payload)
        except ValueError:
            logger.warning("Discarding unreadable collection", extra={"key": self.key})
            return []
        if not isinstance(raw, list):
            logger.warning("Discarding non-list collection", extra={"key": self.key})
            return []

        items: list[T] = []
        for index, record in enumerate(raw):
            try:
                items.append(self._decode(record))
            except (TypeError, ValueError) as exc:
                logger.warning(
                    f"Skipping malformed record: {exc}",
                    extra={"key": self.key, "index": index},
                )
        return items

    def save(self, items: Sequence[T]) -> None:
        """Replace the whole collection in one transaction."""
        payload = json.dumps([self._encode(item) for item in items], ensure_ascii=False)
        try:
            with self.session_factory() as session:
                row = session.get(StoredCollection, self.key)
                if row is None:
                    row = StoredCollection(key=self.key, payload=payload)
                else:
                    row.payload = payload
                    row.updated_at = datetime.now(timezone.utc)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save '{self.key}' to local store: {exc}") from exc

    def clear(self) -> None:
        self.save([])


class SQLModelHabitStore(SQLModelCollectionStore[Habit]):
    """Local habit cache."""

    def __init__(self, session_factory: Callable[[], Session], key: str = HABITS_KEY):
        super().__init__(session_factory, key, decode=Habit.from_dict, encode=Habit.to_dict)


class SQLModelPendingCompletionQueue(SQLModelCollectionStore[PendingCompletion]):
    """Completions waiting to be flushed to the remote."""

    def __init__(
        self, session_factory: Callable[[], Session], key: str = PENDING_COMPLETIONS_KEY
    ):
        super().__init__(
            session_factory,
            key,
            decode=PendingCompletion.from_dict,
            encode=PendingCompletion.to_dict,
        )

    def append(self, entry: PendingCompletion) -> None:
        """Queue ``entry``; a queued entry with the same key is superseded."""
        pending = [item for item in self.load() if item.key != entry.key]
        pending.append(entry)
        self.save(pending)


__all__ = [
    "HABITS_KEY",
    "PENDING_COMPLETIONS_KEY",
    "SQLModelCollectionStore",
    "SQLModelHabitStore",
    "SQLModelPendingCompletionQueue",
]
