"""
Storage backends for the per-user query history.

Every lookup that touches a single record takes the owner's user_id as part
of the predicate, so a record owned by someone else is indistinguishable
from a missing one.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from src import db
from src.types.history import QueryRecord

logger = logging.getLogger(__name__)


class HistoryStore(ABC):
    """Abstract base class for query history backends."""

    @abstractmethod
    async def append(self, record: QueryRecord) -> QueryRecord:
        """Persist a record and return it with id and created_at set."""
        pass

    @abstractmethod
    async def list(self, user_id: str, limit: int, offset: int) -> List[QueryRecord]:
        """Records for a user, newest first."""
        pass

    @abstractmethod
    async def count(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def get_many(
        self,
        user_id: str,
        query_ids: Sequence[int],
    ) -> List[QueryRecord]:
        """The caller's records among `query_ids`, newest first."""
        pass

    @abstractmethod
    async def delete(self, user_id: str, query_id: int) -> bool:
        """Delete one owned record. Returns False if nothing matched."""
        pass

    @abstractmethod
    async def clear(self, user_id: str) -> int:
        """Delete all of a user's records and return how many were removed."""
        pass


class InMemoryHistoryStore(HistoryStore):
    """Process-local history storage."""

    def __init__(self):
        self._records: Dict[int, QueryRecord] = {}
        self._ids = itertools.count(1)

    def _owned(self, user_id: str) -> List[QueryRecord]:
        owned = [r for r in self._records.values() if r.user_id == user_id]
        # Ids increase with insertion, which breaks created_at ties.
        owned.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return owned

    async def append(self, record: QueryRecord) -> QueryRecord:
        stored = record.model_copy(update={
            "id": next(self._ids),
            "created_at": record.created_at or datetime.now(timezone.utc),
        })
        self._records[stored.id] = stored
        return stored.model_copy()

    async def list(self, user_id: str, limit: int, offset: int) -> List[QueryRecord]:
        return [r.model_copy() for r in self._owned(user_id)[offset:offset + limit]]

    async def count(self, user_id: str) -> int:
        return len(self._owned(user_id))

    async def get_many(
        self,
        user_id: str,
        query_ids: Sequence[int],
    ) -> List[QueryRecord]:
        wanted = set(query_ids)
        return [r.model_copy() for r in self._owned(user_id) if r.id in wanted]

    async def delete(self, user_id: str, query_id: int) -> bool:
        record = self._records.get(query_id)
        if record is None or record.user_id != user_id:
            return False
        del self._records[query_id]
        return True

    async def clear(self, user_id: str) -> int:
        owned = [r.id for r in self._records.values() if r.user_id == user_id]
        for query_id in owned:
            del self._records[query_id]
        return len(owned)


_HISTORY_COLUMNS = (
    "id, user_id, question, answer, page_title, page_url, page_domain, "
    "selected_text, context_text, model_used, response_time_ms, created_at"
)


def _row_to_record(row) -> QueryRecord:
    return QueryRecord(**dict(row))


def _deleted_count(status: Optional[str]) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 3".
    if not status:
        return 0
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


class PostgresHistoryStore(HistoryStore):
    """History storage backed by the `query_history` table."""

    async def append(self, record: QueryRecord) -> QueryRecord:
        row = await db.fetchrow(
            f"""
            INSERT INTO query_history (
                user_id, question, answer, page_title, page_url, page_domain,
                selected_text, context_text, model_used, response_time_ms
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING {_HISTORY_COLUMNS}
            """,
            record.user_id,
            record.question,
            record.answer,
            record.page_title,
            record.page_url,
            record.page_domain,
            record.selected_text,
            record.context_text,
            record.model_used,
            record.response_time_ms,
        )
        return _row_to_record(row)

    async def list(self, user_id: str, limit: int, offset: int) -> List[QueryRecord]:
        rows = await db.fetch(
            f"""
            SELECT {_HISTORY_COLUMNS} FROM query_history
            WHERE user_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [_row_to_record(row) for row in rows]

    async def count(self, user_id: str) -> int:
        value = await db.fetchval(
            "SELECT COUNT(*) FROM query_history WHERE user_id = $1",
            user_id,
        )
        return int(value or 0)

    async def get_many(
        self,
        user_id: str,
        query_ids: Sequence[int],
    ) -> List[QueryRecord]:
        rows = await db.fetch(
            f"""
            SELECT {_HISTORY_COLUMNS} FROM query_history
            WHERE user_id = $1 AND id = ANY($2::bigint[])
            ORDER BY created_at DESC, id DESC
            """,
            user_id,
            list(query_ids),
        )
        return [_row_to_record(row) for row in rows]

    async def delete(self, user_id: str, query_id: int) -> bool:
        status = await db.execute(
            "DELETE FROM query_history WHERE id = $1 AND user_id = $2",
            query_id,
            user_id,
        )
        return _deleted_count(status) > 0

    async def clear(self, user_id: str) -> int:
        status = await db.execute(
            "DELETE FROM query_history WHERE user_id = $1",
            user_id,
        )
        return _deleted_count(status)


_history_store: Optional[HistoryStore] = None


def get_history_store() -> HistoryStore:
    """
    Get the singleton history store.

    Uses Postgres when DATABASE_URL is configured, otherwise memory.
    """
    global _history_store
    if _history_store is None:
        if db.is_database_configured():
            _history_store = PostgresHistoryStore()
            logger.info("History store initialized with Postgres")
        else:
            _history_store = InMemoryHistoryStore()
            logger.info("Database not configured, using in-memory history store")
    return _history_store


def set_history_store(store: Optional[HistoryStore]) -> None:
    """Replace the singleton history store (None resets it)."""
    global _history_store
    _history_store = store
