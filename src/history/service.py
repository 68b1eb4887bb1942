"""
History log service: paging, recent items, deletion and export.
"""

import logging
from typing import List, Optional, Sequence, Union

from src.history.export import render_export
from src.history.store import HistoryStore, get_history_store
from src.types.history import ExportFormat, HistoryExport, HistoryPage, QueryRecord
from src.utils.logging import timed

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
RECENT_LIMIT = 10


class HistoryNotFound(Exception):
    """Raised when a record does not exist or is not owned by the caller."""

    def __init__(self, query_id: int):
        self.query_id = query_id
        super().__init__(f"Query {query_id} not found")


class UnsupportedExportFormat(ValueError):
    def __init__(self, fmt: str):
        self.format = fmt
        supported = ", ".join(f.value for f in ExportFormat)
        super().__init__(f"Unsupported export format '{fmt}'. Use one of: {supported}")


def parse_export_format(value: Union[str, ExportFormat]) -> ExportFormat:
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).strip().lower())
    except ValueError:
        raise UnsupportedExportFormat(str(value))


class HistoryLog:
    """Append-only per-user record of answered questions."""

    def __init__(self, store: Optional[HistoryStore] = None):
        self._store = store

    @property
    def store(self) -> HistoryStore:
        if self._store is None:
            self._store = get_history_store()
        return self._store

    async def append(self, record: QueryRecord) -> QueryRecord:
        stored = await self.store.append(record)
        logger.debug(
            "History record appended",
            extra={"query_id": stored.id, "model": stored.model_used},
        )
        return stored

    async def list_page(
        self,
        user_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> HistoryPage:
        """
        A page of the user's history, newest first.

        One extra row is fetched to decide `has_more` without a second query.
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        rows = await self.store.list(user_id, limit + 1, offset)
        total = await self.store.count(user_id)
        return HistoryPage(
            queries=rows[:limit],
            total=total,
            has_more=len(rows) > limit,
        )

    async def recent(self, user_id: str) -> List[QueryRecord]:
        return await self.store.list(user_id, RECENT_LIMIT, 0)

    async def delete(self, user_id: str, query_id: int) -> None:
        deleted = await self.store.delete(user_id, query_id)
        if not deleted:
            raise HistoryNotFound(query_id)
        logger.info("History record deleted", extra={"query_id": query_id})

    async def clear(self, user_id: str) -> int:
        removed = await self.store.clear(user_id)
        logger.info("History cleared", extra={"removed": removed})
        return removed

    @timed("history_export")
    async def export(
        self,
        user_id: str,
        fmt: Union[str, ExportFormat],
        query_ids: Optional[Sequence[int]] = None,
    ) -> HistoryExport:
        """
        Export the user's history, or only the listed records.

        Raises:
            UnsupportedExportFormat: If fmt is not markdown, json or pdf
        """
        export_format = parse_export_format(fmt)

        if query_ids:
            records = await self.store.get_many(user_id, query_ids)
        else:
            total = await self.store.count(user_id)
            records = await self.store.list(user_id, total, 0) if total else []

        return render_export(records, export_format)


_history_log: Optional[HistoryLog] = None


def get_history_log() -> HistoryLog:
    """Get the singleton history log instance."""
    global _history_log
    if _history_log is None:
        _history_log = HistoryLog()
    return _history_log
