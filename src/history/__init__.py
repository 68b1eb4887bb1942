"""
Query history log for PeekAI.
"""

from .export import parse_json_export, render_export
from .service import (
    HistoryLog,
    HistoryNotFound,
    UnsupportedExportFormat,
    get_history_log,
)
from .store import (
    HistoryStore,
    InMemoryHistoryStore,
    PostgresHistoryStore,
    get_history_store,
    set_history_store,
)

__all__ = [
    "parse_json_export",
    "render_export",
    "HistoryLog",
    "HistoryNotFound",
    "UnsupportedExportFormat",
    "get_history_log",
    "HistoryStore",
    "InMemoryHistoryStore",
    "PostgresHistoryStore",
    "get_history_store",
    "set_history_store",
]
