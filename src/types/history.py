"""
Pydantic models for the query history log.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class QueryContext(BaseModel):
    """Page context captured by the extension alongside a question."""

    page_title: Optional[str] = Field(default=None, max_length=1000)
    page_url: Optional[str] = Field(default=None, max_length=4000)
    page_domain: Optional[str] = Field(default=None, max_length=500)
    selected_text: Optional[str] = Field(default=None, max_length=20000)
    surrounding_text: Optional[str] = Field(default=None, max_length=50000)

    def is_empty(self) -> bool:
        return not any([
            self.page_title,
            self.page_url,
            self.page_domain,
            self.selected_text,
            self.surrounding_text,
        ])


class QueryRecord(BaseModel):
    """
    One completed question/answer exchange.

    `id` and `created_at` are assigned by the store on append.
    """

    id: Optional[int] = None
    user_id: str
    question: str
    answer: str
    page_title: Optional[str] = None
    page_url: Optional[str] = None
    page_domain: Optional[str] = None
    selected_text: Optional[str] = None
    context_text: Optional[str] = Field(
        default=None,
        description="Surrounding page text sent with the question",
    )
    model_used: str
    response_time_ms: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None

    @classmethod
    def from_exchange(
        cls,
        user_id: str,
        question: str,
        answer: str,
        context: Optional[QueryContext],
        model_used: str,
        response_time_ms: int,
    ) -> "QueryRecord":
        context = context or QueryContext()
        return cls(
            user_id=user_id,
            question=question,
            answer=answer,
            page_title=context.page_title,
            page_url=context.page_url,
            page_domain=context.page_domain,
            selected_text=context.selected_text,
            context_text=context.surrounding_text,
            model_used=model_used,
            response_time_ms=response_time_ms,
        )


class ExportFormat(str, Enum):
    """Supported history export formats."""

    MARKDOWN = "markdown"
    JSON = "json"
    PDF = "pdf"


class HistoryPage(BaseModel):
    """A page of history records, newest first."""

    queries: List[QueryRecord]
    total: int
    has_more: bool


class HistoryExport(BaseModel):
    """Rendered history export."""

    filename: str
    content_type: str
    content: str
    download_url: str
