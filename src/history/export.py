"""
Rendering of query history exports.

Formats:
- markdown: a human-readable document, one section per query
- json: a list of records carrying every stored field
- pdf: rendered as markdown (no PDF engine is bundled)

The rendered document is returned as a base64 `data:` URL so the extension
can offer it for download without a second request.
"""

import base64
import json
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence

from src.types.history import ExportFormat, HistoryExport, QueryRecord

CONTENT_TYPES = {
    ExportFormat.MARKDOWN: "text/markdown",
    ExportFormat.JSON: "application/json",
    ExportFormat.PDF: "text/markdown",
}


def export_filename(fmt: ExportFormat, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"peekai-history-{today.isoformat()}.{fmt.value}"


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_markdown(records: Sequence[QueryRecord], now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    lines: List[str] = [
        "# PeekAI Query History Export",
        "",
        f"Exported on: {_format_timestamp(now)}",
        f"Total queries: {len(records)}",
        "",
    ]

    for index, record in enumerate(records, start=1):
        lines.extend([
            f"## Query {index}",
            "",
            f"**Date:** {_format_timestamp(record.created_at)}",
            "",
            f"**Question:** {record.question}",
            "",
            "**Answer:**",
            "",
            record.answer,
            "",
        ])
        if record.page_title:
            lines.append(f"**Page:** {record.page_title}")
        if record.page_url:
            lines.append(f"**URL:** {record.page_url}")
        lines.extend([
            f"**Model:** {record.model_used}",
            f"**Response Time:** {record.response_time_ms}ms",
            "",
            "---",
            "",
        ])

    return "\n".join(lines)


def render_json(records: Sequence[QueryRecord]) -> str:
    payload = [record.model_dump(mode="json") for record in records]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def parse_json_export(content: str) -> List[QueryRecord]:
    """Read records back from a JSON export."""
    return [QueryRecord.model_validate(item) for item in json.loads(content)]


def to_data_url(content: str, content_type: str) -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def render_export(
    records: Sequence[QueryRecord],
    fmt: ExportFormat,
    today: Optional[date] = None,
) -> HistoryExport:
    """Render records in the requested format."""
    if fmt == ExportFormat.JSON:
        content = render_json(records)
    else:
        content = render_markdown(records)

    content_type = CONTENT_TYPES[fmt]
    return HistoryExport(
        filename=export_filename(fmt, today),
        content_type=content_type,
        content=content,
        download_url=to_data_url(content, content_type),
    )
