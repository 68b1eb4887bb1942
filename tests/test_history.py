"""
Tests for the query history log and its exports.
"""

import base64
import json
import os
import sys
import unittest
from datetime import date, datetime, timedelta, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.history.export import parse_json_export, render_export, render_markdown
from src.history.service import (
    HistoryLog,
    HistoryNotFound,
    UnsupportedExportFormat,
    parse_export_format,
)
from src.history.store import InMemoryHistoryStore
from src.types.history import ExportFormat, QueryContext, QueryRecord

BASE_TIME = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(user_id="user-1", n=0, **overrides) -> QueryRecord:
    fields = dict(
        user_id=user_id,
        question=f"Question {n}",
        answer=f"Answer {n}",
        model_used="openai/gpt-3.5-turbo",
        response_time_ms=100 + n,
        created_at=BASE_TIME + timedelta(minutes=n),
    )
    fields.update(overrides)
    return QueryRecord(**fields)


class HistoryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryHistoryStore()
        self.history = HistoryLog(store=self.store)

    async def seed(self, count, user_id="user-1"):
        return [await self.history.append(record(user_id, n)) for n in range(count)]


class TestListing(HistoryTestCase):
    """Tests for paging and recent items."""

    async def test_newest_first(self):
        await self.seed(3)

        page = await self.history.list_page("user-1")

        self.assertEqual([q.question for q in page.queries], ["Question 2", "Question 1", "Question 0"])
        self.assertEqual(page.total, 3)
        self.assertFalse(page.has_more)

    async def test_has_more_and_offset(self):
        await self.seed(5)

        first = await self.history.list_page("user-1", limit=2, offset=0)
        last = await self.history.list_page("user-1", limit=2, offset=4)

        self.assertTrue(first.has_more)
        self.assertEqual(len(first.queries), 2)
        self.assertFalse(last.has_more)
        self.assertEqual([q.question for q in last.queries], ["Question 0"])

    async def test_exact_page_has_no_more(self):
        await self.seed(2)

        page = await self.history.list_page("user-1", limit=2)

        self.assertFalse(page.has_more)

    async def test_invalid_paging(self):
        for limit, offset in ((0, 0), (101, 0), (10, -1)):
            with self.subTest(limit=limit, offset=offset):
                with self.assertRaises(ValueError):
                    await self.history.list_page("user-1", limit=limit, offset=offset)

    async def test_users_are_isolated(self):
        await self.seed(2, user_id="alice")
        await self.seed(1, user_id="bob")

        page = await self.history.list_page("bob")

        self.assertEqual(page.total, 1)
        self.assertTrue(all(q.user_id == "bob" for q in page.queries))

    async def test_recent_caps_at_ten(self):
        await self.seed(12)

        recent = await self.history.recent("user-1")

        self.assertEqual(len(recent), 10)
        self.assertEqual(recent[0].question, "Question 11")

    async def test_same_timestamp_orders_by_insertion(self):
        await self.history.append(record(n=0, question="first", created_at=BASE_TIME))
        await self.history.append(record(n=0, question="second", created_at=BASE_TIME))

        page = await self.history.list_page("user-1")

        self.assertEqual([q.question for q in page.queries], ["second", "first"])


class TestDeletion(HistoryTestCase):
    """Tests for delete and clear."""

    async def test_delete_own_record(self):
        stored = await self.seed(2)

        await self.history.delete("user-1", stored[0].id)

        self.assertEqual((await self.history.list_page("user-1")).total, 1)

    async def test_delete_other_users_record_is_not_found(self):
        """Someone else's record looks exactly like a missing one."""
        stored = await self.seed(1, user_id="alice")

        with self.assertRaises(HistoryNotFound):
            await self.history.delete("bob", stored[0].id)

        self.assertEqual((await self.history.list_page("alice")).total, 1)

    async def test_delete_missing_record(self):
        with self.assertRaises(HistoryNotFound):
            await self.history.delete("user-1", 999)

    async def test_clear_returns_count_and_spares_others(self):
        await self.seed(3, user_id="alice")
        await self.seed(2, user_id="bob")

        removed = await self.history.clear("alice")

        self.assertEqual(removed, 3)
        self.assertEqual((await self.history.list_page("alice")).total, 0)
        self.assertEqual((await self.history.list_page("bob")).total, 2)


class TestExport(HistoryTestCase):
    """Tests for history export."""

    async def test_json_export_round_trip(self):
        """Exported JSON parses back to the same records, context included."""
        context = QueryContext(
            page_title="Title",
            page_url="https://example.com",
            page_domain="example.com",
            selected_text="selected",
            surrounding_text="around",
        )
        await self.history.append(
            QueryRecord.from_exchange("user-1", "Q1", "A1", context, "m", 10)
        )
        await self.history.append(QueryRecord.from_exchange("user-1", "Q2", "A2", None, "m", 20))

        export = await self.history.export("user-1", "json")
        parsed = parse_json_export(export.content)

        self.assertEqual(export.content_type, "application/json")
        self.assertEqual({(r.question, r.answer) for r in parsed}, {("Q1", "A1"), ("Q2", "A2")})
        with_context = next(r for r in parsed if r.question == "Q1")
        self.assertEqual(with_context.page_title, "Title")
        self.assertEqual(with_context.page_url, "https://example.com")
        self.assertEqual(with_context.page_domain, "example.com")
        self.assertEqual(with_context.selected_text, "selected")
        self.assertEqual(with_context.context_text, "around")

    async def test_export_selected_ids_only_own(self):
        mine = await self.seed(3, user_id="alice")
        theirs = await self.seed(1, user_id="bob")

        export = await self.history.export("alice", "json", [mine[0].id, theirs[0].id])
        parsed = parse_json_export(export.content)

        self.assertEqual([r.id for r in parsed], [mine[0].id])

    async def test_markdown_export_download_url(self):
        await self.seed(1)

        export = await self.history.export("user-1", ExportFormat.MARKDOWN)

        self.assertTrue(export.filename.startswith("peekai-history-"))
        self.assertTrue(export.filename.endswith(".markdown"))
        prefix = "data:text/markdown;base64,"
        self.assertTrue(export.download_url.startswith(prefix))
        decoded = base64.b64decode(export.download_url[len(prefix):]).decode("utf-8")
        self.assertEqual(decoded, export.content)
        self.assertIn("# PeekAI Query History Export", decoded)

    async def test_pdf_is_rendered_as_markdown(self):
        await self.seed(1)

        export = await self.history.export("user-1", "pdf")

        self.assertEqual(export.content_type, "text/markdown")
        self.assertIn("## Query 1", export.content)

    async def test_empty_history_export(self):
        export = await self.history.export("user-1", "json")

        self.assertEqual(json.loads(export.content), [])

    async def test_unsupported_format(self):
        with self.assertRaises(UnsupportedExportFormat):
            await self.history.export("user-1", "docx")


class TestRendering(unittest.TestCase):
    def test_parse_export_format(self):
        self.assertEqual(parse_export_format(" JSON "), ExportFormat.JSON)
        with self.assertRaises(UnsupportedExportFormat):
            parse_export_format("csv")

    def test_markdown_layout(self):
        records = [
            record(n=1, id=2, page_title="Docs", page_url="https://d.example"),
            record(n=0, id=1),
        ]

        content = render_markdown(records, now=BASE_TIME)

        self.assertIn("Exported on: 2026-05-01 12:00:00 UTC", content)
        self.assertIn("Total queries: 2", content)
        self.assertIn("## Query 1", content)
        self.assertIn("**Question:** Question 1", content)
        self.assertIn("**Page:** Docs", content)
        self.assertIn("**URL:** https://d.example", content)
        self.assertIn("**Response Time:** 101ms", content)
        self.assertEqual(content.count("**Page:**"), 1)

    def test_filename_uses_date(self):
        export = render_export([], ExportFormat.JSON, today=date(2026, 5, 1))

        self.assertEqual(export.filename, "peekai-history-2026-05-01.json")


if __name__ == "__main__":
    unittest.main()
