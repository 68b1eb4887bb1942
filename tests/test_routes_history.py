"""
Tests for the /history endpoints.
"""

import asyncio
import base64
import json
import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi.testclient import TestClient

from app.auth import DEV_USER_ID
from src.history.service import HistoryLog, get_history_log
from src.history.store import InMemoryHistoryStore
from src.types.history import QueryContext, QueryRecord


class HistoryRouteTestCase(unittest.TestCase):
    def setUp(self):
        from server import app

        self.app = app
        self.store = InMemoryHistoryStore()
        app.dependency_overrides[get_history_log] = lambda: HistoryLog(store=self.store)
        self.client = TestClient(app)

    def tearDown(self):
        self.app.dependency_overrides.clear()

    def seed(self, count, user_id=DEV_USER_ID):
        stored = []
        for n in range(count):
            record = QueryRecord.from_exchange(
                user_id=user_id,
                question=f"Q{n}",
                answer=f"A{n}",
                context=QueryContext(page_title=f"Page {n}"),
                model_used="openai/gpt-3.5-turbo",
                response_time_ms=50,
            )
            stored.append(asyncio.run(self.store.append(record)))
        return stored


class TestListHistory(HistoryRouteTestCase):
    """Tests for GET /history and /history/recent."""

    def test_default_page(self):
        self.seed(12)

        response = self.client.get("/history")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data["queries"]), 10)
        self.assertEqual(data["total"], 12)
        self.assertTrue(data["has_more"])
        self.assertEqual(data["queries"][0]["question"], "Q11")

    def test_limit_and_offset(self):
        self.seed(3)

        data = self.client.get("/history", params={"limit": 2, "offset": 2}).json()

        self.assertEqual([q["question"] for q in data["queries"]], ["Q0"])
        self.assertFalse(data["has_more"])

    def test_limit_bounds(self):
        for params in ({"limit": 0}, {"limit": 101}, {"offset": -1}):
            with self.subTest(params=params):
                response = self.client.get("/history", params=params)
                self.assertEqual(response.status_code, 422)

    def test_only_own_records(self):
        self.seed(2, user_id="someone-else")

        data = self.client.get("/history").json()

        self.assertEqual(data["total"], 0)

    def test_recent(self):
        self.seed(11)

        data = self.client.get("/history/recent").json()

        self.assertEqual(len(data["queries"]), 10)


class TestExportHistory(HistoryRouteTestCase):
    """Tests for POST /history/export."""

    def test_json_export(self):
        self.seed(2)

        response = self.client.post("/history/export", json={"format": "json"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["filename"].endswith(".json"))
        prefix = "data:application/json;base64,"
        self.assertTrue(data["download_url"].startswith(prefix))
        records = json.loads(base64.b64decode(data["download_url"][len(prefix):]))
        self.assertEqual({r["question"] for r in records}, {"Q0", "Q1"})

    def test_default_is_markdown(self):
        self.seed(1)

        data = self.client.post("/history/export", json={}).json()

        self.assertTrue(data["download_url"].startswith("data:text/markdown;base64,"))

    def test_unsupported_format(self):
        response = self.client.post("/history/export", json={"format": "docx"})

        self.assertEqual(response.status_code, 400)
        data = response.json()
        self.assertEqual(data["error_code"], "INVALID_FORMAT")
        self.assertEqual(data["details"]["field"], "format")


class TestDeleteHistory(HistoryRouteTestCase):
    """Tests for DELETE /history/{id} and DELETE /history."""

    def test_delete_one(self):
        stored = self.seed(2)

        response = self.client.delete(f"/history/{stored[0].id}")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertEqual(self.client.get("/history").json()["total"], 1)

    def test_delete_foreign_record_is_404(self):
        stored = self.seed(1, user_id="someone-else")

        response = self.client.delete(f"/history/{stored[0].id}")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error_code"], "QUERY_NOT_FOUND")
        self.assertEqual(asyncio.run(self.store.count("someone-else")), 1)

    def test_clear(self):
        self.seed(3)
        self.seed(1, user_id="someone-else")

        response = self.client.delete("/history")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["deleted"], 3)
        self.assertEqual(asyncio.run(self.store.count("someone-else")), 1)


if __name__ == "__main__":
    unittest.main()
