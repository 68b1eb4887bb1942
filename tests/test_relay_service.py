"""
Tests for the AI relay.

This module tests:
- Model selection (override vs. tier default)
- Commit only after provider success
- Stream framing, terminal chunk and commit on completion
- No commit on gate rejection, provider failure or broken streams
- Elapsed time covering the gate as well as the provider call
"""

import asyncio
import json
import os
import sys
import unittest
from unittest.mock import patch

import httpx

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.history.service import HistoryLog
from src.history.store import InMemoryHistoryStore
from src.profiles.store import InMemoryProfileStore
from src.relay.openrouter import OpenRouterClient, ProviderError, RelayConfig
from src.relay.service import (
    NO_RESPONSE_PLACEHOLDER,
    AIRelay,
    StreamChunk,
    extract_answer,
    extract_token_count,
    format_sse,
)
from src.types.history import QueryContext
from src.usage.ledger import QuotaExceeded, UsageLedger, utc_today


def sse_body(*fragments, done=True) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": f}}]}) + "\n\n"
        for f in fragments
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


class BrokenStream(httpx.AsyncByteStream):
    """Yields some bytes, then fails like a dropped connection."""

    def __init__(self, first: bytes):
        self.first = first

    async def __aiter__(self):
        yield self.first
        raise httpx.ReadError("connection reset")

    async def aclose(self):
        pass


def parse_frames(frames):
    """Decode downstream `data:` frames into dicts."""
    return [json.loads(f[len("data: "):].strip()) for f in frames if f.startswith("data: ")]


GATE_DELAY = 0.05


def slow_gate(ledger):
    """Patch the ledger gate to take GATE_DELAY seconds before answering."""
    real = ledger.check_and_consume

    async def gate(*args, **kwargs):
        await asyncio.sleep(GATE_DELAY)
        return await real(*args, **kwargs)

    return patch.object(ledger, "check_and_consume", side_effect=gate)


class RelayTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.profiles = InMemoryProfileStore()
        self.history_store = InMemoryHistoryStore()
        self.ledger = UsageLedger(store=self.profiles)
        self.history = HistoryLog(store=self.history_store)
        self.requests = []

    def make_relay(self, handler) -> AIRelay:
        def recording(request):
            self.requests.append(json.loads(request.content))
            return handler(request)

        client = OpenRouterClient(
            RelayConfig(api_key="sk-or-test", base_url="https://openrouter.test/api/v1"),
            transport=httpx.MockTransport(recording),
        )
        self.relay = AIRelay(client, ledger=self.ledger, history=self.history)
        return self.relay

    async def asyncTearDown(self):
        if hasattr(self, "relay"):
            await self.relay.close()

    async def usage(self, user_id="user-1"):
        profile = await self.profiles.get(user_id)
        return profile.daily_usage if profile else None

    async def seed_free_user(self, daily):
        await self.profiles.create("user-1", "a@e.com", "free", utc_today())
        for _ in range(daily):
            await self.profiles.increment_usage("user-1")


class TestHelpers(unittest.TestCase):
    def test_extract_answer(self):
        self.assertEqual(extract_answer({"choices": [{"message": {"content": "A"}}]}), "A")
        self.assertEqual(extract_answer({"choices": []}), NO_RESPONSE_PLACEHOLDER)
        self.assertEqual(extract_answer({"choices": [{"message": {"content": ""}}]}), NO_RESPONSE_PLACEHOLDER)

    def test_extract_token_count(self):
        self.assertEqual(extract_token_count({"usage": {"total_tokens": 42}}), 42)
        self.assertIsNone(extract_token_count({}))

    def test_format_sse(self):
        self.assertEqual(
            format_sse(StreamChunk(content="Hi")),
            'data: {"content":"Hi","done":false}\n\n',
        )


class TestAsk(RelayTestCase):
    """Tests for single-shot relay."""

    async def test_answer_is_committed(self):
        relay = self.make_relay(lambda r: httpx.Response(
            200,
            json={"choices": [{"message": {"content": "Because."}}], "usage": {"total_tokens": 12}},
        ))
        context = QueryContext(page_title="T", page_url="https://e.com", surrounding_text="body")

        result = await relay.ask("user-1", "Why?", context=context, email="a@e.com")

        self.assertEqual(result.answer, "Because.")
        self.assertEqual(result.model, "openai/gpt-3.5-turbo")
        self.assertEqual(result.token_count, 12)
        self.assertEqual(await self.usage(), 1)

        page = await self.history.list_page("user-1")
        self.assertEqual(page.total, 1)
        record = page.queries[0]
        self.assertEqual(record.question, "Why?")
        self.assertEqual(record.answer, "Because.")
        self.assertEqual(record.page_url, "https://e.com")
        self.assertEqual(record.context_text, "body")
        self.assertEqual(record.model_used, "openai/gpt-3.5-turbo")

    async def test_tier_default_model(self):
        await self.profiles.create("user-1", "a@e.com", "premium", utc_today())
        relay = self.make_relay(lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}))

        result = await relay.ask("user-1", "Q")

        self.assertEqual(result.model, "anthropic/claude-3-opus")
        self.assertEqual(self.requests[0]["model"], "anthropic/claude-3-opus")

    async def test_model_override(self):
        relay = self.make_relay(lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}))

        result = await relay.ask("user-1", "Q", model="mistralai/mistral-7b")

        self.assertEqual(result.model, "mistralai/mistral-7b")
        self.assertEqual(self.requests[0]["model"], "mistralai/mistral-7b")

    async def test_missing_content_uses_placeholder(self):
        relay = self.make_relay(lambda r: httpx.Response(200, json={"choices": []}))

        result = await relay.ask("user-1", "Q")

        self.assertEqual(result.answer, NO_RESPONSE_PLACEHOLDER)
        self.assertEqual(await self.usage(), 1)

    async def test_provider_failure_commits_nothing(self):
        relay = self.make_relay(lambda r: httpx.Response(500, text="down"))

        with self.assertRaises(ProviderError):
            await relay.ask("user-1", "Q")

        self.assertEqual(await self.usage(), 0)
        self.assertEqual((await self.history.list_page("user-1")).total, 0)

    async def test_quota_rejection_skips_provider(self):
        await self.seed_free_user(daily=10)
        relay = self.make_relay(lambda r: httpx.Response(200, json={}))

        with self.assertRaises(QuotaExceeded):
            await relay.ask("user-1", "Q")

        self.assertEqual(self.requests, [])
        self.assertEqual(await self.usage(), 10)

    async def test_last_allowed_call_then_rejection(self):
        await self.seed_free_user(daily=9)
        relay = self.make_relay(lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}))

        await relay.ask("user-1", "first")
        with self.assertRaises(QuotaExceeded):
            await relay.ask("user-1", "second")

        self.assertEqual(len(self.requests), 1)
        self.assertEqual(await self.usage(), 10)
        page = await self.history.list_page("user-1")
        self.assertEqual(page.total, 1)
        self.assertEqual(page.queries[0].question, "first")

    async def test_elapsed_includes_gate(self):
        relay = self.make_relay(lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}))

        with slow_gate(self.ledger):
            result = await relay.ask("user-1", "Q")

        self.assertGreaterEqual(result.elapsed_ms, int(GATE_DELAY * 1000))
        record = (await self.history.list_page("user-1")).queries[0]
        self.assertEqual(record.response_time_ms, result.elapsed_ms)


class TestStream(RelayTestCase):
    """Tests for streamed relay."""

    async def collect(self, stream):
        return [frame async for frame in stream.events()]

    async def test_stream_frames_and_commit(self):
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("Hel", "lo")))

        stream = await relay.open_stream("user-1", "Q")
        frames = await self.collect(stream)

        self.assertEqual(
            parse_frames(frames),
            [
                {"content": "Hel", "done": False},
                {"content": "lo", "done": False},
                {"content": "", "done": True},
            ],
        )
        self.assertTrue(stream.committed)
        self.assertTrue(self.requests[0]["stream"])
        self.assertEqual(await self.usage(), 1)
        record = (await self.history.list_page("user-1")).queries[0]
        self.assertEqual(record.answer, "Hello")

    async def test_stream_without_sentinel_still_finishes(self):
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("Hi", done=False)))

        stream = await relay.open_stream("user-1", "Q")
        frames = await self.collect(stream)

        self.assertEqual(parse_frames(frames)[-1], {"content": "", "done": True})
        self.assertEqual(await self.usage(), 1)

    async def test_malformed_fragments_are_skipped(self):
        body = b"data: {broken\n\n" + sse_body("ok")
        relay = self.make_relay(lambda r: httpx.Response(200, content=body))

        frames = await self.collect(await relay.open_stream("user-1", "Q"))

        self.assertEqual([f["content"] for f in parse_frames(frames)], ["ok", ""])

    async def test_malformed_line_between_fragments(self):
        body = sse_body("A", done=False) + b"data: {broken\n\n" + sse_body("B")
        relay = self.make_relay(lambda r: httpx.Response(200, content=body))

        frames = await self.collect(await relay.open_stream("user-1", "Q"))

        self.assertEqual(
            parse_frames(frames),
            [
                {"content": "A", "done": False},
                {"content": "B", "done": False},
                {"content": "", "done": True},
            ],
        )
        record = (await self.history.list_page("user-1")).queries[0]
        self.assertEqual(record.answer, "AB")

    async def test_nothing_after_sentinel_is_forwarded(self):
        body = sse_body("A") + sse_body("late", done=False)
        relay = self.make_relay(lambda r: httpx.Response(200, content=body))

        frames = await self.collect(await relay.open_stream("user-1", "Q"))

        self.assertEqual([f["content"] for f in parse_frames(frames)], ["A", ""])
        self.assertNotIn("late", "".join(frames))
        record = (await self.history.list_page("user-1")).queries[0]
        self.assertEqual(record.answer, "A")

    async def test_committed_before_done_frame(self):
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("Hi")))
        stream = await relay.open_stream("user-1", "Q")
        state_at_done = None

        async for frame in stream.events():
            if parse_frames([frame])[0]["done"]:
                state_at_done = (
                    stream.committed,
                    await self.usage(),
                    (await self.history.list_page("user-1")).total,
                )

        self.assertEqual(state_at_done, (True, 1, 1))

    async def test_last_allowed_stream_then_rejection(self):
        await self.seed_free_user(daily=9)
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("x")))

        await self.collect(await relay.open_stream("user-1", "first"))
        with self.assertRaises(QuotaExceeded):
            await relay.open_stream("user-1", "second")

        self.assertEqual(len(self.requests), 1)
        self.assertEqual(await self.usage(), 10)
        self.assertEqual((await self.history.list_page("user-1")).total, 1)

    async def test_stream_elapsed_includes_gate(self):
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("x")))

        with slow_gate(self.ledger):
            stream = await relay.open_stream("user-1", "Q")
        await self.collect(stream)

        record = (await self.history.list_page("user-1")).queries[0]
        self.assertGreaterEqual(record.response_time_ms, int(GATE_DELAY * 1000))

    async def test_open_failure_commits_nothing(self):
        relay = self.make_relay(lambda r: httpx.Response(502, text="bad gateway"))

        with self.assertRaises(ProviderError):
            await relay.open_stream("user-1", "Q")

        self.assertEqual(await self.usage(), 0)

    async def test_broken_stream_sends_error_and_commits_nothing(self):
        first = b'data: {"choices":[{"delta":{"content":"par"}}]}\n\n'
        relay = self.make_relay(lambda r: httpx.Response(200, stream=BrokenStream(first)))

        stream = await relay.open_stream("user-1", "Q")
        frames = await self.collect(stream)

        self.assertTrue(frames[-1].startswith("event: error\n"))
        self.assertIn("failed to stream AI response", frames[-1])
        self.assertFalse(stream.committed)
        self.assertEqual(await self.usage(), 0)
        self.assertEqual((await self.history.list_page("user-1")).total, 0)

    async def test_early_close_commits_nothing(self):
        relay = self.make_relay(lambda r: httpx.Response(200, content=sse_body("a", "b")))

        stream = await relay.open_stream("user-1", "Q")
        await stream.aclose()
        await stream.aclose()

        self.assertFalse(stream.committed)
        self.assertEqual(await self.usage(), 0)


if __name__ == "__main__":
    unittest.main()
