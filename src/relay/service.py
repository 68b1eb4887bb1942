"""
AI relay: question in, answer out.

Both modes follow the same sequence:
1. Gate the call against the usage ledger
2. Build the prompt and pick the model (override or tier default)
3. Call the provider
4. On success only, record usage and append a history record

Nothing is committed when the gate rejects the call, when the provider
fails, or when a stream breaks before it finishes.
"""

import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel

from src.history.service import HistoryLog, get_history_log
from src.relay.openrouter import OpenRouterClient, ProviderError, RelayConfig
from src.relay.prompt import build_messages
from src.relay.sse import LineOutcome, SSELineParser
from src.types.history import QueryContext, QueryRecord
from src.usage.ledger import UsageLedger, get_usage_ledger
from src.usage.tiers import default_model
from src.utils.logging import Timer

logger = logging.getLogger(__name__)

NO_RESPONSE_PLACEHOLDER = "No response generated"
STREAM_ERROR_MESSAGE = "failed to stream AI response"


@dataclass
class AskResult:
    answer: str
    model: str
    elapsed_ms: int
    token_count: Optional[int] = None


class StreamChunk(BaseModel):
    """One downstream SSE frame."""

    content: str
    done: bool = False


def format_sse(chunk: StreamChunk) -> str:
    return f"data: {chunk.model_dump_json()}\n\n"


def format_sse_error(message: str, error_code: str = "AI_PROVIDER_ERROR") -> str:
    payload = json.dumps({"error": message, "error_code": error_code})
    return f"event: error\ndata: {payload}\n\n"


def extract_answer(data: Dict[str, Any]) -> str:
    """`choices[0].message.content`, or the placeholder when absent."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return NO_RESPONSE_PLACEHOLDER
    if not isinstance(content, str) or not content:
        return NO_RESPONSE_PLACEHOLDER
    return content


def extract_token_count(data: Dict[str, Any]) -> Optional[int]:
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return None
    total = usage.get("total_tokens")
    return total if isinstance(total, int) else None


class RelayStream:
    """
    An open upstream stream plus everything needed to commit it.

    `events()` yields SSE frames for the caller. The upstream response and
    any per-user lock are released when the generator finishes, fails or is
    closed early; `aclose()` does the same and is safe to call twice.
    """

    def __init__(
        self,
        relay: "AIRelay",
        response: httpx.Response,
        exit_stack: AsyncExitStack,
        timer: Timer,
        user_id: str,
        question: str,
        context: Optional[QueryContext],
        model: str,
    ):
        self._relay = relay
        self._response = response
        self._exit_stack = exit_stack
        self._timer = timer
        self.user_id = user_id
        self.question = question
        self.context = context
        self.model = model
        self.committed = False
        self._closed = False

    async def events(self) -> AsyncIterator[str]:
        parser = SSELineParser()
        fragments: List[str] = []
        try:
            try:
                async for line in self._response.aiter_lines():
                    result = parser.feed(line)
                    if result.outcome == LineOutcome.EMIT:
                        fragments.append(result.content)
                        yield format_sse(StreamChunk(content=result.content))
                    elif result.outcome == LineOutcome.DONE:
                        break
            except (httpx.HTTPError, httpx.StreamError) as e:
                logger.warning(
                    "Upstream stream failed",
                    extra={
                        "model": self.model,
                        "error_type": type(e).__name__,
                        "fragments": len(fragments),
                    },
                )
                yield format_sse_error(STREAM_ERROR_MESSAGE)
                return

            await self._commit("".join(fragments))
            yield format_sse(StreamChunk(content="", done=True))
        finally:
            await self.aclose()

    async def _commit(self, answer: str) -> None:
        elapsed_ms = self._timer.running_ms
        await self._relay.commit(
            user_id=self.user_id,
            question=self.question,
            answer=answer,
            context=self.context,
            model=self.model,
            elapsed_ms=elapsed_ms,
        )
        self.committed = True
        logger.info(
            "Stream relay completed",
            extra={"model": self.model, "duration_ms": elapsed_ms, "answer_chars": len(answer)},
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._exit_stack.aclose()


class AIRelay:
    """Orchestrates gate, provider call and commit."""

    def __init__(
        self,
        client: OpenRouterClient,
        ledger: Optional[UsageLedger] = None,
        history: Optional[HistoryLog] = None,
    ):
        self.client = client
        self._ledger = ledger
        self._history = history

    @property
    def ledger(self) -> UsageLedger:
        if self._ledger is None:
            self._ledger = get_usage_ledger()
        return self._ledger

    @property
    def history(self) -> HistoryLog:
        if self._history is None:
            self._history = get_history_log()
        return self._history

    async def _prepare(
        self,
        user_id: str,
        email: Optional[str],
        question: str,
        context: Optional[QueryContext],
        model: Optional[str],
    ):
        profile = await self.ledger.check_and_consume(user_id, email)
        chosen_model = model or default_model(profile.tier)
        return chosen_model, build_messages(question, context)

    async def commit(
        self,
        user_id: str,
        question: str,
        answer: str,
        context: Optional[QueryContext],
        model: str,
        elapsed_ms: int,
    ) -> QueryRecord:
        """Record usage, then append the history record."""
        await self.ledger.record_usage(user_id)
        return await self.history.append(
            QueryRecord.from_exchange(
                user_id=user_id,
                question=question,
                answer=answer,
                context=context,
                model_used=model,
                response_time_ms=elapsed_ms,
            )
        )

    async def ask(
        self,
        user_id: str,
        question: str,
        context: Optional[QueryContext] = None,
        model: Optional[str] = None,
        email: Optional[str] = None,
    ) -> AskResult:
        """
        Answer a question in one provider round-trip.

        Raises:
            QuotaExceeded: If the user is over today's limit
            ProviderError: If the provider call fails
        """
        with Timer("relay_ask", logger) as timer:
            async with self.ledger.user_scope(user_id):
                chosen_model, messages = await self._prepare(
                    user_id, email, question, context, model
                )
                data = await self.client.complete(chosen_model, messages)
                answer = extract_answer(data)
                elapsed_ms = timer.running_ms
                await self.commit(user_id, question, answer, context, chosen_model, elapsed_ms)

        logger.info(
            "Relay completed",
            extra={"model": chosen_model, "duration_ms": elapsed_ms},
        )
        return AskResult(
            answer=answer,
            model=chosen_model,
            elapsed_ms=elapsed_ms,
            token_count=extract_token_count(data),
        )

    async def open_stream(
        self,
        user_id: str,
        question: str,
        context: Optional[QueryContext] = None,
        model: Optional[str] = None,
        email: Optional[str] = None,
    ) -> RelayStream:
        """
        Gate the call and open the upstream stream.

        Runs before the HTTP response starts, so rejections and connection
        failures can still be returned as ordinary error responses.

        Raises:
            QuotaExceeded: If the user is over today's limit
            ProviderError: If the stream cannot be opened
        """
        # Started before the gate; the stream reads running_ms when it commits.
        timer = Timer("relay_stream_open", logger)
        exit_stack = AsyncExitStack()
        with timer:
            await exit_stack.enter_async_context(self.ledger.user_scope(user_id))
            try:
                chosen_model, messages = await self._prepare(
                    user_id, email, question, context, model
                )
                response = await self.client.open_stream(chosen_model, messages)
            except BaseException:
                await exit_stack.aclose()
                raise

        return RelayStream(
            relay=self,
            response=response,
            exit_stack=exit_stack,
            timer=timer,
            user_id=user_id,
            question=question,
            context=context,
            model=chosen_model,
        )

    async def close(self) -> None:
        await self.client.close()


_ai_relay: Optional[AIRelay] = None


def get_ai_relay() -> AIRelay:
    """Get the singleton relay, configured from settings."""
    global _ai_relay
    if _ai_relay is None:
        _ai_relay = AIRelay(OpenRouterClient(RelayConfig.from_settings()))
    return _ai_relay


async def close_ai_relay() -> None:
    """Close the shared provider client (used during graceful shutdown)."""
    global _ai_relay
    if _ai_relay is None:
        return
    try:
        await _ai_relay.close()
    finally:
        _ai_relay = None


__all__ = [
    "AIRelay",
    "AskResult",
    "ProviderError",
    "RelayStream",
    "StreamChunk",
    "close_ai_relay",
    "get_ai_relay",
]
