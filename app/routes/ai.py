"""
Question endpoints: single-shot and streamed answers.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.auth import AuthenticatedUser, get_current_user
from app.exceptions import AIProviderError, QuotaExceededError
from app.models import AskRequest, AskResponse, ErrorResponse
from src.relay.openrouter import ProviderError
from src.relay.service import AIRelay, get_ai_relay
from src.usage.ledger import QuotaExceeded

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ai"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def quota_error(exc: QuotaExceeded) -> QuotaExceededError:
    """Translate the ledger's rejection into the 429 API error."""
    return QuotaExceededError(
        message=exc.message,
        tier=exc.tier.value,
        limit=exc.quota_limit,
        current_usage=exc.current_usage,
        reset_time=exc.reset_date,
        retry_after=exc.retry_after_seconds(),
    )


@router.post(
    "/ask",
    response_model=AskResponse,
    responses={
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse, "description": "Daily question limit reached"},
        500: {"model": ErrorResponse, "description": "Completion provider failed"},
    },
)
async def ask(
    body: AskRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    relay: AIRelay = Depends(get_ai_relay),
) -> AskResponse:
    """Answer a question about the current page in one response."""
    try:
        result = await relay.ask(
            user_id=user.user_id,
            question=body.question,
            context=body.context,
            model=body.model,
            email=user.email,
        )
    except QuotaExceeded as e:
        raise quota_error(e)
    except ProviderError as e:
        raise AIProviderError(
            "failed to get AI response",
            internal_message=e.message,
            original_error=e.original_error,
        )

    return AskResponse(
        answer=result.answer,
        model=result.model,
        response_time_ms=result.elapsed_ms,
        token_count=result.token_count,
    )


@router.post(
    "/ask/stream",
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "SSE answer stream"},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse, "description": "Daily question limit reached"},
        500: {"model": ErrorResponse, "description": "Completion provider failed"},
    },
)
async def ask_stream(
    body: AskRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    relay: AIRelay = Depends(get_ai_relay),
) -> StreamingResponse:
    """
    Stream an answer as server-sent events.

    Each frame is `data: {"content": "...", "done": false}`; the last one has
    `done: true`. A failure after streaming started is sent as an
    `event: error` frame.
    """
    try:
        stream = await relay.open_stream(
            user_id=user.user_id,
            question=body.question,
            context=body.context,
            model=body.model,
            email=user.email,
        )
    except QuotaExceeded as e:
        raise quota_error(e)
    except ProviderError as e:
        raise AIProviderError(
            "failed to stream AI response",
            internal_message=e.message,
            original_error=e.original_error,
        )

    return StreamingResponse(
        stream.events(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(stream.aclose),
    )
