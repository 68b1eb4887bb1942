"""
Relay of page-aware questions to the OpenRouter completion API.
"""

from .openrouter import MAX_TOKENS, TEMPERATURE, OpenRouterClient, ProviderError, RelayConfig
from .prompt import SYSTEM_PROMPT, build_contextual_prompt, build_messages
from .service import (
    AIRelay,
    AskResult,
    RelayStream,
    StreamChunk,
    close_ai_relay,
    get_ai_relay,
)
from .sse import LineOutcome, ParserClosed, ParserState, SSELineParser

__all__ = [
    "MAX_TOKENS",
    "TEMPERATURE",
    "OpenRouterClient",
    "ProviderError",
    "RelayConfig",
    "SYSTEM_PROMPT",
    "build_contextual_prompt",
    "build_messages",
    "AIRelay",
    "AskResult",
    "RelayStream",
    "StreamChunk",
    "close_ai_relay",
    "get_ai_relay",
    "LineOutcome",
    "ParserClosed",
    "ParserState",
    "SSELineParser",
]
