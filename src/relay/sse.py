"""
Line parser for OpenRouter's server-sent event stream.

The upstream body is a sequence of lines. Only lines with a `data:` prefix
carry payload; the payload is either a JSON chat-completion chunk or the
literal `[DONE]` sentinel. The parser is a small state machine so the relay
can tell "skip this line" apart from "stop reading".

    EXPECT_LINE --data:--> PARSE_FRAGMENT --> EXPECT_LINE
         |                       |
         +------- [DONE] --------+--> DONE (terminal)
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class ParserState(str, Enum):
    EXPECT_LINE = "expect_line"
    PARSE_FRAGMENT = "parse_fragment"
    DONE = "done"


class LineOutcome(str, Enum):
    EMIT = "emit"        # fragment carried non-empty content
    SKIP = "skip"        # data line without usable content
    IGNORE = "ignore"    # not a data line (comment, event, blank)
    DONE = "done"        # sentinel seen


@dataclass
class ParseResult:
    outcome: LineOutcome
    content: Optional[str] = None


class ParserClosed(RuntimeError):
    """Raised when a line is fed to a parser that already saw the sentinel."""


class SSELineParser:
    """
    Incremental parser for one upstream stream.

    Feed each line to `feed()`. After a DONE outcome the parser is closed
    and further input raises ParserClosed.
    """

    def __init__(self):
        self.state = ParserState.EXPECT_LINE

    @property
    def done(self) -> bool:
        return self.state == ParserState.DONE

    def feed(self, line: str) -> ParseResult:
        if self.state == ParserState.DONE:
            raise ParserClosed("stream already finished")

        line = line.rstrip("\r\n")
        if not line.startswith(DATA_PREFIX):
            return ParseResult(LineOutcome.IGNORE)

        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]

        if payload.strip() == DONE_SENTINEL:
            self.state = ParserState.DONE
            return ParseResult(LineOutcome.DONE)

        self.state = ParserState.PARSE_FRAGMENT
        try:
            content = _extract_delta_content(payload)
        finally:
            self.state = ParserState.EXPECT_LINE

        if not content:
            return ParseResult(LineOutcome.SKIP)
        return ParseResult(LineOutcome.EMIT, content)


def _extract_delta_content(payload: str) -> Optional[str]:
    """`choices[0].delta.content` of a chunk, or None if malformed."""
    try:
        chunk: Any = json.loads(payload)
    except ValueError:
        return None

    try:
        content = chunk["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None

    return content if isinstance(content, str) else None
