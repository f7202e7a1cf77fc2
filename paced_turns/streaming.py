"""Reassembly of streamed chat completions.

StreamingChunkAccumulator turns server-sent-event bytes into parsed chunks
and merges their deltas into one response. StreamingHandler drives an
accumulator over an async byte source and hands the finished response to
the pacing pipeline.

Merge rules:
- content and reasoning deltas append; the first delta starts from ""
- tool-call deltas are merged by index: id, type and function name are
  overwritten when present, function arguments are appended
- turns, next and compliance_violations keep the last value seen
- finish_reason "tool_calls" with no accumulated text means content None
"""

import codecs
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from paced_turns.errors import StreamParseError
from paced_turns.interfaces.chat import ChatResponse, ToolCall
from paced_turns.interfaces.events import EventEmitter, TurnEvent
from paced_turns.logging_config import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class ContentKind(Enum):
    """Shape of the accumulated content."""
    ABSENT = "absent"
    EMPTY = "empty"
    TEXT = "text"


@dataclass
class AccumulatedResponse:
    """Result of a fully consumed stream."""
    content: Optional[str]
    tool_calls: List[ToolCall] = field(default_factory=list)
    turns: Optional[List[str]] = None
    has_next: bool = False
    violations: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    finish_reason: Optional[str] = None

    @property
    def content_kind(self) -> ContentKind:
        if self.content is None:
            return ContentKind.ABSENT
        if self.content == "":
            return ContentKind.EMPTY
        return ContentKind.TEXT

    def to_chat_response(self) -> ChatResponse:
        return ChatResponse(
            content=self.content,
            tool_calls=list(self.tool_calls),
            turns=self.turns,
            has_next=self.has_next,
            violations=list(self.violations),
            reasoning=self.reasoning,
            finish_reason=self.finish_reason,
        )


def _expect(value: Any, kind: type, field_name: str, line: Optional[str]) -> None:
    """None is always allowed; anything else must be an instance of kind."""
    if value is not None and not isinstance(value, kind):
        raise StreamParseError(
            f"Malformed stream chunk: {field_name} is {type(value).__name__}",
            line=line,
        )


def _check_tool_call_delta(tc_delta: Any, line: Optional[str]) -> None:
    if not isinstance(tc_delta, dict):
        raise StreamParseError("Malformed stream chunk: tool call is not an object", line=line)

    index = tc_delta.get("index")
    if index is not None and (isinstance(index, bool) or not isinstance(index, int) or index < 0):
        raise StreamParseError(f"Malformed stream chunk: invalid tool call index {index!r}", line=line)
    _expect(tc_delta.get("id"), str, "tool call id", line)
    _expect(tc_delta.get("type"), str, "tool call type", line)

    function = tc_delta.get("function")
    _expect(function, dict, "tool call function", line)
    if function:
        _expect(function.get("name"), str, "function name", line)
        _expect(function.get("arguments"), str, "function arguments", line)


def _check_chunk(chunk: Any, line: Optional[str] = None) -> None:
    """Raise StreamParseError unless every field merge() reads has the right type."""
    if not isinstance(chunk, dict):
        raise StreamParseError("Stream chunk is not a JSON object", line=line)

    _expect(chunk.get("compliance_violations"), list, "compliance_violations", line)
    choices = chunk.get("choices")
    _expect(choices, list, "choices", line)

    for choice in choices or []:
        if not isinstance(choice, dict):
            raise StreamParseError("Malformed stream chunk: choice is not an object", line=line)
        _expect(choice.get("finish_reason"), str, "finish_reason", line)

        delta = choice.get("delta")
        _expect(delta, dict, "delta", line)
        if not delta:
            continue
        _expect(delta.get("content"), str, "content", line)
        _expect(delta.get("reasoning"), str, "reasoning", line)
        _expect(delta.get("turns"), list, "turns", line)
        tool_calls = delta.get("tool_calls")
        _expect(tool_calls, list, "tool_calls", line)
        for tc_delta in tool_calls or []:
            _check_tool_call_delta(tc_delta, line)


class StreamingChunkAccumulator:
    """Accumulates one streamed response.

    Feed raw bytes (or text) in any fragmentation; complete lines are
    parsed as they arrive. A multi-byte character split across fragments
    is decoded once complete.

    Usage:
        acc = StreamingChunkAccumulator()
        async for data in response.aiter_bytes():
            acc.feed(data)
            if acc.done:
                break
        acc.finish()
        result = acc.result()
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self.done = False

        self.content: Optional[str] = None
        self.reasoning: Optional[str] = None
        self.tool_calls: Dict[int, ToolCall] = {}
        self.turns: Optional[List[str]] = None
        self.has_next: bool = False
        self.violations: List[str] = []
        self.finish_reason: Optional[str] = None

    def feed(self, data: bytes | str) -> List[dict]:
        """Consume a fragment and merge every complete line in it.

        Returns:
            The chunks parsed from lines completed by this fragment.

        Raises:
            StreamParseError: If a complete data line is not valid JSON or
                a field has the wrong type. Nothing from the bad line is
                merged; chunks merged before it stay merged and the lines
                after it stay buffered.
        """
        if self.done:
            return []
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        chunks = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            chunk = self._parse_line(line)
            if chunk is not None:
                self.merge(chunk, line.rstrip("\r"))
                chunks.append(chunk)
            if self.done:
                self._buffer = ""
                break
        return chunks

    def finish(self) -> List[dict]:
        """Flush a trailing line without a newline at end of stream."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        chunk = self._parse_line(line)
        if chunk is None:
            return []
        self.merge(chunk, line.rstrip("\r"))
        return [chunk]

    def _parse_line(self, line: str) -> Optional[dict]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return None
        if not payload:
            return None
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError as e:
            raise StreamParseError(f"Malformed stream chunk: {e}", line=line) from e
        if not isinstance(chunk, dict):
            raise StreamParseError("Stream chunk is not a JSON object", line=line)
        return chunk

    def merge(self, chunk: dict, line: Optional[str] = None) -> None:
        """Merge one parsed chunk into the accumulated state.

        The whole chunk is checked before anything is merged, so a chunk
        of the wrong shape leaves the accumulated state as it was.

        Raises:
            StreamParseError: If a field has the wrong type.
        """
        _check_chunk(chunk, line)

        violations = chunk.get("compliance_violations")
        if violations is not None:
            self.violations = list(violations)

        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}

            if delta.get("content") is not None:
                self.content = (self.content or "") + delta["content"]

            if delta.get("reasoning") is not None:
                self.reasoning = (self.reasoning or "") + delta["reasoning"]

            for tc_delta in delta.get("tool_calls") or []:
                self._merge_tool_call(tc_delta)

            if delta.get("turns") is not None:
                self.turns = [str(turn) for turn in delta["turns"]]

            if delta.get("next") is not None:
                self.has_next = bool(delta["next"])

            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]

    def _merge_tool_call(self, tc_delta: dict) -> None:
        index = tc_delta.get("index")
        if index is None:
            index = len(self.tool_calls)
        record = self.tool_calls.setdefault(index, ToolCall())

        if tc_delta.get("id"):
            record.id = tc_delta["id"]
        if tc_delta.get("type"):
            record.type = tc_delta["type"]

        function = tc_delta.get("function") or {}
        if function.get("name"):
            record.function.name = function["name"]
        if function.get("arguments"):
            record.function.arguments += function["arguments"]

    def result(self) -> AccumulatedResponse:
        content = self.content
        if self.finish_reason == "tool_calls" and not content:
            content = None
        return AccumulatedResponse(
            content=content,
            tool_calls=[self.tool_calls[i] for i in sorted(self.tool_calls)],
            turns=self.turns,
            has_next=self.has_next,
            violations=list(self.violations),
            reasoning=self.reasoning,
            finish_reason=self.finish_reason,
        )


ResponseHandler = Callable[[ChatResponse], Awaitable[Any]]


class StreamingHandler:
    """Consumes a byte stream and hands the finished response on.

    Parsed chunks are yielded as they arrive so callers can render
    progress. When the stream ends (sentinel or exhaustion) the
    accumulated response is passed to on_complete. A malformed fragment
    emits an error event and propagates; nothing is delivered for that
    stream.
    """

    def __init__(
        self,
        on_complete: ResponseHandler,
        emit: Optional[EventEmitter] = None,
    ):
        self._on_complete = on_complete
        self._emitter = emit

    async def process_stream(self, source: AsyncIterable[bytes | str]) -> AsyncIterator[dict]:
        accumulator = StreamingChunkAccumulator()
        start_time = time.time()

        try:
            async for fragment in source:
                for chunk in accumulator.feed(fragment):
                    self._emit_progress(chunk)
                    yield chunk
                if accumulator.done:
                    break
            for chunk in accumulator.finish():
                self._emit_progress(chunk)
                yield chunk
        except StreamParseError as e:
            logger.error(f"Stream parse error: {e}")
            self._emit(TurnEvent.MESSAGE_ERROR, {"error": str(e), "line": e.line})
            raise

        result = accumulator.result()
        logger.latency(
            "stream",
            (time.time() - start_time) * 1000,
            f"Stream complete ({len(result.content or '')} chars, {len(result.tool_calls)} tool call(s))",
        )
        if result.content_kind is not ContentKind.TEXT and not result.tool_calls:
            logger.warning(f"Stream ended with {result.content_kind.value} content and no tool calls")
        await self._on_complete(result.to_chat_response())

    def _emit_progress(self, chunk: dict) -> None:
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                self._emit(TurnEvent.MESSAGE_TOKENS, {"content": delta["content"]})
        if chunk.get("compliance_violations"):
            self._emit(TurnEvent.MESSAGE_ERROR, {"violations": list(chunk["compliance_violations"])})

    def _emit(self, event: TurnEvent, payload: dict) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter(event.value, payload)
        except Exception:
            logger.exception(f"Event handler failed for {event.value}")
