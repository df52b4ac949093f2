"""Streaming primitives for provider responses.

Providers yield :class:`StreamChunk` objects.  The
:class:`ChunkAccumulator` turns the chunks of one model turn into
normalized events and reassembles the final assistant message, including
tool calls whose arguments arrive in fragments across many chunks.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from palm.events import (
    Finish,
    Start,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInputAvailable,
    ToolInputDelta,
    ToolInputStart,
)
from palm.message import FunctionInvocation, Message, MessageRole, ToolCall

logger = logging.getLogger(__name__)


def generate_id() -> str:
    return secrets.token_hex(8)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    type: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None

    @classmethod
    def from_message(cls, message: Message) -> StreamChunk:
        """Represent a complete (non-streamed) response as a single chunk."""
        fragments = [
            ToolCallFragment(
                index=i,
                call_id=tc.id,
                type=tc.type,
                name=tc.function.name,
                arguments_delta=tc.function.arguments,
            )
            for i, tc in enumerate(message.tool_calls or [])
        ]
        return cls(
            content_delta=message.content,
            tool_call_fragments=fragments or None,
            finish_reason="tool_calls" if fragments else "stop",
        )


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_provider_chunk(payload: dict[str, Any]) -> StreamChunk | None:
    """Parse an OpenAI-compatible ``chat.completion.chunk`` payload.

    Only the first choice is considered.  Returns ``None`` when the
    payload carries no usable choice (e.g. a trailing usage-only chunk).
    Parts with an unexpected shape are dropped rather than raising.
    """
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        logger.debug(f"Skipping malformed choice: {choice!r}")
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}

    fragments = []
    tool_calls = delta.get("tool_calls")
    for position, tc in enumerate(tool_calls if isinstance(tool_calls, list) else []):
        if not isinstance(tc, dict):
            logger.debug(f"Skipping malformed tool call fragment: {tc!r}")
            continue
        function = tc.get("function")
        if not isinstance(function, dict):
            function = {}
        index = tc.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            index = position
        fragments.append(ToolCallFragment(
            index=index,
            call_id=_str_or_none(tc.get("id")),
            type=_str_or_none(tc.get("type")),
            name=_str_or_none(function.get("name")),
            arguments_delta=_str_or_none(function.get("arguments")),
        ))

    return StreamChunk(
        content_delta=_str_or_none(delta.get("content")),
        tool_call_fragments=fragments or None,
        finish_reason=_str_or_none(choice.get("finish_reason")),
    )


def _parse_line(line: str) -> StreamChunk | None:
    data = line[len("data:"):].strip()
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed provider frame: {data!r}")
        return None
    if not isinstance(payload, dict):
        return None
    return parse_provider_chunk(payload)


async def iter_provider_chunks(
    byte_stream: AsyncIterable[bytes],
) -> AsyncIterator[StreamChunk]:
    """Decode a raw provider SSE body into :class:`StreamChunk` objects.

    Lines are reassembled regardless of how the transport splits the
    bytes.  Only ``data:`` lines are considered, ``[DONE]`` ends the
    stream, and frames that are not valid JSON are skipped.
    """
    buffer = b""
    async for data in byte_stream:
        buffer += data
        while b"\n" in buffer:
            raw, buffer = buffer.split(b"\n", 1)
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if not line.startswith("data:"):
                continue
            if line[len("data:"):].strip() == "[DONE]":
                return
            chunk = _parse_line(line)
            if chunk is not None:
                yield chunk

    line = buffer.decode("utf-8", errors="replace").strip()
    if line.startswith("data:") and line[len("data:"):].strip() != "[DONE]":
        chunk = _parse_line(line)
        if chunk is not None:
            yield chunk


@dataclass
class AccumulatedToolCall:
    """A tool call under construction, keyed by its positional index."""

    index: int
    id: str = ""
    type: str = ""
    name: str = ""
    arguments: str = ""
    announced: bool = False
    held_deltas: list[str] = field(default_factory=list)


def resolve_input(arguments: str) -> Any:
    """Parse tool arguments, falling back to the raw text."""
    if not arguments.strip():
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse tool input as JSON ({e}): {arguments!r}")
        return arguments


class ChunkAccumulator:
    """Converts the chunks of a single model turn into normalized events.

    Tool calls are keyed by the provider's positional index rather than by
    id, because some providers send the id after the first fragments of a
    call.  Indices are assumed stable for the whole turn.

    ``feed()`` and ``finish()`` return the events produced by each step.
    Once the turn has finished, ``message()`` returns the assistant
    message with the concatenated text and the tool calls in index order.

    Args:
        message_id: Identifier sent with the ``start`` event.
        text_id: Identifier of the text block.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        message_id: str | None = None,
        text_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.message_id = message_id or generate_id()
        self.text_id = text_id or generate_id()
        self.logger = logger or logging.getLogger(__name__)
        self.chunk_count = 0
        self._started = False
        self._finished = False
        self._text_started = False
        self._text_parts: list[str] = []
        self._pending: dict[int, AccumulatedToolCall] = {}
        self._message: Message | None = None

    @property
    def finished(self) -> bool:
        return self._finished

    def _start(self, events: list[StreamEvent]) -> None:
        if not self._started:
            self._started = True
            events.append(Start(message_id=self.message_id))

    def feed(self, chunk: StreamChunk) -> list[StreamEvent]:
        if self._finished:
            self.logger.debug("Ignoring chunk received after finish")
            return []
        self.chunk_count += 1
        events: list[StreamEvent] = []
        self._start(events)

        if chunk.content_delta:
            if not self._text_started:
                self._text_started = True
                events.append(TextStart(id=self.text_id))
            events.append(TextDelta(id=self.text_id, delta=chunk.content_delta))
            self._text_parts.append(chunk.content_delta)

        for fragment in chunk.tool_call_fragments or []:
            events.extend(self._feed_fragment(fragment))

        if chunk.finish_reason is not None:
            events.extend(self.finish())
        return events

    def _announce(self, tc: AccumulatedToolCall) -> list[StreamEvent]:
        tc.announced = True
        events: list[StreamEvent] = [
            ToolInputStart(tool_call_id=tc.id, tool_name=tc.name),
        ]
        events.extend(
            ToolInputDelta(tool_call_id=tc.id, input_text_delta=d)
            for d in tc.held_deltas
        )
        tc.held_deltas.clear()
        return events

    def _feed_fragment(self, fragment: ToolCallFragment) -> list[StreamEvent]:
        tc = self._pending.get(fragment.index)
        if tc is None:
            tc = AccumulatedToolCall(index=fragment.index)
            self._pending[fragment.index] = tc

        if fragment.call_id and not tc.id:
            tc.id = fragment.call_id
        if fragment.type and not tc.type:
            tc.type = fragment.type
        if fragment.name and not tc.name:
            tc.name = fragment.name

        events: list[StreamEvent] = []
        if not tc.announced and tc.id and tc.name:
            events.extend(self._announce(tc))

        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta
            if tc.announced:
                events.append(ToolInputDelta(
                    tool_call_id=tc.id,
                    input_text_delta=fragment.arguments_delta,
                ))
            else:
                tc.held_deltas.append(fragment.arguments_delta)
        return events

    def finish(self) -> list[StreamEvent]:
        """Close the turn.  Safe to call more than once."""
        if self._finished:
            return []
        self._finished = True
        events: list[StreamEvent] = []
        self._start(events)

        if self._text_started:
            events.append(TextEnd(id=self.text_id))

        tool_calls = []
        for index in sorted(self._pending):
            tc = self._pending[index]
            if not tc.id:
                tc.id = f"call_{generate_id()}"
                self.logger.warning(
                    f"Tool call at index {index} has no id, using {tc.id}"
                )
            if not tc.announced:
                events.extend(self._announce(tc))
            events.append(ToolInputAvailable(
                tool_call_id=tc.id,
                tool_name=tc.name,
                input=resolve_input(tc.arguments),
            ))
            tool_calls.append(ToolCall(
                id=tc.id,
                type=tc.type or "function",
                function=FunctionInvocation(name=tc.name, arguments=tc.arguments),
            ))
        events.append(Finish())

        content = "".join(self._text_parts)
        self._message = Message(
            role=MessageRole.ASSISTANT,
            content=content,
            tool_calls=tool_calls or None,
        )
        self._pending.clear()
        self.logger.info(
            f"Stream completed: chunks={self.chunk_count}, "
            f"content_length={len(content)}, tool_calls={len(tool_calls)}"
        )
        return events

    def message(self) -> Message:
        """Return the finalized assistant message."""
        if self._message is None:
            raise RuntimeError("message() called before the turn finished")
        return self._message


async def accumulate(
    chunks: AsyncIterable[StreamChunk],
    accumulator: ChunkAccumulator,
) -> AsyncIterator[StreamEvent]:
    """Drive *accumulator* over *chunks*, yielding every event of the turn.

    The turn is finished when the chunks run out even if the provider
    never sent a finish reason.
    """
    async for chunk in chunks:
        for event in accumulator.feed(chunk):
            yield event
    for event in accumulator.finish():
        yield event
