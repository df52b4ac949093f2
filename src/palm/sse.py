"""Server-Sent Events wire format for streaming events.

One event is one frame: ``data: <json>\\n\\n``.  The end of a stream is
marked by the sentinel frame ``data: [DONE]\\n\\n``, which is recognised
without parsing its body.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from pydantic import ValidationError

from palm.errors import PalmError
from palm.events import (
    DONE_SENTINEL,
    Done,
    Error,
    StreamEvent,
    structured_event_adapter,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
FRAME_DELIMITER = "\n\n"
DONE_FRAME = f"{DATA_PREFIX}{DONE_SENTINEL}{FRAME_DELIMITER}"


def encode_event(event: StreamEvent) -> str:
    """Encode one event into a self-delimited frame."""
    if isinstance(event, Done):
        return DONE_FRAME
    data = event.model_dump(mode="json", by_alias=True)
    # Optional top-level fields are omitted rather than sent as null.
    data = {k: v for k, v in data.items() if v is not None}
    body = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX}{body}{FRAME_DELIMITER}"


def decode_body(body: str) -> StreamEvent | None:
    """Decode a frame body (the text after ``data: ``).

    Returns ``None`` for anything that is not a well-formed event.
    """
    body = body.strip()
    if body == DONE_SENTINEL:
        return Done()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.debug(f"Skipping unparseable frame body: {body!r}")
        return None
    try:
        return structured_event_adapter.validate_python(payload)
    except ValidationError:
        logger.debug(f"Skipping unknown or invalid event: {body!r}")
        return None


def decode_frame(frame: str) -> StreamEvent | None:
    """Decode one frame produced by :func:`encode_event`.

    The trailing delimiter is optional.  Frames that lack the ``data:``
    marker or carry a malformed body decode to ``None`` so callers can
    skip them and keep reading.
    """
    frame = frame.strip("\r\n")
    if not frame.startswith(DATA_PREFIX):
        return None
    return decode_body(frame[len(DATA_PREFIX):])


class Emitter:
    """Writes encoded events to a sink.

    The sink needs a ``write`` method accepting ``str``; it may be a
    coroutine function.  If the sink also has ``flush`` it is called after
    every frame so each event reaches the consumer immediately.  Errors
    raised by the sink propagate to the caller.

    Args:
        sink: Destination for frames (file, response writer, buffer...).
    """

    def __init__(self, sink: Any):
        self.sink = sink

    async def _write(self, frame: str) -> None:
        result = self.sink.write(frame)
        if inspect.isawaitable(result):
            await result
        flush = getattr(self.sink, "flush", None)
        if flush is not None:
            result = flush()
            if inspect.isawaitable(result):
                await result

    async def emit(self, event: StreamEvent) -> None:
        await self._write(encode_event(event))

    async def done(self) -> None:
        await self._write(DONE_FRAME)

    async def pipe(self, events: AsyncIterator[StreamEvent]) -> None:
        """Emit every event of *events*, then the end-of-stream sentinel."""
        async for event in events:
            await self.emit(event)
        await self.done()


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings.

    A :class:`~palm.errors.PalmError` raised while iterating is reported
    as an ``error`` frame.  The stream always ends with the ``[DONE]``
    sentinel.
    """
    try:
        async for event in event_stream:
            yield encode_event(event)
    except PalmError as e:
        logger.error(f"Agent run failed: {e}")
        yield encode_event(Error(error_text=str(e)))
    yield DONE_FRAME
