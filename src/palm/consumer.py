"""Client side of the event stream.

:class:`StreamConsumer` rebuilds frames from transport chunks that do not
line up with frame boundaries and hands each decoded event to an
:class:`EventHandler`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable

from palm.events import (
    Done,
    Error,
    Finish,
    Start,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInputAvailable,
    ToolInputDelta,
    ToolInputStart,
    ToolOutputAvailable,
)
from palm.sse import DATA_PREFIX, decode_body, decode_frame

logger = logging.getLogger(__name__)

_DELIMITER = b"\n\n"


class EventHandler:
    """Per-event callbacks.  Subclass and override what you need.

    Handlers may receive events for a text block that was never opened or
    for a tool call id they have not seen; they should ignore those.
    """

    def on_start(self, event: Start) -> None: ...

    def on_text_start(self, event: TextStart) -> None: ...

    def on_text_delta(self, event: TextDelta) -> None: ...

    def on_text_end(self, event: TextEnd) -> None: ...

    def on_tool_input_start(self, event: ToolInputStart) -> None: ...

    def on_tool_input_delta(self, event: ToolInputDelta) -> None: ...

    def on_tool_input_available(self, event: ToolInputAvailable) -> None: ...

    def on_tool_output_available(self, event: ToolOutputAvailable) -> None: ...

    def on_finish(self, event: Finish) -> None: ...

    def on_error(self, event: Error) -> None: ...

    def on_done(self, event: Done) -> None: ...


_DISPATCH = {
    Start: EventHandler.on_start,
    TextStart: EventHandler.on_text_start,
    TextDelta: EventHandler.on_text_delta,
    TextEnd: EventHandler.on_text_end,
    ToolInputStart: EventHandler.on_tool_input_start,
    ToolInputDelta: EventHandler.on_tool_input_delta,
    ToolInputAvailable: EventHandler.on_tool_input_available,
    ToolOutputAvailable: EventHandler.on_tool_output_available,
    Finish: EventHandler.on_finish,
    Error: EventHandler.on_error,
    Done: EventHandler.on_done,
}


class StreamConsumer:
    """Splits a byte stream into frames and dispatches decoded events.

    Args:
        handler: Receives one callback per decoded event.
    """

    def __init__(self, handler: EventHandler):
        self.handler = handler
        self.events = 0
        self._buffer = b""

    def dispatch(self, event: StreamEvent) -> None:
        method = _DISPATCH.get(type(event))
        if method is None:
            return
        self.events += 1
        getattr(self.handler, method.__name__)(event)

    def feed(self, data: bytes | str) -> None:
        """Buffer *data* and dispatch every complete frame it finishes."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer += data
        while True:
            idx = self._buffer.find(_DELIMITER)
            if idx == -1:
                break
            frame = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(_DELIMITER):]
            event = decode_frame(frame.decode("utf-8", errors="replace"))
            if event is not None:
                self.dispatch(event)

    def write(self, data: bytes | str) -> int:
        """File-like alias of :meth:`feed` so the consumer can be an Emitter sink."""
        self.feed(data)
        return len(data)

    def flush(self) -> None:
        """Process leftover data that was never terminated by a delimiter."""
        if not self._buffer:
            return
        leftover = self._buffer.decode("utf-8", errors="replace")
        self._buffer = b""
        for line in leftover.split("\n"):
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            event = decode_body(line[len(DATA_PREFIX):])
            if event is not None:
                self.dispatch(event)

    async def consume(self, byte_stream: AsyncIterable[bytes | str]) -> int:
        """Feed an entire stream, flush, and return the number of events."""
        async for data in byte_stream:
            self.feed(data)
        self.flush()
        return self.events
