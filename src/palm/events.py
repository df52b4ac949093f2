"""Normalized streaming events emitted during agent execution.

Every event maps to exactly one wire frame (see :mod:`palm.sse`).  Field
names are snake_case in Python and camelCase on the wire; the ``type``
field is the wire discriminator.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

DONE_SENTINEL = "[DONE]"


class StreamEvent(BaseModel):
    """Base for all streaming events."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Start(StreamEvent):
    """A provider turn started producing output."""

    type: Literal["start"] = "start"
    message_id: str | None = None


class TextStart(StreamEvent):
    type: Literal["text-start"] = "text-start"
    id: str


class TextDelta(StreamEvent):
    type: Literal["text-delta"] = "text-delta"
    id: str
    delta: str


class TextEnd(StreamEvent):
    type: Literal["text-end"] = "text-end"
    id: str


class ToolInputStart(StreamEvent):
    type: Literal["tool-input-start"] = "tool-input-start"
    tool_call_id: str
    tool_name: str


class ToolInputDelta(StreamEvent):
    type: Literal["tool-input-delta"] = "tool-input-delta"
    tool_call_id: str
    input_text_delta: str


class ToolInputAvailable(StreamEvent):
    """Fully resolved tool input.

    ``input`` is the parsed JSON arguments, or the raw argument text when
    it could not be parsed.
    """

    type: Literal["tool-input-available"] = "tool-input-available"
    tool_call_id: str
    tool_name: str
    input: Any = None


class ToolOutputAvailable(StreamEvent):
    """Result of one tool call: ``{"result": ...}`` or ``{"error": ...}``."""

    type: Literal["tool-output-available"] = "tool-output-available"
    tool_call_id: str
    output: Any = None

    @property
    def is_error(self) -> bool:
        return isinstance(self.output, dict) and "error" in self.output


class Finish(StreamEvent):
    type: Literal["finish"] = "finish"


class Error(StreamEvent):
    type: Literal["error"] = "error"
    error_text: str


class Done(StreamEvent):
    """End-of-stream sentinel.  Encoded as a literal, never as JSON."""

    type: Literal["[DONE]"] = DONE_SENTINEL


StructuredEvent = Annotated[
    Union[
        Start,
        TextStart,
        TextDelta,
        TextEnd,
        ToolInputStart,
        ToolInputDelta,
        ToolInputAvailable,
        ToolOutputAvailable,
        Finish,
        Error,
    ],
    Field(discriminator="type"),
]

structured_event_adapter: TypeAdapter[StructuredEvent] = TypeAdapter(StructuredEvent)
