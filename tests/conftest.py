import json

import pytest

from palm.agent import Agent
from palm.message import Message, MessageRole, ToolCall
from palm.provider import ModelProvider
from palm.streaming import StreamChunk, ToolCallFragment
from palm.tools import tool


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that returns pre-queued responses. No network calls.

    Each queued item is either a complete assistant ``Message``, a list of
    ``StreamChunk`` to stream, or an exception to raise.
    """

    def __init__(self):
        self.responses: list = []
        self.call_log: list[dict] = []

    def _next(self, messages, tools):
        self.call_log.append({"messages": messages, "tools": tools})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, messages, tools=None):
        item = self._next(messages, tools)
        if isinstance(item, list):
            raise AssertionError("streamed response queued for complete()")
        return item

    async def stream_complete(self, messages, tools=None):
        item = self._next(messages, tools)
        if isinstance(item, Message):
            yield StreamChunk.from_message(item)
            return
        for chunk in item:
            yield chunk


# ---------------------------------------------------------------------------
# Response builder helpers
# ---------------------------------------------------------------------------

def make_text_response(content: str) -> Message:
    """Fake provider response with text only (no tool calls)."""
    return Message(role=MessageRole.ASSISTANT, content=content)


def make_tool_call_response(
    name: str,
    args: dict | str,
    call_id: str = "call_1",
    content: str = "",
) -> Message:
    """Fake provider response containing a single tool call."""
    return make_multi_tool_call_response([(name, args, call_id)], content=content)


def make_multi_tool_call_response(
    calls: list[tuple[str, dict | str, str]],
    content: str = "",
) -> Message:
    """Fake provider response containing multiple tool calls.

    Each item in *calls* is ``(func_name, args, call_id)``; dict args are
    JSON encoded, strings are sent verbatim.
    """
    tool_calls = [
        ToolCall(
            id=call_id,
            function={
                "name": name,
                "arguments": args if isinstance(args, str) else json.dumps(args),
            },
        )
        for name, args, call_id in calls
    ]
    return Message(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)


def text_chunks(*deltas: str) -> list[StreamChunk]:
    """Stream *deltas* as separate chunks followed by a stop chunk."""
    chunks = [StreamChunk(content_delta=d) for d in deltas]
    chunks.append(StreamChunk(finish_reason="stop"))
    return chunks


def tool_chunks(name: str, arguments: list[str], call_id: str = "call_1", index: int = 0) -> list[StreamChunk]:
    """Stream a single tool call with its arguments split into pieces."""
    chunks = [StreamChunk(tool_call_fragments=[ToolCallFragment(
        index=index, call_id=call_id, type="function", name=name,
    )])]
    chunks.extend(
        StreamChunk(tool_call_fragments=[ToolCallFragment(index=index, arguments_delta=a)])
        for a in arguments
    )
    chunks.append(StreamChunk(finish_reason="tool_calls"))
    return chunks


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tool(
    parameters={
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    },
)
def echo(text: str):
    """Echo text back."""
    return text


@tool(
    name="get_weather",
    description="Get the weather in a location",
    parameters={
        "type": "object",
        "properties": {"location": {"type": "string", "description": "The city name"}},
        "required": ["location"],
    },
)
def get_weather(location: str):
    return "sunny"


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def make_agent(mock_provider):
    """Factory fixture to build agents with the mock provider."""
    def _make(tools=None, system_prompt=None, provider=None):
        return Agent(
            provider=provider or mock_provider,
            tools=tools or [],
            system_prompt=system_prompt,
        )
    return _make
