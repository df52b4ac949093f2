"""End-to-end: runner events through the wire format to a client handler."""

import io
import json

import httpx
import pytest
from rich.console import Console

from palm.agent import Agent
from palm.console import ConsoleHandler
from palm.consumer import EventHandler, StreamConsumer
from palm.errors import ProviderError
from palm.events import (
    Done,
    Error,
    Finish,
    Start,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInputAvailable,
    ToolInputDelta,
    ToolInputStart,
    ToolOutputAvailable,
)
from palm.provider import MistralProvider
from palm.runner import Runner
from palm.session import Session
from palm.sse import DONE_FRAME, Emitter, sse_generator

from tests.conftest import get_weather, text_chunks, tool_chunks


class RecordingHandler(EventHandler):
    def __init__(self):
        self.events = []

    def on_start(self, event):
        self.events.append(event)

    def on_text_start(self, event):
        self.events.append(event)

    def on_text_delta(self, event):
        self.events.append(event)

    def on_text_end(self, event):
        self.events.append(event)

    def on_tool_input_start(self, event):
        self.events.append(event)

    def on_tool_input_delta(self, event):
        self.events.append(event)

    def on_tool_input_available(self, event):
        self.events.append(event)

    def on_tool_output_available(self, event):
        self.events.append(event)

    def on_finish(self, event):
        self.events.append(event)

    def on_error(self, event):
        self.events.append(event)

    def on_done(self, event):
        self.events.append(event)


def _types(events):
    return [type(e) for e in events]


class TestEmitterToConsumer:
    @pytest.mark.asyncio
    async def test_tool_round_trip(self, make_agent, mock_provider):
        mock_provider.responses = [
            tool_chunks("get_weather", ['{"location"', ': "Paris"}'], call_id="call_w"),
            text_chunks("It is ", "sunny."),
        ]
        runner = Runner(make_agent(tools=[get_weather]))
        handler = RecordingHandler()
        consumer = StreamConsumer(handler)

        await Emitter(consumer).pipe(runner.iter("weather in Paris?"))

        assert _types(handler.events) == [
            Start, ToolInputStart, ToolInputDelta, ToolInputDelta,
            ToolInputAvailable, Finish, ToolOutputAvailable,
            Start, TextStart, TextDelta, TextDelta, TextEnd, Finish,
            Done,
        ]
        available = handler.events[4]
        assert available.tool_call_id == "call_w"
        assert available.input == {"location": "Paris"}
        assert handler.events[6].output == {"result": "sunny"}
        text = "".join(e.delta for e in handler.events if isinstance(e, TextDelta))
        assert text == "It is sunny."

    @pytest.mark.asyncio
    async def test_one_done_per_input(self, make_agent, mock_provider):
        mock_provider.responses = [
            tool_chunks("get_weather", ['{"location": "Oslo"}']),
            text_chunks("cold"),
        ]
        sink = io.StringIO()

        await Emitter(sink).pipe(Runner(make_agent(tools=[get_weather])).iter("Oslo?"))

        wire = sink.getvalue()
        assert wire.endswith(DONE_FRAME)
        assert wire.count(DONE_FRAME) == 1

    @pytest.mark.asyncio
    async def test_console_rendering(self, make_agent, mock_provider):
        mock_provider.responses = [
            tool_chunks("get_weather", ['{"location": "Paris"}']),
            text_chunks("Sunny in Paris."),
        ]
        console = Console(file=io.StringIO(), force_terminal=False, width=120)
        consumer = StreamConsumer(ConsoleHandler(console, show_spinner=False))

        await Emitter(consumer).pipe(Runner(make_agent(tools=[get_weather])).iter("Paris?"))

        out = console.file.getvalue()
        assert "Calling tool: get_weather" in out
        assert "✓ Result: sunny" in out
        assert "Sunny in Paris." in out


class TestSSEGenerator:
    @pytest.mark.asyncio
    async def test_provider_error_becomes_error_frame(self, make_agent, mock_provider):
        mock_provider.responses = [ProviderError("api error 503", status_code=503)]
        handler = RecordingHandler()
        consumer = StreamConsumer(handler)

        async for frame in sse_generator(Runner(make_agent()).iter("hi")):
            consumer.feed(frame)

        assert handler.events == [Error(error_text="api error 503"), Done()]


class TestMistralEndToEnd:
    @pytest.mark.asyncio
    async def test_streamed_tool_call(self):
        requests = []

        def frames(*payloads):
            body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
            return (body + "data: [DONE]\n\n").encode()

        responses = [
            frames(
                {"choices": [{"index": 0, "delta": {"tool_calls": [{
                    "index": 0, "function": {"name": "get_weather", "arguments": ""},
                }]}}]},
                {"choices": [{"index": 0, "delta": {"tool_calls": [{
                    "index": 0, "id": "abc123", "function": {"arguments": "{\"location\": \"Paris\"}"},
                }]}}]},
                {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]},
            ),
            frames(
                {"choices": [{"index": 0, "delta": {"content": "Sunny."}}]},
                {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
            ),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, content=responses[len(requests) - 1])

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = MistralProvider(api_key="k", client=client)
        session = Session()
        runner = Runner(Agent(provider, tools=[get_weather]), session=session)

        events = [e async for e in runner.iter("weather?")]

        start = next(e for e in events if isinstance(e, ToolInputStart))
        assert start.tool_call_id == "abc123"
        assert session.transcript[1].tool_calls[0].id == "abc123"
        assert session.transcript[2].tool_call_id == "abc123"
        assert session.transcript[-1].content == "Sunny."
        assert requests[1]["messages"][-1] == {
            "role": "tool", "content": "sunny", "tool_call_id": "abc123",
        }
        assert requests[0]["tools"][0]["function"]["name"] == "get_weather"
