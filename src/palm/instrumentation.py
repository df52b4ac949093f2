"""OpenTelemetry spans around agent runs, provider turns and tool calls.

Tracing is off until ``palm.instrument()`` is called and needs
``opentelemetry-api`` (``pip install palm[otel]``).  While it is off the
span helpers yield ``None`` and ``record_error`` does nothing.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "palm") -> None:
    """Start emitting spans through the global TracerProvider.

    Configure the provider first::

        trace.set_tracer_provider(TracerProvider())
        palm.instrument()

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for tracing. "
            "Install it with: pip install palm[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    logger.info(f"Tracing enabled, tracer={tracer_name}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(name: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    kwargs = {"attributes": attributes}
    if client:
        from opentelemetry.trace import SpanKind

        kwargs["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(name, **kwargs) as span:
        yield span


def agent_span(agent_name: str, session_id: str):
    """Span covering one external input, i.e. a whole ``Runner.iter()``."""
    return _span(f"invoke_agent {agent_name}", {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.agent.name": agent_name,
        "gen_ai.conversation.id": session_id,
    })


def completion_span(provider: str, turn: int):
    """Client span covering one provider round trip."""
    return _span(f"chat {provider}", {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": provider,
        "palm.turn": turn,
    }, client=True)


def tool_span(tool_name: str, call_id: str):
    return _span(f"execute_tool {tool_name}", {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
    })


def record_error(span, exception: BaseException) -> None:
    """Mark *span* as failed.  A ``None`` span is ignored."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
