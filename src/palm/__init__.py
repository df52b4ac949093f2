"""palm: a tool-calling agent loop that streams provider-independent events."""

from palm.agent import Agent
from palm.instrumentation import instrument, uninstrument
from palm.message import Message, MessageRole
from palm.runner import Runner, RunResult
from palm.session import Session
from palm.tools import Tool, tool

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "Message",
    "MessageRole",
    "Runner",
    "RunResult",
    "Session",
    "Tool",
    "instrument",
    "tool",
    "uninstrument",
]
