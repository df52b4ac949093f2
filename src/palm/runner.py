import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from palm.agent import Agent
from palm.errors import (
    LLMRecoverableError,
    ProviderError,
    ToolError,
    ToolExecutionError,
    ToolInputError,
    ToolNotFoundError,
)
from palm.events import Error, StreamEvent, ToolOutputAvailable
from palm.instrumentation import agent_span, completion_span, record_error, tool_span
from palm.message import Message, MessageRole, ToolCall, tool_result_message, user_message
from palm.session import Session
from palm.streaming import ChunkAccumulator, StreamChunk, accumulate

MAX_TURNS_MESSAGE = "Maximum turns reached. Please try again."


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation.

    Args:
        last_message: Final message appended to the transcript.
        messages: Every message appended during the run, user input first.
        turns: Number of provider round trips.
    """

    last_message: Message
    messages: list[Message]
    turns: int


@dataclass
class _ToolOutcome:
    """Result of executing a single tool call."""

    output: str
    is_error: bool

    @property
    def content(self) -> str:
        return f"error: {self.output}" if self.is_error else self.output

    @property
    def payload(self) -> dict:
        return {"error": self.output} if self.is_error else {"result": self.output}

    @classmethod
    def failure(cls, error: ToolError) -> "_ToolOutcome":
        return cls(output=str(error), is_error=True)


class Runner:
    """Executes an agent's tool-calling loop for one conversation.

    The Runner owns the session transcript.  For each external input it
    appends the user message, then alternates provider turns and tool
    execution until the model answers without tool calls.  Tool calls
    run sequentially in the order the model listed them; each result is
    appended before the next call is resolved.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        agent: Provider and tools to use.
        session: Conversation history, a fresh one by default.
        max_turns: Maximum provider round trips per input, ``None`` for
            no limit.
        stream: Use the provider's streaming API.  When ``False`` each
            complete response is replayed through the same accumulator.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        agent: Agent,
        session: Session | None = None,
        max_turns: int | None = 50,
        stream: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.agent = agent
        self.session = session or Session()
        self.max_turns = max_turns
        self.stream = stream
        self.logger = logger or logging.getLogger(__name__)
        self.last_result: RunResult | None = None
        self._running = False

    async def run(self, message: str) -> RunResult:
        """Run the agent loop until a final response."""
        self.last_result = None
        async for _ in self.iter(message):
            pass
        if self.last_result is None:
            raise RuntimeError("iter() ended without a result")
        return self.last_result

    def _messages(self) -> list[dict]:
        messages = [m.model_dump() for m in self.session.transcript]
        if self.agent.system_prompt:
            messages.insert(0, {"role": "system", "content": self.agent.system_prompt})
        return messages

    async def _complete_as_chunks(self, messages, tools) -> AsyncIterator[StreamChunk]:
        message = await self.agent.provider.complete(messages, tools)
        yield StreamChunk.from_message(message)

    def _provider_chunks(self) -> AsyncIterator[StreamChunk]:
        messages = self._messages()
        tools = self.agent.tool_schemas()
        if self.stream:
            return self.agent.provider.stream_complete(messages, tools)
        return self._complete_as_chunks(messages, tools)

    def _finish(self, start: int, turns: int) -> None:
        transcript = self.session.transcript
        self.last_result = RunResult(
            last_message=transcript[-1],
            messages=transcript[start:],
            turns=turns,
        )

    async def iter(self, message: str) -> AsyncIterator[StreamEvent]:
        """Run the agent loop, yielding events as execution proceeds.

        Raises:
            ProviderError: If a provider call fails.  Messages appended
                before the failure stay in the transcript.
            RuntimeError: If the Runner is already handling an input.
        """
        if self._running:
            raise RuntimeError("Runner is already handling an input")
        self._running = True
        try:
            start = len(self.session.transcript)
            self.session.append(user_message(message))
            provider_name = type(self.agent.provider).__name__

            async with agent_span(self.agent.name, self.session.session_id) as span:
                turn = 0
                while self.max_turns is None or turn < self.max_turns:
                    turn += 1
                    acc = ChunkAccumulator(logger=self.logger)
                    async with completion_span(provider_name, turn) as llm_span:
                        try:
                            async for event in accumulate(self._provider_chunks(), acc):
                                yield event
                        except ProviderError as e:
                            self.logger.error(f"Provider call failed on turn {turn}: {e}")
                            record_error(llm_span, e)
                            record_error(span, e)
                            raise

                    assistant = acc.message()
                    self.session.append(assistant)
                    if not assistant.tool_calls:
                        self._finish(start, turn)
                        return

                    for tc in assistant.tool_calls:
                        outcome = await self._execute_one(tc)
                        self.session.append(tool_result_message(tc.id, outcome.content))
                        yield ToolOutputAvailable(
                            tool_call_id=tc.id, output=outcome.payload,
                        )

                self.logger.warning(f"Maximum turns ({self.max_turns}) reached")
                self.session.append(Message(
                    role=MessageRole.ASSISTANT, content=MAX_TURNS_MESSAGE,
                ))
                yield Error(error_text=f"maximum turns reached ({self.max_turns})")
                self._finish(start, turn)
        finally:
            self._running = False

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_one(self, tc: ToolCall) -> _ToolOutcome:
        name = tc.function.name
        tool_obj = self.agent.tool_registry.get(name)
        if tool_obj is None:
            self.logger.warning(f"Tool not found: {name}")
            return _ToolOutcome.failure(ToolNotFoundError(name))

        self.logger.info(f"Calling {name} with {tc.function.arguments}")
        async with tool_span(name, tc.id) as span:
            try:
                result = await tool_obj(tc.function.arguments)
            except ToolInputError as e:
                self.logger.warning(f"Invalid arguments for {name}: {e}")
                record_error(span, e)
                return _ToolOutcome.failure(
                    ToolInputError(f"invalid arguments for {name}: {e}")
                )
            except LLMRecoverableError as e:
                self.logger.info(f"Tool {name} requested retry: {e}")
                return _ToolOutcome(output=str(e), is_error=False)
            except Exception as e:
                self.logger.error(f"Tool {name} raised: {e}")
                record_error(span, e)
                return _ToolOutcome.failure(ToolExecutionError(str(e)))

        return _ToolOutcome(output=result.output_text, is_error=False)
