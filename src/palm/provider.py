import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from palm.errors import ProviderError
from palm.message import Message, MessageRole
from palm.streaming import StreamChunk, iter_provider_chunks, parse_provider_chunk

logger = logging.getLogger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
MISTRAL_DEFAULT_MODEL = "mistral-small-latest"


class ModelProvider(ABC):
    """A model vendor.

    ``messages`` are already dumped to OpenAI-compatible dicts and
    ``tools`` are provider tool schemas (or ``None`` when the agent has
    no tools).  Transport failures and non-success statuses must be
    raised as :class:`~palm.errors.ProviderError`, never yielded as
    stream content.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> Message:
        """Return the complete assistant message for one turn."""

    async def stream_complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield the turn as streaming chunks.

        The default implementation wraps :meth:`complete` into a single
        chunk for providers without streaming support.
        """
        message = await self.complete(messages, tools)
        yield StreamChunk.from_message(message)


def _message_from_openai(message) -> Message:
    tool_calls = None
    if message.tool_calls:
        tool_calls = [
            {
                "id": tc.id,
                "type": tc.type or "function",
                "function": {
                    "name": tc.function.name,
                    "arguments": tc.function.arguments or "",
                },
            }
            for tc in message.tool_calls
        ]
    return Message(
        role=MessageRole.ASSISTANT,
        content=message.content or "",
        tool_calls=tool_calls,
    )


class OpenAIProvider(ModelProvider):
    """Provider backed by the official ``openai`` client.

    Works with any OpenAI-compatible endpoint through ``base_url``.

    Args:
        model: Model name.
        api_key: API key, defaults to ``OPENAI_API_KEY``.
        base_url: Optional endpoint override.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            timeout=600.0,
        )

    def _kwargs(self, messages: list[dict], tools: list[dict] | None) -> dict:
        kwargs = {"model": self.model, "messages": messages}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> Message:
        try:
            response = await self.client.chat.completions.create(
                **self._kwargs(messages, tools),
            )
        except openai.APIStatusError as e:
            raise ProviderError(
                f"api error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(f"request failed: {e}") from e
        if not response.choices:
            raise ProviderError("no choices in response")
        return _message_from_openai(response.choices[0].message)

    async def stream_complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        logger.info(f"Sending streaming request, model={self.model}")
        try:
            stream = await self.client.chat.completions.create(
                **self._kwargs(messages, tools), stream=True,
            )
            async for chunk in stream:
                parsed = parse_provider_chunk(chunk.model_dump())
                if parsed is not None:
                    yield parsed
        except openai.APIStatusError as e:
            raise ProviderError(
                f"api error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(f"stream failed: {e}") from e


class MistralProvider(ModelProvider):
    """Mistral chat completions over a raw ``httpx`` stream.

    Args:
        model: Model name.
        api_key: API key, defaults to ``MISTRAL_API_KEY``.
        base_url: API root, defaults to the public Mistral endpoint.
        client: Optional preconfigured ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        model: str = MISTRAL_DEFAULT_MODEL,
        api_key: str | None = None,
        base_url: str = MISTRAL_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("MISTRAL_API_KEY", "")
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(600.0, connect=10.0))

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _body(self, messages: list[dict], tools: list[dict] | None, stream: bool) -> dict:
        body = {"model": self.model, "messages": messages}
        if tools:
            body["tools"] = tools
        if stream:
            body["stream"] = True
        return body

    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> Message:
        try:
            response = await self.client.post(
                self.url,
                headers=self._headers(),
                json=self._body(messages, tools, stream=False),
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"do request: {e}") from e
        if response.status_code != httpx.codes.OK:
            raise ProviderError(
                f"api error {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            choices = response.json().get("choices") or []
        except ValueError as e:
            raise ProviderError(f"decode response: {e}") from e
        if not choices:
            raise ProviderError("no choices in response")
        message = choices[0].get("message") or {}
        tool_calls = message.get("tool_calls") or None
        if tool_calls:
            for tc in tool_calls:
                tc.setdefault("type", "function")
        return Message(
            role=MessageRole.ASSISTANT,
            content=message.get("content") or "",
            tool_calls=tool_calls,
        )

    async def stream_complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        logger.info(f"Sending request to mistral, model={self.model}")
        try:
            async with self.client.stream(
                "POST",
                self.url,
                headers=self._headers(),
                json=self._body(messages, tools, stream=True),
            ) as response:
                logger.info(f"Received response from mistral, status={response.status_code}")
                if response.status_code != httpx.codes.OK:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Mistral api error, status={response.status_code}, body={body}")
                    raise ProviderError(
                        f"api error {response.status_code}: {body}",
                        status_code=response.status_code,
                        body=body,
                    )
                async for chunk in iter_provider_chunks(response.aiter_bytes()):
                    yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Mistral request failed: {e}")
            raise ProviderError(f"scan stream: {e}") from e
