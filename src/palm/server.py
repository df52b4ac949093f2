"""HTTP surface: ``POST /chat`` streams agent events as Server-Sent Events."""

import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from palm.agent import Agent
from palm.provider import ModelProvider
from palm.runner import Runner
from palm.sse import sse_generator
from palm.tools import Tool

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "x-vercel-ai-ui-message-stream": "v1",
}


class ChatRequest(BaseModel):
    message: str


def create_app(
    provider: ModelProvider,
    tools: list[Tool] | None = None,
    max_turns: int | None = 50,
) -> FastAPI:
    """Build the application.

    Each request gets its own Runner and a fresh session, so requests
    never share conversation history.
    """
    app = FastAPI(title="palm")

    @app.post("/chat")
    async def chat(request: ChatRequest) -> StreamingResponse:
        logger.info(f"Handling chat request: {request.message}")
        runner = Runner(Agent(provider, tools=tools), max_turns=max_turns)
        return StreamingResponse(
            sse_generator(runner.iter(request.message)),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "OK"

    return app
