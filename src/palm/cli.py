"""Command line entry point.

Usage:
    palm chat --provider mistral
    echo "What's the weather in Paris?" | palm chat
    palm serve --addr :4096
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.text import Text

from palm.agent import Agent
from palm.config import Settings, configure_logging
from palm.console import ConsoleHandler
from palm.consumer import StreamConsumer
from palm.errors import PalmError
from palm.events import Done
from palm.provider import MistralProvider, ModelProvider, OpenAIProvider
from palm.runner import Runner
from palm.sse import Emitter
from palm.tools import tool

logger = logging.getLogger(__name__)


@tool(
    name="get_weather",
    description="Get the weather in a location",
    parameters={
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "The city name"},
        },
        "required": ["location"],
    },
)
def get_weather(location: str):
    logger.debug(f"Executing weather tool, location={location}")
    return f"The weather in {location} is sunny, 22°C"


def make_provider(args: argparse.Namespace, settings: Settings) -> ModelProvider:
    if args.provider == "openai":
        return OpenAIProvider(model=args.model or "gpt-4o-mini", base_url=args.url)
    return MistralProvider(
        model=args.model or settings.model,
        api_key=settings.api_key,
        base_url=args.url or settings.base_url,
    )


async def chat_once(runner: Runner, consumer: StreamConsumer, message: str) -> None:
    """Run one input through the wire format into the console consumer."""
    await Emitter(consumer).pipe(runner.iter(message))
    consumer.flush()


async def run_chat(runner: Runner, console: Console) -> int:
    consumer = StreamConsumer(ConsoleHandler(console))
    interactive = sys.stdin.isatty()
    prompt = Text("❯ ", style="bold bright_blue")

    while True:
        if interactive:
            try:
                line = console.input(prompt)
            except EOFError:
                break
        else:
            line = sys.stdin.readline()
        message = line.strip()
        if interactive and not message:
            continue
        if message in ("exit", "quit"):
            break
        if message:
            try:
                await chat_once(runner, consumer, message)
            except PalmError as e:
                consumer.dispatch(Done())
                console.print(Text(f"Error: {e}", style="bold red"))
                return 1
        if not interactive:
            break
    return 0


def serve(settings: Settings, provider: ModelProvider, addr: str) -> int:
    import uvicorn

    from palm.server import create_app

    settings.http_addr = addr
    host, port = settings.host_port
    app = create_app(provider, tools=[get_weather], max_turns=settings.max_turns)
    logger.info(f"HTTP server listening for requests, addr={addr}")
    try:
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    except OSError as e:
        logger.error(f"Server failed to start: {e}")
        print(f"Could not listen on {addr}: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="palm", description="Tool-calling agent with streamed output")
    parser.add_argument("--provider", choices=["mistral", "openai"], default="mistral")
    parser.add_argument("--model", default=None)
    parser.add_argument("--url", default=None, help="Override the provider base URL")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-file", default=None)
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("chat", help="Chat in the terminal (default)")
    serve_parser = sub.add_parser("serve", help="Serve the agent over HTTP")
    serve_parser.add_argument("--addr", default=None, help="host:port or :port")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if args.log_file or args.log_level or settings.log_level != "WARNING":
        configure_logging(settings.log_level, args.log_file)
    else:
        logging.disable(logging.WARNING)

    provider = make_provider(args, settings)
    if args.command == "serve":
        return serve(settings, provider, args.addr or settings.http_addr)

    agent = Agent(provider, tools=[get_weather])
    runner = Runner(agent, max_turns=settings.max_turns)
    return asyncio.run(run_chat(runner, Console()))


if __name__ == "__main__":
    sys.exit(main())
