"""Terminal presentation of the event stream using ``rich``."""

from __future__ import annotations

import threading

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner as RichSpinner
from rich.text import Text

from palm.consumer import EventHandler
from palm.events import (
    Done,
    Error,
    Finish,
    Start,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInputStart,
    ToolOutputAvailable,
)


class Spinner:
    """A spinner drawn by a rich ``Live`` display.

    ``Live`` owns the refresh thread.  ``stop()`` returns only after the
    live display has been torn down, so the next write to the console
    never races with a late frame.  Both ``start()`` and ``stop()`` are
    idempotent.
    """

    def __init__(self, console: Console, refresh_per_second: float = 12.5):
        self.console = console
        self.refresh_per_second = refresh_per_second
        self._renderable = RichSpinner("dots", style="blue")
        self._lock = threading.Lock()
        self._live: Live | None = None

    @property
    def running(self) -> bool:
        return self._live is not None

    def start(self, message: str) -> None:
        with self._lock:
            self._renderable.update(text=Text(message, style="dim"))
            if self._live is not None:
                return
            self._live = Live(
                self._renderable,
                console=self.console,
                refresh_per_second=self.refresh_per_second,
                transient=True,
            )
            self._live.start()

    def stop(self) -> None:
        with self._lock:
            if self._live is None:
                return
            self._live.stop()
            self._live = None


class ConsoleHandler(EventHandler):
    """Renders streamed text and tool activity to a terminal.

    Args:
        console: Console to write to, stdout by default.
        show_spinner: Show a spinner while waiting on the model or a tool.
    """

    def __init__(self, console: Console | None = None, show_spinner: bool = True):
        self.console = console or Console()
        self.spinner = Spinner(self.console) if show_spinner else None
        self._text_id: str | None = None
        self._streaming = False
        self._tool_names: dict[str, str] = {}

    def _start_spinner(self, message: str) -> None:
        if self.spinner is not None:
            self.spinner.start(message)

    def _stop_spinner(self) -> None:
        if self.spinner is not None:
            self.spinner.stop()

    def on_start(self, event: Start) -> None:
        self._start_spinner("Thinking...")

    def on_text_start(self, event: TextStart) -> None:
        self._stop_spinner()
        self._text_id = event.id
        self._streaming = True

    def on_text_delta(self, event: TextDelta) -> None:
        if event.id != self._text_id:
            return
        self.console.print(event.delta, end="", markup=False, highlight=False, soft_wrap=True)

    def on_text_end(self, event: TextEnd) -> None:
        if event.id != self._text_id:
            return
        self._text_id = None
        self._streaming = False
        self.console.print()

    def on_tool_input_start(self, event: ToolInputStart) -> None:
        self._stop_spinner()
        self._tool_names[event.tool_call_id] = event.tool_name
        line = Text()
        line.append("⚙", style="bold bright_blue")
        line.append(" Calling tool:", style="dim")
        line.append(f" {event.tool_name}", style="bold bright_blue")
        self.console.print()
        self.console.print(line)
        self._start_spinner("Executing...")

    def on_tool_output_available(self, event: ToolOutputAvailable) -> None:
        if event.tool_call_id not in self._tool_names:
            return
        self._stop_spinner()
        output = event.output if isinstance(event.output, dict) else {}
        line = Text()
        if "error" in output:
            line.append("✗", style="bold red")
            line.append(" Error:", style="dim")
            line.append(f" {output['error']}", style="bold red")
        else:
            line.append("✓", style="green")
            line.append(" Result:", style="dim")
            line.append(f" {output.get('result', '')}")
        self.console.print(line)
        self.console.print()
        self._start_spinner("Thinking...")

    def on_finish(self, event: Finish) -> None:
        self._stop_spinner()
        if not self._streaming:
            self.console.print()

    def on_error(self, event: Error) -> None:
        self._stop_spinner()
        self.console.print(Text(f"✗ {event.error_text}", style="bold red"))

    def on_done(self, event: Done) -> None:
        self._stop_spinner()
        self._tool_names.clear()
