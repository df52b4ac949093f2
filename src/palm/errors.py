class PalmError(Exception):
    """Base class for all palm errors."""


class ProviderError(PalmError):
    """The model provider was unreachable or answered with a non-success status.

    Fatal to the current turn: the Runner propagates it to the caller.

    Args:
        message: Human readable description.
        status_code: HTTP status returned by the provider, if any.
        body: Response body returned with the failure, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ToolError(PalmError):
    """Base for tool failures that are absorbed into the conversation."""


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"tool not found: {name}")
        self.name = name


class ToolInputError(ToolError):
    """The tool-call arguments could not be parsed into the tool's input."""


class ToolExecutionError(ToolError):
    """The tool itself failed while running."""


class LLMRecoverableError(Exception):
    """Raised by a tool to hand a message back to the model.

    The message becomes the tool result as-is and is not flagged as an
    error, so the model can retry with corrected input.
    """
