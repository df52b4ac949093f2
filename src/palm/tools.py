import inspect
import json
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from palm.errors import ToolInputError


def _empty_schema() -> dict:
    return {"type": "object", "properties": {}, "required": []}


class ToolDefinition(BaseModel):
    """What the provider sees of a tool."""

    name: str
    description: str = ""
    parameters: dict = Field(default_factory=_empty_schema)

    def tool_schema(self) -> dict:
        """Return an OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any = None

    @property
    def output_text(self) -> str:
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output)


class Tool(BaseModel):
    """A callable exposed to the model.

    The parameter schema is declared explicitly by the tool author.  When
    ``input_model`` is given the raw arguments are validated into an
    instance of it and passed as the single positional argument;
    otherwise the decoded JSON object is passed as keyword arguments.

    Args:
        func: Sync or async function implementing the tool.
        name: Tool name, unique within an agent.
        description: Description shown to the model.
        parameters_schema: JSON schema of the accepted arguments.
        input_model: Optional pydantic model for the arguments.
    """

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=_empty_schema)
    input_model: type[BaseModel] | None = Field(default=None, exclude=True)
    model_config = {"arbitrary_types_allowed": True}

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema,
        )

    def model_dump(self, **kwargs):
        """Override to return the provider schema instead of internal attributes"""
        return self.definition().tool_schema()

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    def parse_arguments(self, arguments: str | bytes) -> Any:
        """Decode raw tool-call arguments into the tool's input.

        Raises:
            ToolInputError: If the arguments are not a valid JSON object
                or fail validation against ``input_model``.
        """
        if isinstance(arguments, bytes):
            arguments = arguments.decode("utf-8")
        if not arguments.strip():
            arguments = "{}"

        if self.input_model is not None:
            try:
                return self.input_model.model_validate_json(arguments)
            except ValidationError as e:
                raise ToolInputError(str(e)) from e

        try:
            params = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolInputError(f"invalid JSON: {e}") from e
        if not isinstance(params, dict):
            raise ToolInputError("arguments must be a JSON object")
        return params

    async def __call__(self, arguments: str | bytes) -> ToolCallResult:
        parsed = self.parse_arguments(arguments)
        if self.input_model is not None:
            output = self.func(parsed)
        else:
            output = self.func(**parsed)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: dict | None = None,
    input_model: type[BaseModel] | None = None,
):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with arguments::

        @tool(
            name="get_weather",
            description="Get the weather in a location",
            parameters={
                "type": "object",
                "properties": {"location": {"type": "string"}},
                "required": ["location"],
            },
        )
        def get_weather(location: str):
            return f"The weather in {location} is sunny"

    Name and description default to the function's name and docstring.
    """

    def wrap(f: Callable) -> Tool:
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else (inspect.getdoc(f) or ""),
            parameters_schema=parameters if parameters is not None else _empty_schema(),
            input_model=input_model,
        )

    if func is not None:
        return wrap(func)
    return wrap
