from palm.provider import ModelProvider
from palm.tools import Tool


class Agent:
    """A model provider plus the tools it may call.

    The provider is fixed at construction.  Tool names must be unique;
    lookups by name are exact and case-sensitive.

    Args:
        provider: Model provider used for every turn.
        tools: Tools the model may call.
        system_prompt: Optional system prompt, injected at call time and
            never stored in the transcript.
        name: Agent name, used in logs and traces.
    """

    def __init__(
        self,
        provider: ModelProvider,
        tools: list[Tool] | None = None,
        system_prompt: str | None = None,
        name: str = "palm",
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.name = name
        self.tool_registry: dict[str, Tool] = {}
        for t in tools or []:
            if t.name in self.tool_registry:
                raise ValueError(f"duplicate tool name: {t.name}")
            self.tool_registry[t.name] = t

    def tool_schemas(self) -> list[dict] | None:
        schemas = [t.model_dump() for t in self.tool_registry.values()]
        return schemas or None
