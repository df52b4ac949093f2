from enum import Enum
from typing import Any

from pydantic import BaseModel, field_serializer, model_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class FunctionInvocation(BaseModel):
    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: FunctionInvocation


class Message(BaseModel):
    """One entry of the conversation transcript.

    ``tool_calls`` is only set on assistant messages, ``tool_call_id`` only
    on tool messages.  Unset optional fields are left out of the dump so
    the result can be sent to OpenAI-compatible APIs as-is.
    """

    role: MessageRole
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @model_serializer(mode="wrap")
    def drop_unset(self, handler) -> dict[str, Any]:
        data = handler(self)
        return {k: v for k, v in data.items() if v is not None}


def user_message(content: str) -> Message:
    return Message(role=MessageRole.USER, content=content)


def tool_result_message(tool_call_id: str, content: str) -> Message:
    return Message(
        role=MessageRole.TOOL,
        content=content,
        tool_call_id=tool_call_id,
    )
