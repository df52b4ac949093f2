import uuid

from pydantic import BaseModel, Field

from palm.message import Message


class Session(BaseModel):
    """In-memory conversation history for one agent session.

    The transcript is append-only: the Runner appends user, assistant and
    tool messages and never rewrites or truncates earlier entries.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    transcript: list[Message] = Field(default_factory=list)

    def append(self, message: Message) -> None:
        self.transcript.append(message)
