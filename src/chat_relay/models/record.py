"""
Message record — the durable unit of the chat log.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ANONYMOUS = "anonymous"


class MessageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    content: str
    author: str = ANONYMOUS
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> tuple[Any, ...]:
        """Positional args for the `chat message` event. The id travels as a string."""
        if self.metadata:
            return (self.content, str(self.id), self.author, dict(self.metadata))
        return (self.content, str(self.id), self.author)

    @classmethod
    def from_wire(cls, *args: Any) -> "MessageRecord":
        content, raw_id = args[0], args[1]
        author = args[2] if len(args) > 2 and args[2] is not None else ANONYMOUS
        metadata = args[3] if len(args) > 3 and isinstance(args[3], dict) else {}
        return cls(id=int(raw_id), content=content, author=author, metadata=metadata)
