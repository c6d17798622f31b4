"""
Connection models — what the transport knows about a client when it connects.
"""

import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from chat_relay.models.record import ANONYMOUS


class ConnectionInfo(BaseModel):
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    author: str = ANONYMOUS
    watermark: int = 0
    recovered: bool = False
    address: Optional[str] = None
    user_agent: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("author", mode="before")
    @classmethod
    def _default_author(cls, value: Any) -> Any:
        if value is None or value == "":
            return ANONYMOUS
        return str(value)

    @field_validator("watermark", mode="before")
    @classmethod
    def _coerce_watermark(cls, value: Any) -> int:
        # Client-supplied; anything unusable means "nothing seen yet".
        try:
            watermark = int(value)
        except (TypeError, ValueError):
            return 0
        return max(watermark, 0)
