from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Author of a stored message"""
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(str, Enum):
    """Turn-taking state of a session"""
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    STOPPED = "stopped"


class WireModel(BaseModel):
    """Base for models that cross the transport boundary (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Message(WireModel):
    """A stored conversation entry. Only fade_level changes after creation."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    role: Role = Field(frozen=True)
    content: str = Field(frozen=True)
    sequence_index: int = Field(ge=0, frozen=True, serialization_alias="index")
    fade_level: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow, frozen=True)


class FadeUpdate(WireModel):
    """Fade delta for one message, produced by a decay pass"""
    index: int = Field(ge=0)
    fade_level: float = Field(ge=0.0, le=1.0)
    should_corrupt: bool = False


class ContextMessage(BaseModel):
    """Role/content pair handed to the generative service"""
    role: Role
    content: str
