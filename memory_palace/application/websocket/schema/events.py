from typing import Dict, Any, List, Literal, Union, Annotated
from pydantic import BaseModel, Field, TypeAdapter
from datetime import datetime
from enum import Enum

from memory_palace.domain.models.conversation import (
    WireModel, Message, FadeUpdate, utcnow
)


class EventType(str, Enum):
    """WebSocket event types"""
    AI_MESSAGE = "ai-message"
    USER_MESSAGE_CONFIRMED = "user-message-confirmed"
    FADE_MESSAGES = "fade-messages"
    AI_ERROR = "ai-error"
    CONVERSATION_STOPPED = "conversation-stopped"


# ---------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------

class BaseEvent(BaseModel):
    """Base event model for all outbound WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MessagePayload(WireModel):
    """A single message as the presentation layer sees it"""
    content: str
    index: int
    fade_level: float

    @classmethod
    def from_message(cls, message: Message) -> "MessagePayload":
        return cls(
            content=message.content,
            index=message.sequence_index,
            fade_level=message.fade_level,
        )


class AIMessageEvent(BaseEvent):
    """Assistant reply (or the seeded greeting)"""
    type: Literal[EventType.AI_MESSAGE] = EventType.AI_MESSAGE
    payload: MessagePayload


class UserMessageConfirmedEvent(BaseEvent):
    """Echo of an accepted user message with its assigned index"""
    type: Literal[EventType.USER_MESSAGE_CONFIRMED] = EventType.USER_MESSAGE_CONFIRMED
    payload: MessagePayload


class FadeMessagesEvent(BaseEvent):
    """Fade deltas from one decay pass"""
    type: Literal[EventType.FADE_MESSAGES] = EventType.FADE_MESSAGES
    payload: List[FadeUpdate]


class ErrorPayload(BaseModel):
    message: str


class AIErrorEvent(BaseEvent):
    """Non-fatal generation failure notice"""
    type: Literal[EventType.AI_ERROR] = EventType.AI_ERROR
    payload: ErrorPayload


class ConversationStoppedPayload(WireModel):
    message_count: int
    preserved_messages: List[Message]
    memory_integrity: float


class ConversationStoppedEvent(BaseEvent):
    """End-of-session report"""
    type: Literal[EventType.CONVERSATION_STOPPED] = EventType.CONVERSATION_STOPPED
    payload: ConversationStoppedPayload


# ---------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------

class UserMessage(BaseModel):
    """User message event"""
    type: Literal["user-message"] = "user-message"
    message: str


class StopConversation(BaseModel):
    """Request to end the conversation"""
    type: Literal["stop-conversation"] = "stop-conversation"


ClientEvent = Annotated[
    Union[UserMessage, StopConversation],
    Field(discriminator="type"),
]

client_event_adapter: TypeAdapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: str) -> Union[UserMessage, StopConversation]:
    """Validate an inbound frame; raises pydantic.ValidationError on bad input"""
    return client_event_adapter.validate_json(raw)


OutboundEvent = Union[
    AIMessageEvent,
    UserMessageConfirmedEvent,
    FadeMessagesEvent,
    AIErrorEvent,
    ConversationStoppedEvent,
]
