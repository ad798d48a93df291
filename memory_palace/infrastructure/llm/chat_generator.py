"""Generative service adapter built on LangChain chat models."""
from __future__ import annotations

from typing import Any, List, Protocol, Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from memory_palace.domain.errors import GenerationError
from memory_palace.domain.models.conversation import ContextMessage, Role

logger = structlog.get_logger(__name__)


class TextGenerator(Protocol):
    """What the session engine needs from a generative backend."""

    async def generate(
        self,
        system_framing: str,
        history: Sequence[ContextMessage],
        max_tokens: int,
    ) -> str:
        ...


def to_lc_messages(system_framing: str, history: Sequence[ContextMessage]) -> List[BaseMessage]:
    messages: List[BaseMessage] = [SystemMessage(content=system_framing)]
    for item in history:
        if item.role == Role.USER:
            messages.append(HumanMessage(content=item.content))
        else:
            messages.append(AIMessage(content=item.content))
    return messages


def _extract_text(content: Any) -> str:
    # Anthropic may return a list of content blocks instead of a plain string
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ChatModelGenerator:
    """Wraps any LangChain chat model behind the ``TextGenerator`` contract.

    Every backend failure surfaces as ``GenerationError``. Cancellation is not
    caught, so a torn-down session can abandon the call.
    """

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def generate(
        self,
        system_framing: str,
        history: Sequence[ContextMessage],
        max_tokens: int,
    ) -> str:
        messages = to_lc_messages(system_framing, history)
        try:
            result = await self.chat_model.bind(max_tokens=max_tokens).ainvoke(messages)
        except Exception as e:
            logger.error("Chat model call failed", error=str(e), error_type=type(e).__name__)
            raise GenerationError(str(e) or type(e).__name__) from e

        text = _extract_text(result.content).strip()
        if not text:
            raise GenerationError("Empty completion")
        return text


def create_anthropic_generator(settings) -> ChatModelGenerator:
    """Build the default backend from ``ModelSettings``."""
    # Lazy import so tests run without provider credentials
    from langchain_anthropic import ChatAnthropic

    api_key = settings.get_api_key()
    if not api_key:
        logger.warning("API key not set; generation will fail", env_var=settings.api_key_env)

    kwargs = {
        "model": settings.model,
        "max_tokens": settings.max_tokens,
        "max_retries": 0,
    }
    if api_key:
        kwargs["api_key"] = api_key
    if settings.temperature is not None:
        kwargs["temperature"] = settings.temperature

    return ChatModelGenerator(ChatAnthropic(**kwargs))
