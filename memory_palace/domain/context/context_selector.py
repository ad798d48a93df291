from typing import Iterable, List

from memory_palace.domain.models.conversation import Message, ContextMessage


DEFAULT_MAX_COUNT = 10
DEFAULT_MIN_FADE_LEVEL = 0.2


def select_context(
    messages: Iterable[Message],
    max_count: int = DEFAULT_MAX_COUNT,
    min_fade_level: float = DEFAULT_MIN_FADE_LEVEL,
) -> List[ContextMessage]:
    """Pick the messages the generative service is still allowed to see.

    Messages at or below ``min_fade_level`` are forgotten. Of the survivors
    only the newest ``max_count`` are kept, in their original order, and
    everything except role and content is stripped. May return an empty list.
    """
    if max_count < 0:
        raise ValueError(f"max_count must be non-negative, got {max_count}")

    remembered = [m for m in messages if m.fade_level > min_fade_level]
    recent = remembered[-max_count:] if max_count else []

    return [ContextMessage(role=m.role, content=m.content) for m in recent]
