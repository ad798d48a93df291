from typing import List, Tuple
import structlog

from memory_palace.domain.models.conversation import Message, Role, FadeUpdate
from .decay_policy import DecayPolicy, RandomSource

logger = structlog.get_logger(__name__)


class ConversationState:
    """Append-only message log for one session.

    The stored fade levels live here and nowhere else; ``recompute_fades`` is
    the only path that changes them.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.turn_count = 0
        self._messages: List[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def newest_index(self) -> int:
        return len(self._messages) - 1

    def append(self, role: Role, content: str) -> Message:
        """Store a message at the next sequence index with full fade"""

        message = Message(
            role=role,
            content=content,
            sequence_index=len(self._messages),
            fade_level=1.0,
        )
        self._messages.append(message)
        if role == Role.USER:
            self.turn_count += 1
        return message

    def recompute_fades(
        self,
        newest_index: int,
        policy: DecayPolicy,
        rng: RandomSource,
    ) -> List[FadeUpdate]:
        """Re-fade every message older than ``newest_index`` and return the deltas"""

        if newest_index < 0 or newest_index >= len(self._messages):
            raise IndexError(f"newest_index {newest_index} out of range for {len(self._messages)} messages")

        updates: List[FadeUpdate] = []
        for message in self._messages[:newest_index]:
            level = policy.fade(newest_index - message.sequence_index, rng)
            message.fade_level = level
            updates.append(FadeUpdate(
                index=message.sequence_index,
                fade_level=level,
                should_corrupt=policy.should_corrupt(level, rng),
            ))

        logger.debug(
            "Fades recomputed",
            session_id=self.session_id,
            newest_index=newest_index,
            updated=len(updates),
        )
        return updates

    def snapshot(self) -> Tuple[Message, ...]:
        """Read-only copies of the log, oldest first"""
        return tuple(message.model_copy() for message in self._messages)

    def memory_integrity(self) -> float:
        """Mean fade level over the whole log (0.0 when empty)"""
        if not self._messages:
            return 0.0
        return sum(m.fade_level for m in self._messages) / len(self._messages)
