from typing import Optional


class MemoryPalaceError(Exception):
    """Base error for the conversation engine"""


class InvalidInput(MemoryPalaceError):
    """User message that cannot start a turn (empty or whitespace-only)"""


class SessionNotFound(MemoryPalaceError):
    """Event addressed to a session that was stopped or torn down"""

    def __init__(self, session_id: str, message: Optional[str] = None):
        self.session_id = session_id
        super().__init__(message or f"Session not found: {session_id}")


class GenerationError(MemoryPalaceError):
    """Generative service failed (transport, quota, model or timeout)"""
