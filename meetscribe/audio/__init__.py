"""Audio session tracking."""

from .session_registry import AudioSession, SessionSnapshot, SessionRegistry

__all__ = ["AudioSession", "SessionSnapshot", "SessionRegistry"]
