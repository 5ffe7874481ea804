"""Error taxonomy for the transcription lifecycle engine."""

from typing import Optional


class TranscriptionError(RuntimeError):
    """Base class for every error raised by the engine.

    Args:
        code: Stable machine-readable error code (e.g. "MEETING_NOT_FOUND")
        message: Human readable description
        cause: Underlying exception, if any
    """

    default_code = "TRANSCRIPTION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.code}] {self.message}: {self.cause}"
        return f"[{self.code}] {self.message}"


class NotFoundError(TranscriptionError):
    default_code = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    default_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class TranscriptionNotFoundError(NotFoundError):
    default_code = "TRANSCRIPTION_NOT_FOUND"

    def __init__(self, transcription_id: str):
        super().__init__(f"Transcription {transcription_id} not found")
        self.transcription_id = transcription_id


class MeetingNotFoundError(NotFoundError):
    default_code = "MEETING_NOT_FOUND"

    def __init__(self, meeting_id: str):
        super().__init__(f"Meeting {meeting_id} not found")
        self.meeting_id = meeting_id


class BotSessionNotFoundError(NotFoundError):
    default_code = "BOT_SESSION_NOT_FOUND"

    def __init__(self, bot_session_id: str):
        super().__init__(f"Bot session {bot_session_id} not found")
        self.bot_session_id = bot_session_id


class UnknownProviderError(NotFoundError):
    default_code = "UNKNOWN_PROVIDER"

    def __init__(self, provider: str):
        super().__init__(f"Unknown provider: {provider}")
        self.provider = provider


class AlreadyTerminalError(TranscriptionError):
    """Raised when mutating something that already reached Completed/Failed."""

    default_code = "ALREADY_TERMINAL"


class ProviderFailureError(TranscriptionError):
    """A transcription backend failed to start, process or end a session."""

    default_code = "PROVIDER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None,
                 cause: Optional[BaseException] = None, provider: Optional[str] = None):
        super().__init__(message, code=code, cause=cause)
        self.provider = provider


class ValidationFailedError(TranscriptionError):
    default_code = "VALIDATION_FAILED"


class PersistenceError(TranscriptionError):
    default_code = "PERSISTENCE_FAILED"


# Codes used by the orchestration layer when wrapping backend failures
START_SESSION_FAILED = "START_SESSION_FAILED"
PROCESS_CHUNK_FAILED = "PROCESS_CHUNK_FAILED"
END_SESSION_FAILED = "END_SESSION_FAILED"
ABORT_SESSION_FAILED = "ABORT_SESSION_FAILED"
