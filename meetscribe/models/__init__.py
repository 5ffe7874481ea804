"""Data models for meetscribe."""

from .audio import ProcessingMode, SessionStatus, StreamMetadata, ProcessingOptions, AudioChunk
from .transcription import (
    NO_SPEECH_TEXT,
    TranscriptionStatus,
    TranscriptSegment,
    Transcription,
    ProcessingResult,
)
from .meeting import Meeting, MeetingStatus, BotSession, BotSessionStatus
from .events import (
    TranscriptionStartedEvent,
    TranscriptionProcessingEvent,
    TranscriptionCompletedEvent,
    TranscriptionFailedEvent,
)

__all__ = [
    "ProcessingMode",
    "SessionStatus",
    "StreamMetadata",
    "ProcessingOptions",
    "AudioChunk",
    "NO_SPEECH_TEXT",
    "TranscriptionStatus",
    "TranscriptSegment",
    "Transcription",
    "ProcessingResult",
    "Meeting",
    "MeetingStatus",
    "BotSession",
    "BotSessionStatus",
    # Event payloads
    "TranscriptionStartedEvent",
    "TranscriptionProcessingEvent",
    "TranscriptionCompletedEvent",
    "TranscriptionFailedEvent",
]
