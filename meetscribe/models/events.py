"""Lifecycle event payloads published on the event bus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .audio import ProcessingMode


TRANSCRIPTION_STARTED = "transcription.started"
TRANSCRIPTION_PROCESSING = "transcription.processing"
TRANSCRIPTION_COMPLETED = "transcription.completed"
TRANSCRIPTION_FAILED = "transcription.failed"

ALL_TOPICS = (
    TRANSCRIPTION_STARTED,
    TRANSCRIPTION_PROCESSING,
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_FAILED,
)


@dataclass
class TranscriptionStartedEvent:
    transcription_id: str
    meeting_id: str
    session_id: str
    provider: str
    bot_session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TranscriptionProcessingEvent:
    transcription_id: str
    meeting_id: str
    session_id: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TranscriptionCompletedEvent:
    transcription_id: str
    meeting_id: str
    session_id: str
    segment_count: int
    confidence: float
    processing_mode: ProcessingMode
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TranscriptionFailedEvent:
    transcription_id: str
    meeting_id: str
    session_id: Optional[str]
    error_code: str
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)
