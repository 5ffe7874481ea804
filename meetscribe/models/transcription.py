"""Transcription aggregate and transcript segment models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List

from .audio import ProcessingMode
from ..errors import AlreadyTerminalError, ValidationFailedError


NO_SPEECH_TEXT = "[NO_SPEECH_DETECTED]"


class TranscriptionStatus(str, Enum):
    """Lifecycle status of a persisted transcription."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TranscriptionStatus.COMPLETED, TranscriptionStatus.FAILED)


def _count_words(text: str) -> int:
    return len(text.split()) if text else 0


@dataclass(frozen=True)
class TranscriptSegment:
    """A finalized span of transcribed text. Immutable once created."""
    text: str
    start_time: float
    end_time: float
    confidence: float
    sequence_number: int
    speaker: Optional[str] = None
    transcription_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.start_time < 0 or self.end_time < self.start_time:
            raise ValidationFailedError(
                f"Invalid segment timing: start={self.start_time} end={self.end_time}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationFailedError(f"Segment confidence out of range: {self.confidence}")
        if self.sequence_number < 1:
            raise ValidationFailedError(f"Segment sequence number must be >= 1, got {self.sequence_number}")

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def word_count(self) -> int:
        return _count_words(self.text)

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence >= 0.8

    def for_transcription(self, transcription_id: str) -> "TranscriptSegment":
        """Return a copy attached to the given transcription."""
        return TranscriptSegment(
            text=self.text,
            start_time=self.start_time,
            end_time=self.end_time,
            confidence=self.confidence,
            sequence_number=self.sequence_number,
            speaker=self.speaker,
            transcription_id=transcription_id,
            id=self.id,
        )


@dataclass
class Transcription:
    """Persisted transcription aggregate.

    Status moves strictly Pending -> Processing -> {Completed, Failed}, or
    Pending -> Failed. Completed and Failed are terminal.
    """
    meeting_id: str
    provider: str
    status: TranscriptionStatus = TranscriptionStatus.PENDING
    content: str = ""
    confidence: float = 0.0
    audio_file_path: str = ""
    segments: List[TranscriptSegment] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def start_processing(self) -> None:
        self._require_status(TranscriptionStatus.PENDING, action="start processing")
        self.status = TranscriptionStatus.PROCESSING
        self.updated_at = datetime.now()

    def complete(self, content: str, confidence: float, segments: List[TranscriptSegment],
                 audio_file_path: Optional[str] = None) -> None:
        self._require_status(TranscriptionStatus.PROCESSING, action="complete")
        self.status = TranscriptionStatus.COMPLETED
        self.content = content
        self.confidence = confidence
        self.segments = [segment.for_transcription(self.id) for segment in segments]
        if audio_file_path:
            self.audio_file_path = audio_file_path
        self.updated_at = datetime.now()

    def fail(self) -> None:
        if self.status.is_terminal:
            raise AlreadyTerminalError(
                f"Transcription {self.id} is already {self.status.value}; cannot fail")
        self.status = TranscriptionStatus.FAILED
        self.updated_at = datetime.now()

    def _require_status(self, expected: TranscriptionStatus, action: str) -> None:
        if self.status.is_terminal:
            raise AlreadyTerminalError(
                f"Transcription {self.id} is already {self.status.value}; cannot {action}")
        if self.status != expected:
            raise ValidationFailedError(
                f"Transcription {self.id} is {self.status.value}; cannot {action}",
                code="INVALID_TRANSITION")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_completed(self) -> bool:
        return self.status == TranscriptionStatus.COMPLETED

    @property
    def is_processing(self) -> bool:
        return self.status == TranscriptionStatus.PROCESSING

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    def word_count(self) -> int:
        return _count_words(self.content)


@dataclass
class ProcessingResult:
    """Result (final or partial) reported by an audio processor."""
    session_id: str
    status: TranscriptionStatus
    processing_mode: ProcessingMode
    segments: List[TranscriptSegment] = field(default_factory=list)
    backend_reference: Optional[str] = None  # provider-side transcript id
    artifact_url: Optional[str] = None       # archived audio location
    message: str = ""
    chunk_count: int = 0
    total_bytes: int = 0
