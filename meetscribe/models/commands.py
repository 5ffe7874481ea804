"""Command inputs (validated with pydantic) and command results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .audio import AudioChunk, ProcessingMode, ProcessingOptions, StreamMetadata
from .transcription import TranscriptionStatus


def _non_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be blank")
    return value


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)


class StartTranscriptionCommand(_Command):
    meeting_id: str
    metadata: Any = None
    options: Any = None
    create_bot_session: bool = False

    @field_validator("meeting_id")
    @classmethod
    def check_ids(cls, value: str) -> str:
        return _non_blank(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def check_metadata(cls, value: Any) -> StreamMetadata:
        if value is None:
            return StreamMetadata()
        if not isinstance(value, StreamMetadata):
            raise ValueError("metadata must be a StreamMetadata")
        for name in ("sample_rate", "channels", "bits_per_sample"):
            if getattr(value, name) < 0:
                raise ValueError(f"metadata.{name} must be non-negative")
        return value

    @field_validator("options", mode="before")
    @classmethod
    def check_options(cls, value: Any) -> ProcessingOptions:
        if value is None:
            return ProcessingOptions()
        if not isinstance(value, ProcessingOptions):
            raise ValueError("options must be a ProcessingOptions")
        if not 0.0 <= value.confidence_threshold <= 1.0:
            raise ValueError("options.confidence_threshold must be within [0, 1]")
        return value


class ProcessAudioChunkCommand(_Command):
    transcription_id: str
    session_id: str
    chunk: Any

    @field_validator("transcription_id", "session_id")
    @classmethod
    def check_ids(cls, value: str) -> str:
        return _non_blank(value)

    @field_validator("chunk", mode="before")
    @classmethod
    def check_chunk(cls, value: Any) -> AudioChunk:
        if not isinstance(value, AudioChunk):
            raise ValueError("chunk must be an AudioChunk")
        if not isinstance(value.data, (bytes, bytearray)):
            raise ValueError("chunk.data must be bytes")
        return value


class CompleteTranscriptionCommand(_Command):
    transcription_id: str
    session_id: str
    meeting_id: str
    bot_session_id: Optional[str] = None

    @field_validator("transcription_id", "session_id", "meeting_id")
    @classmethod
    def check_ids(cls, value: str) -> str:
        return _non_blank(value)


class AbortTranscriptionCommand(_Command):
    transcription_id: str
    session_id: str
    bot_session_id: Optional[str] = None
    reason: str = "aborted"

    @field_validator("transcription_id", "session_id")
    @classmethod
    def check_ids(cls, value: str) -> str:
        return _non_blank(value)


@dataclass
class StartTranscriptionResult:
    transcription_id: str
    session_id: str
    meeting_id: str
    provider: str
    bot_session_id: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)


@dataclass
class ProcessAudioChunkResult:
    transcription_id: str
    status: TranscriptionStatus
    status_changed: bool = False
    chunk_processed_at: datetime = field(default_factory=datetime.now)


@dataclass
class CompleteTranscriptionResult:
    transcription_id: str
    status: TranscriptionStatus
    content: str
    confidence: float
    segment_count: int
    processing_mode: ProcessingMode
    audio_file_path: str = ""
    completed_at: datetime = field(default_factory=datetime.now)


@dataclass
class AbortTranscriptionResult:
    transcription_id: str
    status: TranscriptionStatus
    aborted_at: datetime = field(default_factory=datetime.now)
