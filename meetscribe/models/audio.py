"""Audio stream and session models."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProcessingMode(str, Enum):
    """Whether audio is transcribed incrementally or submitted as a whole."""
    REALTIME = "realtime"
    BATCH = "batch"


class SessionStatus(str, Enum):
    """Status of an in-flight audio session."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.PENDING, SessionStatus.PROCESSING)


@dataclass
class StreamMetadata:
    """Metadata describing an incoming audio stream."""
    session_id: Optional[str] = None
    meeting_id: Optional[str] = None
    user_id: Optional[str] = None
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16
    mime_type: str = "audio/wav"
    start_time: float = field(default_factory=time.time)
    mode: Optional[ProcessingMode] = None

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * max(self.bits_per_sample // 8, 1)


@dataclass
class ProcessingOptions:
    """Backend options for a transcription session."""
    language: str = "en-US"
    speaker_diarization: bool = False
    punctuation: bool = True
    profanity_filtering: bool = False
    confidence_threshold: float = 0.0
    real_time_transcription: bool = False
    provider: Optional[str] = None
    mode: Optional[ProcessingMode] = None
    # Batch-specific hints
    batch_priority: str = "normal"        # "low" | "normal" | "high"
    max_latency: Optional[int] = None     # seconds
    cost_optimized: bool = False
    quality_level: str = "standard"       # "basic" | "standard" | "premium"


@dataclass
class AudioChunk:
    """One fragment of raw audio as delivered by the transport layer.

    The sequence number supplied by the client is advisory only; the session
    registry assigns the authoritative one on arrival.
    """
    data: bytes
    timestamp: float = field(default_factory=time.time)
    sequence_number: Optional[int] = None
    duration: Optional[float] = None  # seconds, client hint
    offset: Optional[float] = None    # seconds from stream start, set on arrival
    size: int = 0

    def __post_init__(self):
        """Derive size from the payload."""
        self.size = len(self.data) if self.data else 0
