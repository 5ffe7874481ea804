"""In-memory reference backend producing deterministic canned transcripts."""

import time
import logging
from typing import List, Optional

from .base import AbstractAudioProcessor
from ..audio.session_registry import SessionRegistry, SessionSnapshot
from ..models.audio import AudioChunk, ProcessingOptions, StreamMetadata
from ..models.transcription import TranscriptSegment

logger = logging.getLogger(__name__)


MOCK_SENTENCES = (
    "Welcome everyone to today's meeting.",
    "Thank you for joining us. Let's get started with the agenda.",
    "I'd like to discuss the project timeline first.",
    "That sounds like a great idea. What are your thoughts?",
    "I agree with that approach. We should move forward.",
    "Let me share my screen to show the current progress.",
    "These results look promising. Should we proceed to the next phase?",
    "I think we need to consider the budget implications.",
    "Good point. Let's schedule a follow-up meeting to discuss this further.",
    "Thank you everyone for your time. Have a great day!",
)
MOCK_SPEAKERS = ("Speaker A", "Speaker B", "Speaker C")
MOCK_CONFIDENCES = (0.85, 0.90, 0.95)
SECONDS_PER_SEGMENT = 3.0


class InMemoryAudioProcessor(AbstractAudioProcessor):
    """Reference backend: one canned sentence per chunk, no network.

    Sequence number N maps to sentence (N-1) mod 10, confidence cycles through
    0.85/0.90/0.95 and each segment spans three seconds. With diarization the
    speakers rotate through A/B/C; without it the speaker is None.
    """

    provider_name = "mock"

    def __init__(self, registry: SessionRegistry, audio_store=None, processing_delay: float = 0.0):
        """Initialize mock processor.

        Args:
            registry: Shared session registry
            audio_store: Optional audio archive
            processing_delay: Seconds to sleep per backend call, to simulate latency
        """
        super().__init__(registry, audio_store)
        self.processing_delay = processing_delay
        logger.info(f"InMemoryAudioProcessor initialized (delay={processing_delay}s)")

    def transcribe_chunk(self, session_id: str, chunk: AudioChunk, metadata: StreamMetadata,
                         options: ProcessingOptions) -> Optional[TranscriptSegment]:
        self._simulate_latency()
        segment = self._canned_segment(chunk.sequence_number, options.speaker_diarization)
        logger.debug(f"Mock: chunk #{chunk.sequence_number} of {session_id} -> '{segment.text}'")
        return segment

    def transcribe_session(self, snapshot: SessionSnapshot) -> List[TranscriptSegment]:
        self._simulate_latency()
        if snapshot.options.speaker_diarization:
            logger.info(f"Mock: generating diarized transcript for session {snapshot.session_id}")
        segments = [self._canned_segment(chunk.sequence_number, snapshot.options.speaker_diarization)
                    for chunk in snapshot.chunks]
        logger.info(f"Mock: generated {len(segments)} segments for session {snapshot.session_id}")
        return segments

    def default_artifact_url(self, snapshot: SessionSnapshot) -> Optional[str]:
        meeting_id = snapshot.metadata.meeting_id or "unassigned"
        return f"mock://meetings/{meeting_id}/audio/{snapshot.session_id}.wav"

    def _canned_segment(self, sequence_number: int, diarization: bool) -> TranscriptSegment:
        index = sequence_number - 1
        return TranscriptSegment(
            text=MOCK_SENTENCES[index % len(MOCK_SENTENCES)],
            start_time=index * SECONDS_PER_SEGMENT,
            end_time=(index + 1) * SECONDS_PER_SEGMENT,
            confidence=MOCK_CONFIDENCES[index % len(MOCK_CONFIDENCES)],
            sequence_number=sequence_number,
            speaker=MOCK_SPEAKERS[index % len(MOCK_SPEAKERS)] if diarization else None,
        )

    def _simulate_latency(self) -> None:
        if self.processing_delay > 0:
            time.sleep(self.processing_delay)
