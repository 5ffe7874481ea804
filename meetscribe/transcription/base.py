"""Abstract base class for audio processors (transcription backends)."""

from abc import ABC, abstractmethod
from typing import List, Optional
import logging

from ..audio.session_registry import SessionRegistry, SessionSnapshot
from ..errors import ProviderFailureError, SessionNotFoundError, TranscriptionError
from ..models.audio import AudioChunk, ProcessingMode, ProcessingOptions, SessionStatus, StreamMetadata
from ..models.transcription import NO_SPEECH_TEXT, ProcessingResult, TranscriptSegment, TranscriptionStatus

logger = logging.getLogger(__name__)


_SESSION_TO_TRANSCRIPTION_STATUS = {
    SessionStatus.PENDING: TranscriptionStatus.PENDING,
    SessionStatus.PROCESSING: TranscriptionStatus.PROCESSING,
    SessionStatus.COMPLETED: TranscriptionStatus.COMPLETED,
    SessionStatus.FAILED: TranscriptionStatus.FAILED,
}


class AbstractAudioProcessor(ABC):
    """Contract shared by every transcription backend.

    Session bookkeeping (ordering, counters, locking, eviction) lives in the
    injected SessionRegistry. Subclasses only turn audio into segments through
    two hooks: `transcribe_chunk` for real-time sessions and `transcribe_session`
    for batch sessions.
    """

    provider_name = "abstract"

    def __init__(self, registry: SessionRegistry, audio_store=None):
        """Initialize processor.

        Args:
            registry: Session registry shared with the rest of the engine
            audio_store: Optional LocalAudioStore used to archive session audio
        """
        self.registry = registry
        self.audio_store = audio_store

    @abstractmethod
    def transcribe_chunk(self, session_id: str, chunk: AudioChunk, metadata: StreamMetadata,
                         options: ProcessingOptions) -> Optional[TranscriptSegment]:
        """Transcribe one real-time chunk.

        Called without any registry lock held.

        Args:
            session_id: Session the chunk belongs to
            chunk: Accepted chunk carrying its authoritative sequence number and stream offset
            metadata: Stream metadata of the session
            options: Processing options of the session

        Returns:
            A segment for the chunk, or None if nothing was recognized
        """
        pass

    @abstractmethod
    def transcribe_session(self, snapshot: SessionSnapshot) -> List[TranscriptSegment]:
        """Transcribe a whole batch session.

        Args:
            snapshot: Finalized session state with every accepted chunk

        Returns:
            Segments ordered by sequence number
        """
        pass

    def get_supported_modes(self) -> List[ProcessingMode]:
        return [ProcessingMode.REALTIME, ProcessingMode.BATCH]

    def start_session(self, metadata: StreamMetadata, options: ProcessingOptions) -> str:
        session_id = self.registry.create_session(metadata, options)
        logger.info(f"[{self.provider_name}] Started session {session_id}")
        return session_id

    def process_chunk(self, session_id: str, chunk: AudioChunk) -> Optional[TranscriptSegment]:
        """Accept a chunk; in real-time mode also transcribe it.

        Raises:
            SessionNotFoundError: Session unknown or already evicted
            AlreadyTerminalError: Session already finalized
            ProviderFailureError: Backend failed on this chunk
        """
        metadata, options, mode = self.registry.get_stream_settings(session_id)

        if mode != ProcessingMode.REALTIME:
            self.registry.append_chunk(session_id, chunk)
            return None

        with self.registry.ingest(session_id, chunk) as accepted:
            segment = self._call_backend(self.transcribe_chunk, session_id, accepted, metadata, options)
            if segment is not None and segment.confidence < options.confidence_threshold:
                logger.debug(f"Dropping low-confidence segment ({segment.confidence:.2f}) "
                             f"for chunk #{accepted.sequence_number}")
                segment = None
            if segment is not None:
                self.registry.add_segment(session_id, segment)
        return segment

    def end_session(self, session_id: str) -> ProcessingResult:
        """Finalize the session and return its ordered segments."""
        snapshot = self.registry.finalize(session_id)

        try:
            if snapshot.mode == ProcessingMode.BATCH:
                segments = self._batch_segments(snapshot)
            else:
                segments = sorted(snapshot.segments, key=lambda s: s.sequence_number)
            artifact_url = self._archive(snapshot)
        except TranscriptionError:
            self._discard(session_id)
            raise

        logger.info(f"[{self.provider_name}] Ended session {session_id}: "
                    f"{snapshot.chunk_count} chunks, {len(segments)} segments ({snapshot.mode.value})")
        return ProcessingResult(
            session_id=session_id,
            status=TranscriptionStatus.COMPLETED,
            processing_mode=snapshot.mode,
            segments=segments,
            backend_reference=session_id,
            artifact_url=artifact_url,
            message=(f"Session completed with {snapshot.chunk_count} chunks processed "
                     f"using {snapshot.mode.value} mode"),
            chunk_count=snapshot.chunk_count,
            total_bytes=snapshot.total_bytes,
        )

    def abort_session(self, session_id: str) -> None:
        self.registry.abort(session_id)
        logger.info(f"[{self.provider_name}] Aborted session {session_id}")

    def get_session_status(self, session_id: str) -> ProcessingResult:
        """Partial result for a live (or recently finalized) session. Never mutates it."""
        snapshot = self.registry.snapshot(session_id)
        return ProcessingResult(
            session_id=session_id,
            status=_SESSION_TO_TRANSCRIPTION_STATUS[snapshot.status],
            processing_mode=snapshot.mode,
            segments=sorted(snapshot.segments, key=lambda s: s.sequence_number),
            message=(f"Session {snapshot.status.value}: {snapshot.chunk_count} chunks processed "
                     f"({snapshot.total_bytes} bytes)"),
            chunk_count=snapshot.chunk_count,
            total_bytes=snapshot.total_bytes,
        )

    def is_session_active(self, session_id: str) -> bool:
        return self.registry.is_active(session_id)

    def default_artifact_url(self, snapshot: SessionSnapshot) -> Optional[str]:
        """Artifact reference used when no audio store is configured."""
        return None

    def _batch_segments(self, snapshot: SessionSnapshot) -> List[TranscriptSegment]:
        if snapshot.chunk_count == 0:
            logger.info(f"Session {snapshot.session_id} received no audio; no segments")
            return []

        segments = self._call_backend(self.transcribe_session, snapshot)
        threshold = snapshot.options.confidence_threshold
        segments = sorted((s for s in segments if s.confidence >= threshold),
                          key=lambda s: s.sequence_number)
        if not segments:
            # Received audio always yields at least one segment
            segments = [TranscriptSegment(
                text=NO_SPEECH_TEXT,
                start_time=0.0,
                end_time=snapshot.duration_seconds,
                confidence=0.0,
                sequence_number=1,
            )]
        return segments

    def _archive(self, snapshot: SessionSnapshot) -> Optional[str]:
        if snapshot.chunk_count == 0:
            return None
        if self.audio_store is None:
            return self.default_artifact_url(snapshot)
        return self.audio_store.save_session_audio(snapshot)

    def _call_backend(self, hook, *args):
        try:
            return hook(*args)
        except TranscriptionError:
            raise
        except Exception as e:
            logger.error(f"[{self.provider_name}] backend call {hook.__name__} failed: {e}")
            raise ProviderFailureError(f"{self.provider_name} backend failed",
                                       cause=e, provider=self.provider_name) from e

    def _discard(self, session_id: str) -> None:
        try:
            self.registry.abort(session_id)
        except SessionNotFoundError:
            logger.debug(f"Session {session_id} already evicted")
