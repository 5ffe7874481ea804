"""Thread-safe registry of in-flight audio sessions."""

import copy
import time
import uuid
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Tuple, Iterator

from ..errors import AlreadyTerminalError, SessionNotFoundError, ValidationFailedError
from ..models.audio import AudioChunk, ProcessingMode, ProcessingOptions, SessionStatus, StreamMetadata
from ..models.transcription import TranscriptSegment

logger = logging.getLogger(__name__)


def resolve_mode(metadata: StreamMetadata, options: ProcessingOptions) -> ProcessingMode:
    """Pick the processing mode for a session.

    Explicit options win over stream metadata; otherwise the real-time flag decides.
    """
    if options.mode is not None:
        return ProcessingMode(options.mode)
    if metadata.mode is not None:
        return ProcessingMode(metadata.mode)
    return ProcessingMode.REALTIME if options.real_time_transcription else ProcessingMode.BATCH


@dataclass
class AudioSession:
    """Mutable per-session state. Owned by the registry; guard every access with `condition`."""
    id: str
    metadata: StreamMetadata
    options: ProcessingOptions
    mode: ProcessingMode
    chunks: List[AudioChunk] = field(default_factory=list)
    segments: List[TranscriptSegment] = field(default_factory=list)
    total_bytes: int = 0
    chunk_count: int = 0
    status: SessionStatus = SessionStatus.PENDING
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    in_flight: int = 0
    evicted: bool = False
    condition: threading.Condition = field(default_factory=threading.Condition, repr=False, compare=False)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of an AudioSession."""
    session_id: str
    metadata: StreamMetadata
    options: ProcessingOptions
    mode: ProcessingMode
    status: SessionStatus
    chunks: Tuple[AudioChunk, ...]
    segments: Tuple[TranscriptSegment, ...]
    chunk_count: int
    total_bytes: int
    created_at: float
    last_activity_at: float

    @property
    def audio_data(self) -> bytes:
        return b''.join(chunk.data for chunk in self.chunks)

    @property
    def duration_seconds(self) -> float:
        bytes_per_second = self.metadata.bytes_per_second
        if bytes_per_second <= 0:
            return 0.0
        return self.total_bytes / bytes_per_second


class SessionRegistry:
    """Owns every live AudioSession.

    Two lock levels: `self.lock` guards the id -> session map (insert/delete only),
    each session's condition guards that session's fields. Neither is held while
    a backend is called.
    """

    def __init__(self, eviction_grace_seconds: float = 60.0):
        """Initialize session registry.

        Args:
            eviction_grace_seconds: How long a finalized session stays readable before eviction
        """
        if eviction_grace_seconds < 0:
            raise ValueError(f"eviction_grace_seconds must be >= 0, got {eviction_grace_seconds}")
        self.eviction_grace_seconds = eviction_grace_seconds
        self.lock = threading.Lock()
        self._sessions: Dict[str, AudioSession] = {}
        self._eviction_timers: Dict[str, threading.Timer] = {}
        self._closed = False
        logger.info(f"SessionRegistry initialized: eviction grace {eviction_grace_seconds}s")

    def create_session(self, metadata: StreamMetadata, options: ProcessingOptions) -> str:
        """Register a new Pending session and return its id."""
        session_id = metadata.session_id or str(uuid.uuid4())
        session = AudioSession(
            id=session_id,
            metadata=copy.copy(metadata),
            options=copy.copy(options),
            mode=resolve_mode(metadata, options),
        )
        session.metadata.session_id = session_id

        with self.lock:
            if self._closed:
                raise ValidationFailedError("Session registry is shut down", code="REGISTRY_CLOSED")
            if session_id in self._sessions:
                raise ValidationFailedError(f"Session {session_id} already exists", code="DUPLICATE_SESSION")
            self._sessions[session_id] = session

        logger.info(f"Created audio session {session_id} ({session.mode.value})")
        return session_id

    def _get(self, session_id: str) -> AudioSession:
        with self.lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _append_locked(self, session: AudioSession, chunk: AudioChunk) -> AudioChunk:
        if session.evicted:
            raise SessionNotFoundError(session.id)
        if not session.status.is_active:
            raise AlreadyTerminalError(
                f"Session {session.id} is {session.status.value}; cannot accept audio",
                code="SESSION_CLOSED")

        # Caller-supplied sequence numbers are advisory; arrival order under the lock wins
        accepted = AudioChunk(
            data=chunk.data,
            timestamp=chunk.timestamp,
            sequence_number=session.chunk_count + 1,
            duration=chunk.duration,
            offset=self._stream_offset(session),
        )
        session.chunks.append(accepted)
        session.chunk_count += 1
        session.total_bytes += accepted.size
        session.last_activity_at = time.time()
        if session.status == SessionStatus.PENDING:
            session.status = SessionStatus.PROCESSING

        logger.debug(f"Session {session.id}: chunk #{accepted.sequence_number} "
                     f"({accepted.size} bytes, {session.total_bytes} total)")
        return accepted

    @staticmethod
    def _stream_offset(session: AudioSession) -> float:
        bytes_per_second = session.metadata.bytes_per_second
        if bytes_per_second <= 0:
            return 0.0
        return session.total_bytes / bytes_per_second

    def append_chunk(self, session_id: str, chunk: AudioChunk) -> AudioChunk:
        """Append a chunk and return it with its authoritative sequence number."""
        session = self._get(session_id)
        with session.condition:
            return self._append_locked(session, chunk)

    @contextmanager
    def ingest(self, session_id: str, chunk: AudioChunk) -> Iterator[AudioChunk]:
        """Append a chunk and keep it marked in flight until the block exits.

        The body runs without any lock held, so a backend can be called from it.
        Finalization waits for every in-flight chunk.
        """
        session = self._get(session_id)
        with session.condition:
            accepted = self._append_locked(session, chunk)
            session.in_flight += 1
        try:
            yield accepted
        finally:
            with session.condition:
                session.in_flight -= 1
                session.condition.notify_all()

    def add_segment(self, session_id: str, segment: TranscriptSegment) -> None:
        """Merge a partial segment produced by a real-time backend."""
        session = self._get(session_id)
        with session.condition:
            if session.evicted:
                raise SessionNotFoundError(session_id)
            session.segments.append(segment)
            session.last_activity_at = time.time()

    def finalize(self, session_id: str) -> SessionSnapshot:
        """Mark the session Completed and return its accumulated state.

        Blocks until in-flight chunks have been merged. The session stays readable
        for the eviction grace window.
        """
        session = self._get(session_id)
        with session.condition:
            session.condition.wait_for(lambda: session.in_flight == 0)
            if session.evicted:
                raise SessionNotFoundError(session_id)
            if not session.status.is_active:
                raise AlreadyTerminalError(
                    f"Session {session_id} is already {session.status.value}",
                    code="SESSION_CLOSED")
            session.status = SessionStatus.COMPLETED
            session.last_activity_at = time.time()
            snapshot = self._snapshot_locked(session)

        self._schedule_eviction(session)
        logger.info(f"Finalized session {session_id}: {snapshot.chunk_count} chunks, "
                    f"{snapshot.total_bytes} bytes")
        return snapshot

    def abort(self, session_id: str) -> None:
        """Mark the session Failed and remove it immediately."""
        with self.lock:
            session = self._sessions.pop(session_id, None)
            timer = self._eviction_timers.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        if timer is not None:
            timer.cancel()

        with session.condition:
            session.status = SessionStatus.FAILED
            session.evicted = True
            session.condition.notify_all()
        logger.info(f"Aborted session {session_id}")

    def snapshot(self, session_id: str) -> SessionSnapshot:
        session = self._get(session_id)
        with session.condition:
            return self._snapshot_locked(session)

    def get_stream_settings(self, session_id: str) -> Tuple[StreamMetadata, ProcessingOptions, ProcessingMode]:
        """Return copies of the metadata and options the session was created with, plus its mode."""
        session = self._get(session_id)
        with session.condition:
            return copy.copy(session.metadata), copy.copy(session.options), session.mode

    def get_status(self, session_id: str) -> SessionStatus:
        session = self._get(session_id)
        with session.condition:
            return session.status

    def is_active(self, session_id: str) -> bool:
        with self.lock:
            session = self._sessions.get(session_id)
        if session is None:
            return False
        with session.condition:
            return session.status.is_active

    def active_count(self) -> int:
        with self.lock:
            sessions = list(self._sessions.values())
        return sum(1 for session in sessions if session.status.is_active)

    def _snapshot_locked(self, session: AudioSession) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=session.id,
            metadata=copy.copy(session.metadata),
            options=copy.copy(session.options),
            mode=session.mode,
            status=session.status,
            chunks=tuple(session.chunks),
            segments=tuple(session.segments),
            chunk_count=session.chunk_count,
            total_bytes=session.total_bytes,
            created_at=session.created_at,
            last_activity_at=session.last_activity_at,
        )

    def _schedule_eviction(self, session: AudioSession) -> None:
        if self.eviction_grace_seconds == 0:
            self._evict(session)
            return

        timer = threading.Timer(self.eviction_grace_seconds, self._evict, args=(session,))
        timer.daemon = True
        with self.lock:
            if self._closed:
                return
            self._eviction_timers[session.id] = timer
        timer.start()

    def _evict(self, session: AudioSession) -> None:
        with self.lock:
            # A new session may have reused the id after an abort
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]
            self._eviction_timers.pop(session.id, None)
        with session.condition:
            session.evicted = True
        logger.debug(f"Evicted session {session.id}")

    def shutdown(self) -> None:
        """Cancel pending evictions and drop every session."""
        with self.lock:
            self._closed = True
            timers = list(self._eviction_timers.values())
            self._eviction_timers.clear()
            self._sessions.clear()
        for timer in timers:
            timer.cancel()
        logger.info("SessionRegistry shut down")

    def __len__(self) -> int:
        with self.lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self.lock:
            return session_id in self._sessions
