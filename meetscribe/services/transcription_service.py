"""Transcription lifecycle orchestration: start, stream chunks, complete, abort."""

import copy
import logging
import threading
from datetime import datetime
from typing import Dict, Optional

from pydantic import ValidationError

from .event_bus import EventBus
from .saga import Saga, wrap_error
from ..audio.session_registry import resolve_mode
from ..config import MeetscribeConfig
from ..errors import (
    ABORT_SESSION_FAILED,
    END_SESSION_FAILED,
    PROCESS_CHUNK_FAILED,
    START_SESSION_FAILED,
    AlreadyTerminalError,
    MeetingNotFoundError,
    PersistenceError,
    ProviderFailureError,
    SessionNotFoundError,
    TranscriptionError,
    TranscriptionNotFoundError,
    ValidationFailedError,
)
from ..models.audio import AudioChunk, ProcessingOptions, StreamMetadata
from ..models.commands import (
    AbortTranscriptionCommand,
    AbortTranscriptionResult,
    CompleteTranscriptionCommand,
    CompleteTranscriptionResult,
    ProcessAudioChunkCommand,
    ProcessAudioChunkResult,
    StartTranscriptionCommand,
    StartTranscriptionResult,
)
from ..models.events import (
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_FAILED,
    TRANSCRIPTION_PROCESSING,
    TRANSCRIPTION_STARTED,
    TranscriptionCompletedEvent,
    TranscriptionFailedEvent,
    TranscriptionProcessingEvent,
    TranscriptionStartedEvent,
)
from ..models.meeting import BotSession
from ..models.transcription import ProcessingResult, Transcription, TranscriptionStatus
from ..storage.repositories import MeetingRepository, TranscriptionRepository
from ..transcription.assembly import average_confidence, segments_to_text
from ..transcription.factory import AudioProcessorFactory

logger = logging.getLogger(__name__)


def _validate(model_cls, **data):
    try:
        return model_cls(**data)
    except ValidationError as e:
        raise ValidationFailedError(f"Invalid {model_cls.__name__}: {e}", cause=e) from e


class TranscriptionService:
    """Drives the Transcription aggregate through its lifecycle.

    The Transcription's terminal state is guaranteed; Meeting and BotSession
    status updates are best-effort and never undo a completed transcription.
    """

    def __init__(self,
                 transcription_repo: TranscriptionRepository,
                 meeting_repo: MeetingRepository,
                 processor_factory: AudioProcessorFactory,
                 event_bus: EventBus,
                 config: Optional[MeetscribeConfig] = None):
        """Initialize transcription service.

        Args:
            transcription_repo: Transcription persistence
            meeting_repo: Meeting and BotSession persistence
            processor_factory: Provider selection
            event_bus: Lifecycle event publisher
            config: Policy configuration (defaults when None)
        """
        self.transcription_repo = transcription_repo
        self.meeting_repo = meeting_repo
        self.processor_factory = processor_factory
        self.event_bus = event_bus
        self.config = config or MeetscribeConfig()

        self.min_chunk_bytes = self.config.get_min_chunk_bytes()
        self.reject_terminal = self.config.reject_terminal_commands()
        self.anonymous_speaker_labels = self.config.get_anonymous_speaker_labels()

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        logger.info(f"TranscriptionService initialized (reject_terminal={self.reject_terminal}, "
                    f"min_chunk_bytes={self.min_chunk_bytes})")

    # ------------------------------------------------------------------ start

    def start_transcription(self,
                            meeting_id: str,
                            metadata: Optional[StreamMetadata] = None,
                            options: Optional[ProcessingOptions] = None,
                            create_bot_session: bool = False) -> StartTranscriptionResult:
        """Create a transcription for a meeting and open a backend session for it.

        Raises:
            ValidationFailedError: Malformed input
            MeetingNotFoundError: Unknown meeting (nothing is persisted)
            ProviderFailureError: Backend could not start the session (code START_SESSION_FAILED)
            PersistenceError: Transcription or bot session could not be stored
        """
        command = _validate(StartTranscriptionCommand, meeting_id=meeting_id, metadata=metadata,
                            options=options, create_bot_session=create_bot_session)

        meeting = self.meeting_repo.find_meeting_by_id(command.meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(command.meeting_id)

        metadata = copy.copy(command.metadata)
        metadata.meeting_id = meeting.id
        metadata.user_id = metadata.user_id or meeting.user_id
        options = command.options
        mode = resolve_mode(metadata, options)

        provider = self.processor_factory.provider_for(options)
        processor = self.processor_factory.get_processor(provider)

        def create_transcription(results):
            transcription = Transcription(meeting_id=meeting.id, provider=provider)
            self.transcription_repo.save(transcription)
            logger.info(f"Created transcription {transcription.id} for meeting {meeting.id} ({provider})")
            return transcription

        def create_bot_session(results):
            transcription = results["transcription"]
            bot_session = BotSession(
                meeting_id=meeting.id,
                session_id=results["session"],
                metadata={
                    "transcription_id": transcription.id,
                    "provider": provider,
                    "mode": mode.value,
                    "speaker_diarization": options.speaker_diarization,
                },
            )
            bot_session.activate()
            self.meeting_repo.save_bot_session(bot_session)
            return bot_session

        def start_meeting(results):
            current = self.meeting_repo.find_meeting_by_id(meeting.id)
            if current is None:
                raise MeetingNotFoundError(meeting.id)
            current.start()
            self.meeting_repo.update_meeting(current)

        saga = Saga("start-transcription")
        saga.step("transcription", create_transcription,
                  compensation=lambda r: self._fail_transcription(r["transcription"].id),
                  error=wrap_error(PersistenceError, "Could not create transcription"))
        saga.step("session", lambda r: processor.start_session(metadata, options),
                  compensation=lambda r: processor.abort_session(r["session"]),
                  error=wrap_error(ProviderFailureError, "Could not start transcription session",
                                   code=START_SESSION_FAILED, passthrough=False))
        if command.create_bot_session:
            saga.step("bot_session", create_bot_session,
                      error=wrap_error(PersistenceError, "Could not create bot session"))
        saga.step("meeting", start_meeting, best_effort=True)

        try:
            results = saga.run()
        except TranscriptionError as e:
            transcription = saga.results.get("transcription")
            if transcription is not None:
                self._publish_failed(transcription, saga.results.get("session"), e)
            raise

        transcription = results["transcription"]
        session_id = results["session"]
        bot_session = results.get("bot_session")
        bot_session_id = bot_session.id if bot_session is not None else None

        self.event_bus.publish(TRANSCRIPTION_STARTED, TranscriptionStartedEvent(
            transcription_id=transcription.id,
            meeting_id=meeting.id,
            session_id=session_id,
            provider=provider,
            bot_session_id=bot_session_id,
        ))
        logger.info(f"Transcription {transcription.id} started: session {session_id}, mode {mode.value}")
        return StartTranscriptionResult(
            transcription_id=transcription.id,
            session_id=session_id,
            meeting_id=meeting.id,
            provider=provider,
            bot_session_id=bot_session_id,
        )

    # ----------------------------------------------------------------- chunks

    def process_audio_chunk(self, transcription_id: str, session_id: str,
                            chunk: AudioChunk) -> ProcessAudioChunkResult:
        """Feed one chunk to the backend; the first qualifying chunk moves Pending to Processing.

        Raises:
            ValidationFailedError: Malformed input
            TranscriptionNotFoundError: Unknown transcription
            AlreadyTerminalError: Transcription already Completed/Failed (when rejection is enabled)
            ProviderFailureError: Backend failed on this chunk (code PROCESS_CHUNK_FAILED)
        """
        command = _validate(ProcessAudioChunkCommand, transcription_id=transcription_id,
                            session_id=session_id, chunk=chunk)
        transcription = self._load(command.transcription_id)
        if transcription.is_terminal and self.reject_terminal:
            raise AlreadyTerminalError(
                f"Transcription {transcription.id} is already {transcription.status.value}; chunk rejected")

        processor = self.processor_factory.get_processor(transcription.provider)
        try:
            processor.process_chunk(command.session_id, command.chunk)
        except Exception as e:
            logger.error(f"Chunk processing failed for transcription {transcription.id}: {e}")
            raise wrap_error(ProviderFailureError, "Could not process audio chunk",
                             code=PROCESS_CHUNK_FAILED)(e) from e

        status_changed = False
        with self._lock_for(transcription.id):
            current = self._load(transcription.id)
            if current.status == TranscriptionStatus.PENDING and command.chunk.size >= self.min_chunk_bytes:
                current.start_processing()
                self.transcription_repo.update(current)
                status_changed = True
            status = current.status
        if status.is_terminal:
            self._release_lock(transcription.id)

        if status_changed:
            logger.info(f"Transcription {transcription.id} is now processing")
            self.event_bus.publish(TRANSCRIPTION_PROCESSING, TranscriptionProcessingEvent(
                transcription_id=transcription.id,
                meeting_id=transcription.meeting_id,
                session_id=command.session_id,
            ))
        return ProcessAudioChunkResult(transcription_id=transcription.id, status=status,
                                       status_changed=status_changed)

    # --------------------------------------------------------------- complete

    def complete_transcription(self, transcription_id: str, session_id: str, meeting_id: str,
                               bot_session_id: Optional[str] = None) -> CompleteTranscriptionResult:
        """End the backend session and persist the assembled transcript.

        Raises:
            ValidationFailedError: Malformed input
            TranscriptionNotFoundError: Unknown transcription
            AlreadyTerminalError: Transcription already Completed/Failed (when rejection is enabled)
            ProviderFailureError: Backend could not end the session (code END_SESSION_FAILED);
                the transcription and bot session are then Failed
            PersistenceError: Completed transcription could not be stored
        """
        command = _validate(CompleteTranscriptionCommand, transcription_id=transcription_id,
                            session_id=session_id, meeting_id=meeting_id, bot_session_id=bot_session_id)
        transcription = self._load(command.transcription_id)
        processor = self.processor_factory.get_processor(transcription.provider)

        if transcription.is_terminal:
            if self.reject_terminal:
                raise AlreadyTerminalError(
                    f"Transcription {transcription.id} is already {transcription.status.value}; cannot complete")
            return self._end_detached(processor, transcription, command.session_id)

        def end_session(results):
            return processor.end_session(command.session_id)

        def fail_all(results):
            self._fail_transcription(transcription.id)
            if command.bot_session_id:
                self._fail_bot_session(command.bot_session_id)

        def persist(results):
            result: ProcessingResult = results["end_session"]
            content = segments_to_text(result.segments, self.anonymous_speaker_labels)
            confidence = average_confidence(result.segments)
            with self._lock_for(transcription.id):
                current = self._load(transcription.id)
                if current.status == TranscriptionStatus.PENDING:
                    current.start_processing()
                current.complete(content, confidence, result.segments, audio_file_path=result.artifact_url)
                self.transcription_repo.update(current)
                self.transcription_repo.save_segments(current.id, current.segments)
            return current

        def complete_meeting(results):
            meeting = self.meeting_repo.find_meeting_by_id(command.meeting_id)
            if meeting is None:
                raise MeetingNotFoundError(command.meeting_id)
            meeting.complete(end_time=datetime.now())
            self.meeting_repo.update_meeting(meeting)

        def complete_bot_session(results):
            bot_session = self.meeting_repo.find_bot_session_by_id(command.bot_session_id)
            if bot_session is None:
                logger.warning(f"Bot session {command.bot_session_id} not found; skipping")
                return None
            bot_session.complete(left_at=datetime.now())
            self.meeting_repo.update_bot_session(bot_session)
            return bot_session

        saga = Saga("complete-transcription")
        saga.step("transcription", lambda r: transcription, compensation=fail_all)
        saga.step("end_session", end_session,
                  error=wrap_error(ProviderFailureError, "Could not end transcription session",
                                   code=END_SESSION_FAILED, passthrough=False))
        saga.step("persist", persist, error=wrap_error(PersistenceError, "Could not store completed transcription"))
        saga.step("meeting", complete_meeting, best_effort=True)
        if command.bot_session_id:
            saga.step("bot_session", complete_bot_session, best_effort=True)

        try:
            results = saga.run()
        except TranscriptionError as e:
            self._publish_failed(transcription, command.session_id, e)
            raise
        finally:
            self._release_lock(transcription.id)

        completed: Transcription = results["persist"]
        result: ProcessingResult = results["end_session"]

        self.event_bus.publish(TRANSCRIPTION_COMPLETED, TranscriptionCompletedEvent(
            transcription_id=completed.id,
            meeting_id=completed.meeting_id,
            session_id=command.session_id,
            segment_count=len(completed.segments),
            confidence=completed.confidence,
            processing_mode=result.processing_mode,
        ))
        logger.info(f"Transcription {completed.id} completed: {len(completed.segments)} segments, "
                    f"confidence {completed.confidence:.2f}")
        return CompleteTranscriptionResult(
            transcription_id=completed.id,
            status=completed.status,
            content=completed.content,
            confidence=completed.confidence,
            segment_count=len(completed.segments),
            processing_mode=result.processing_mode,
            audio_file_path=completed.audio_file_path,
        )

    def _end_detached(self, processor, transcription: Transcription, session_id: str) -> CompleteTranscriptionResult:
        """End the backend session of an already-terminal transcription, leaving the aggregate untouched."""
        logger.warning(f"Completing already-{transcription.status.value} transcription {transcription.id}; "
                       f"ending backend session only")
        try:
            result = processor.end_session(session_id)
        except Exception as e:
            raise wrap_error(ProviderFailureError, "Could not end transcription session",
                             code=END_SESSION_FAILED, passthrough=False)(e) from e
        return CompleteTranscriptionResult(
            transcription_id=transcription.id,
            status=transcription.status,
            content=transcription.content,
            confidence=transcription.confidence,
            segment_count=len(transcription.segments),
            processing_mode=result.processing_mode,
            audio_file_path=transcription.audio_file_path,
        )

    # ------------------------------------------------------------------ abort

    def abort_transcription(self, transcription_id: str, session_id: str,
                            bot_session_id: Optional[str] = None,
                            reason: str = "aborted") -> AbortTranscriptionResult:
        """Tear down the backend session immediately and fail the transcription.

        Raises:
            ValidationFailedError: Malformed input
            TranscriptionNotFoundError: Unknown transcription
            AlreadyTerminalError: Transcription already Completed/Failed (when rejection is enabled)
            ProviderFailureError: Backend failed while aborting (code ABORT_SESSION_FAILED)
        """
        command = _validate(AbortTranscriptionCommand, transcription_id=transcription_id,
                            session_id=session_id, bot_session_id=bot_session_id, reason=reason)
        transcription = self._load(command.transcription_id)
        if transcription.is_terminal and self.reject_terminal:
            raise AlreadyTerminalError(
                f"Transcription {transcription.id} is already {transcription.status.value}; cannot abort")

        processor = self.processor_factory.get_processor(transcription.provider)
        try:
            processor.abort_session(command.session_id)
        except SessionNotFoundError:
            logger.warning(f"Session {command.session_id} already gone while aborting {transcription.id}")
        except Exception as e:
            raise wrap_error(ProviderFailureError, "Could not abort transcription session",
                             code=ABORT_SESSION_FAILED)(e) from e

        status = self._fail_transcription(transcription.id)

        if command.bot_session_id:
            self._best_effort("fail bot session", self._fail_bot_session, command.bot_session_id)
        self._best_effort("fail meeting", self._fail_meeting, transcription.meeting_id)

        self.event_bus.publish(TRANSCRIPTION_FAILED, TranscriptionFailedEvent(
            transcription_id=transcription.id,
            meeting_id=transcription.meeting_id,
            session_id=command.session_id,
            error_code="ABORTED",
            reason=command.reason,
        ))
        logger.info(f"Transcription {transcription.id} aborted: {command.reason}")
        return AbortTranscriptionResult(transcription_id=transcription.id, status=status)

    # ----------------------------------------------------------------- status

    def get_session_status(self, transcription_id: str, session_id: str) -> ProcessingResult:
        """Partial backend result for a transcription's session. Read-only."""
        transcription = self._load(transcription_id)
        processor = self.processor_factory.get_processor(transcription.provider)
        return processor.get_session_status(session_id)

    def get_transcription(self, transcription_id: str) -> Transcription:
        return self._load(transcription_id)

    # ---------------------------------------------------------------- helpers

    def _load(self, transcription_id: str) -> Transcription:
        transcription = self.transcription_repo.find_by_id(transcription_id)
        if transcription is None:
            raise TranscriptionNotFoundError(transcription_id)
        return transcription

    def _lock_for(self, transcription_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(transcription_id)
            if lock is None:
                lock = self._locks[transcription_id] = threading.Lock()
            return lock

    def _release_lock(self, transcription_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(transcription_id, None)

    def _fail_transcription(self, transcription_id: str) -> TranscriptionStatus:
        """Move a transcription to Failed unless it already is terminal. Returns its final status.

        A terminal transcription never takes the lock again, so it is dropped here.
        """
        try:
            with self._lock_for(transcription_id):
                current = self._load(transcription_id)
                if current.is_terminal:
                    logger.warning(f"Transcription {transcription_id} already {current.status.value}; "
                                   f"not failing it")
                    return current.status
                current.fail()
                self.transcription_repo.update(current)
        finally:
            self._release_lock(transcription_id)
        logger.info(f"Transcription {transcription_id} marked failed")
        return current.status

    def _fail_bot_session(self, bot_session_id: str) -> None:
        bot_session = self.meeting_repo.find_bot_session_by_id(bot_session_id)
        if bot_session is None:
            logger.warning(f"Bot session {bot_session_id} not found; cannot mark it failed")
            return
        bot_session.fail()
        self.meeting_repo.update_bot_session(bot_session)

    def _fail_meeting(self, meeting_id: str) -> None:
        meeting = self.meeting_repo.find_meeting_by_id(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(meeting_id)
        meeting.fail()
        self.meeting_repo.update_meeting(meeting)

    def _best_effort(self, description: str, action, *args) -> None:
        try:
            action(*args)
        except Exception as e:
            logger.warning(f"Best-effort update '{description}' failed: {e}")

    def _publish_failed(self, transcription: Transcription, session_id: Optional[str],
                        error: TranscriptionError) -> None:
        self.event_bus.publish(TRANSCRIPTION_FAILED, TranscriptionFailedEvent(
            transcription_id=transcription.id,
            meeting_id=transcription.meeting_id,
            session_id=session_id,
            error_code=error.code,
            reason=error.message,
        ))
