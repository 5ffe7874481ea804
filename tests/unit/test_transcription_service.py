"""Unit tests for TranscriptionService orchestration."""

import threading
from unittest.mock import patch

import pytest

from meetscribe.config import MeetscribeConfig
from meetscribe.errors import (
    AlreadyTerminalError,
    MeetingNotFoundError,
    PersistenceError,
    ProviderFailureError,
    SessionNotFoundError,
    TranscriptionNotFoundError,
    ValidationFailedError,
)
from meetscribe.models.audio import AudioChunk, ProcessingMode, ProcessingOptions, StreamMetadata
from meetscribe.models.events import (
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_FAILED,
    TRANSCRIPTION_PROCESSING,
    TRANSCRIPTION_STARTED,
)
from meetscribe.models.meeting import BotSessionStatus, MeetingStatus
from meetscribe.models.transcription import (
    ProcessingResult,
    TranscriptionStatus,
    TranscriptSegment,
)
from meetscribe.services.transcription_service import TranscriptionService
from meetscribe.transcription.factory import AudioProcessorFactory
from meetscribe.transcription.mock_processor import MOCK_SENTENCES, InMemoryAudioProcessor


@pytest.fixture
def make_service(transcription_repo, meeting_repo, registry, event_bus):
    """Build a service with config overrides."""
    def _make(**overrides):
        config = MeetscribeConfig(overrides=overrides)
        factory = AudioProcessorFactory(config, registry)
        return TranscriptionService(transcription_repo, meeting_repo, factory, event_bus, config)
    return _make


def start(service, meeting, mode=ProcessingMode.REALTIME, **option_values):
    options = ProcessingOptions(mode=mode, **option_values)
    return service.start_transcription(meeting.id, StreamMetadata(), options, create_bot_session=True)


@pytest.mark.unit
class TestStartTranscription:
    """Test cases for start_transcription."""

    def test_start_creates_everything(self, service, meeting, transcription_repo, meeting_repo, registry,
                                      event_bus, recorder):
        result = start(service, meeting, speaker_diarization=True)

        transcription = transcription_repo.find_by_id(result.transcription_id)
        assert transcription.status == TranscriptionStatus.PENDING
        assert transcription.provider == "mock"
        assert result.provider == "mock"
        assert result.meeting_id == meeting.id
        assert registry.is_active(result.session_id)

        bot_session = meeting_repo.find_bot_session_by_id(result.bot_session_id)
        assert bot_session.status == BotSessionStatus.ACTIVE
        assert bot_session.session_id == result.session_id
        assert bot_session.metadata == {
            "transcription_id": result.transcription_id,
            "provider": "mock",
            "mode": "realtime",
            "speaker_diarization": True,
        }
        assert meeting_repo.find_meeting_by_id(meeting.id).status == MeetingStatus.IN_PROGRESS

        assert event_bus.wait_idle(2.0)
        started = recorder.of(TRANSCRIPTION_STARTED)
        assert len(started) == 1
        assert started[0].transcription_id == result.transcription_id
        assert started[0].session_id == result.session_id

    def test_session_carries_meeting_context(self, service, meeting, registry):
        result = service.start_transcription(meeting.id, StreamMetadata(), ProcessingOptions())

        metadata, _, _ = registry.get_stream_settings(result.session_id)
        assert metadata.meeting_id == meeting.id
        assert metadata.user_id == meeting.user_id
        assert result.bot_session_id is None

    def test_unknown_meeting_persists_nothing(self, service, transcription_repo, registry):
        with pytest.raises(MeetingNotFoundError) as exc_info:
            service.start_transcription("no-such-meeting")

        assert exc_info.value.code == "MEETING_NOT_FOUND"
        assert transcription_repo.find_by_meeting_id("no-such-meeting") == []
        assert transcription_repo.find_by_status(TranscriptionStatus.PENDING) == []
        assert len(registry) == 0

    def test_unknown_provider_falls_back_to_mock(self, service, meeting):
        result = service.start_transcription(meeting.id, options=ProcessingOptions(provider="whisper"))
        assert result.provider == "mock"

    def test_blank_meeting_id_rejected(self, service):
        with pytest.raises(ValidationFailedError):
            service.start_transcription("  ")

    def test_start_session_failure_fails_transcription(self, service, meeting, transcription_repo,
                                                       event_bus, recorder):
        with patch.object(InMemoryAudioProcessor, "start_session", side_effect=ConnectionError("down")):
            with pytest.raises(ProviderFailureError) as exc_info:
                service.start_transcription(meeting.id)

        assert exc_info.value.code == "START_SESSION_FAILED"
        transcriptions = transcription_repo.find_by_meeting_id(meeting.id)
        assert [t.status for t in transcriptions] == [TranscriptionStatus.FAILED]

        assert event_bus.wait_idle(2.0)
        failed = recorder.of(TRANSCRIPTION_FAILED)
        assert len(failed) == 1
        assert failed[0].error_code == "START_SESSION_FAILED"
        assert recorder.of(TRANSCRIPTION_STARTED) == []

    def test_duplicate_session_reports_start_failure(self, service, meeting, transcription_repo):
        service.start_transcription(meeting.id, StreamMetadata(session_id="fixed"))

        with pytest.raises(ProviderFailureError) as exc_info:
            service.start_transcription(meeting.id, StreamMetadata(session_id="fixed"))

        assert exc_info.value.code == "START_SESSION_FAILED"
        assert isinstance(exc_info.value.cause, ValidationFailedError)
        assert exc_info.value.cause.code == "DUPLICATE_SESSION"
        statuses = sorted(t.status.value for t in transcription_repo.find_by_meeting_id(meeting.id))
        assert statuses == ["failed", "pending"]

    def test_failed_starts_leave_no_locks(self, service, meeting):
        with patch.object(InMemoryAudioProcessor, "start_session", side_effect=ConnectionError("down")):
            for _ in range(3):
                with pytest.raises(ProviderFailureError):
                    service.start_transcription(meeting.id)

        assert service._locks == {}

    def test_bot_session_failure_compensates(self, service, meeting, meeting_repo, transcription_repo, registry):
        with patch.object(meeting_repo, "save_bot_session", side_effect=IOError("db down")):
            with pytest.raises(PersistenceError):
                service.start_transcription(meeting.id, create_bot_session=True)

        transcriptions = transcription_repo.find_by_meeting_id(meeting.id)
        assert [t.status for t in transcriptions] == [TranscriptionStatus.FAILED]
        assert len(registry) == 0
        assert meeting_repo.find_meeting_by_id(meeting.id).status == MeetingStatus.SCHEDULED

    def test_meeting_update_is_best_effort(self, service, meeting, meeting_repo):
        with patch.object(meeting_repo, "update_meeting", side_effect=IOError("db down")):
            result = service.start_transcription(meeting.id)

        assert result.transcription_id


@pytest.mark.unit
class TestProcessAudioChunk:
    """Test cases for process_audio_chunk."""

    def test_first_chunk_transitions_once(self, service, meeting, make_chunk, transcription_repo,
                                          event_bus, recorder):
        started = start(service, meeting)

        first = service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())
        second = service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        assert first.status_changed is True
        assert first.status == TranscriptionStatus.PROCESSING
        assert second.status_changed is False
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.PROCESSING

        assert event_bus.wait_idle(2.0)
        assert len(recorder.of(TRANSCRIPTION_PROCESSING)) == 1

    def test_concurrent_first_chunks_publish_once(self, service, meeting, event_bus, recorder):
        started = start(service, meeting)
        barrier = threading.Barrier(6)
        errors = []

        def worker():
            barrier.wait()
            try:
                service.process_audio_chunk(started.transcription_id, started.session_id,
                                            AudioChunk(data=b"\x00\x01" * 100))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert event_bus.wait_idle(2.0)
        assert len(recorder.of(TRANSCRIPTION_PROCESSING)) == 1

    def test_min_chunk_bytes(self, make_service, meeting, transcription_repo):
        service = make_service(lifecycle={"min_chunk_bytes_for_processing": 100})
        started = start(service, meeting)

        small = service.process_audio_chunk(started.transcription_id, started.session_id, AudioChunk(data=b"\x00"))
        assert small.status == TranscriptionStatus.PENDING

        big = service.process_audio_chunk(started.transcription_id, started.session_id,
                                          AudioChunk(data=b"\x00" * 100))
        assert big.status_changed is True

    def test_chunk_failure_is_not_terminal(self, service, meeting, transcription_repo):
        started = start(service, meeting)

        with patch.object(InMemoryAudioProcessor, "transcribe_chunk", side_effect=TimeoutError("slow")):
            with pytest.raises(ProviderFailureError) as exc_info:
                service.process_audio_chunk(started.transcription_id, started.session_id, AudioChunk(data=b"\x00"))

        assert exc_info.value.code == "PROCESS_CHUNK_FAILED"
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.PENDING

    def test_unknown_transcription(self, service, make_chunk):
        with pytest.raises(TranscriptionNotFoundError):
            service.process_audio_chunk("missing", "session", make_chunk())

    def test_unknown_session(self, service, meeting, make_chunk):
        started = start(service, meeting)
        with pytest.raises(SessionNotFoundError):
            service.process_audio_chunk(started.transcription_id, "other-session", make_chunk())

    def test_invalid_chunk(self, service, meeting):
        started = start(service, meeting)
        with pytest.raises(ValidationFailedError):
            service.process_audio_chunk(started.transcription_id, started.session_id, b"not a chunk")


@pytest.mark.unit
class TestCompleteTranscription:
    """Test cases for complete_transcription."""

    def test_complete_realtime_with_speakers(self, service, meeting, make_chunk, transcription_repo,
                                             meeting_repo, event_bus, recorder):
        started = start(service, meeting, speaker_diarization=True)
        for _ in range(3):
            service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id,
                                                started.bot_session_id)

        assert result.status == TranscriptionStatus.COMPLETED
        assert result.segment_count == 3
        assert result.processing_mode == ProcessingMode.REALTIME
        assert result.confidence == 0.9
        assert result.content == "\n".join([
            f"Speaker A: {MOCK_SENTENCES[0]}",
            f"Speaker B: {MOCK_SENTENCES[1]}",
            f"Speaker C: {MOCK_SENTENCES[2]}",
        ])

        stored = transcription_repo.find_by_id(started.transcription_id)
        assert stored.status == TranscriptionStatus.COMPLETED
        assert stored.audio_file_path == f"mock://meetings/{meeting.id}/audio/{started.session_id}.wav"
        assert [s.sequence_number for s in transcription_repo.find_segments(stored.id)] == [1, 2, 3]

        stored_meeting = meeting_repo.find_meeting_by_id(meeting.id)
        assert stored_meeting.status == MeetingStatus.COMPLETED
        assert stored_meeting.end_time is not None
        bot_session = meeting_repo.find_bot_session_by_id(started.bot_session_id)
        assert bot_session.status == BotSessionStatus.COMPLETED
        assert bot_session.left_at is not None

        assert event_bus.wait_idle(2.0)
        completed = recorder.of(TRANSCRIPTION_COMPLETED)
        assert len(completed) == 1
        assert completed[0].segment_count == 3
        assert completed[0].processing_mode == ProcessingMode.REALTIME

    def test_confidence_and_anonymous_speaker(self, service, meeting, transcription_repo):
        started = start(service, meeting)
        segments = [
            TranscriptSegment(text="One.", start_time=0, end_time=1, confidence=0.9, sequence_number=1,
                              speaker="speaker_unknown"),
            TranscriptSegment(text="Two.", start_time=1, end_time=2, confidence=0.7, sequence_number=2,
                              speaker="Alice"),
            TranscriptSegment(text="Three.", start_time=2, end_time=3, confidence=0.8, sequence_number=3),
        ]
        canned = ProcessingResult(session_id=started.session_id, status=TranscriptionStatus.COMPLETED,
                                  processing_mode=ProcessingMode.BATCH, segments=segments)

        with patch.object(InMemoryAudioProcessor, "end_session", return_value=canned):
            result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        assert result.confidence == 0.8
        assert "speaker_unknown:" not in result.content
        assert result.content == "One.\nAlice: Two.\nThree."

    def test_complete_zero_chunk_batch(self, service, meeting, transcription_repo):
        started = start(service, meeting, mode=ProcessingMode.BATCH)

        result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        assert result.status == TranscriptionStatus.COMPLETED
        assert result.segment_count == 0
        assert result.content == ""
        assert result.confidence == 0.0

    def test_complete_batch(self, service, meeting, make_chunk):
        started = start(service, meeting, mode=ProcessingMode.BATCH)
        for _ in range(2):
            service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        assert result.processing_mode == ProcessingMode.BATCH
        assert result.content == f"{MOCK_SENTENCES[0]}\n{MOCK_SENTENCES[1]}"

    def test_end_session_failure_fails_everything(self, service, meeting, transcription_repo, meeting_repo,
                                                  make_chunk, event_bus, recorder):
        started = start(service, meeting)
        service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        with patch.object(InMemoryAudioProcessor, "end_session", side_effect=ConnectionError("down")):
            with pytest.raises(ProviderFailureError) as exc_info:
                service.complete_transcription(started.transcription_id, started.session_id, meeting.id,
                                               started.bot_session_id)

        assert exc_info.value.code == "END_SESSION_FAILED"
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.FAILED
        assert meeting_repo.find_bot_session_by_id(started.bot_session_id).status == BotSessionStatus.FAILED
        assert transcription_repo.find_segments(started.transcription_id) == []

        assert event_bus.wait_idle(2.0)
        failed = recorder.of(TRANSCRIPTION_FAILED)
        assert [e.error_code for e in failed] == ["END_SESSION_FAILED"]
        assert recorder.of(TRANSCRIPTION_COMPLETED) == []

    def test_unknown_session_reports_end_failure(self, service, meeting, transcription_repo):
        started = start(service, meeting)

        with pytest.raises(ProviderFailureError) as exc_info:
            service.complete_transcription(started.transcription_id, "no-such-session", meeting.id)

        assert exc_info.value.code == "END_SESSION_FAILED"
        assert isinstance(exc_info.value.cause, SessionNotFoundError)
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.FAILED

    def test_already_finalized_session_reports_end_failure(self, service, meeting, registry, transcription_repo):
        started = start(service, meeting)
        registry.finalize(started.session_id)

        with pytest.raises(ProviderFailureError) as exc_info:
            service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        assert exc_info.value.code == "END_SESSION_FAILED"
        assert isinstance(exc_info.value.cause, AlreadyTerminalError)
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.FAILED

    def test_finished_transcriptions_leave_no_locks(self, service, meeting, make_chunk):
        completed = start(service, meeting)
        service.process_audio_chunk(completed.transcription_id, completed.session_id, make_chunk())
        service.complete_transcription(completed.transcription_id, completed.session_id, meeting.id)

        aborted = start(service, meeting)
        service.process_audio_chunk(aborted.transcription_id, aborted.session_id, make_chunk())
        service.abort_transcription(aborted.transcription_id, aborted.session_id)

        assert service._locks == {}

    def test_secondary_updates_are_best_effort(self, service, meeting, meeting_repo, transcription_repo):
        started = start(service, meeting)

        with patch.object(meeting_repo, "update_meeting", side_effect=IOError("db down")), \
                patch.object(meeting_repo, "update_bot_session", side_effect=IOError("db down")):
            result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id,
                                                    started.bot_session_id)

        assert result.status == TranscriptionStatus.COMPLETED
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.COMPLETED

    def test_persistence_failure_propagates(self, service, meeting, transcription_repo):
        started = start(service, meeting)

        with patch.object(transcription_repo, "save_segments", side_effect=IOError("db down")):
            with pytest.raises(PersistenceError):
                service.complete_transcription(started.transcription_id, started.session_id, meeting.id)


@pytest.mark.unit
class TestTerminalPolicy:
    """Test cases for commands against Completed/Failed transcriptions."""

    def test_rejects_chunk_after_completion(self, service, meeting, make_chunk):
        started = start(service, meeting)
        service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        with patch.object(InMemoryAudioProcessor, "process_chunk") as process_chunk:
            with pytest.raises(AlreadyTerminalError):
                service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())
        process_chunk.assert_not_called()

    def test_rejects_second_completion(self, service, meeting):
        started = start(service, meeting)
        service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        with patch.object(InMemoryAudioProcessor, "end_session") as end_session:
            with pytest.raises(AlreadyTerminalError):
                service.complete_transcription(started.transcription_id, started.session_id, meeting.id)
        end_session.assert_not_called()

    def test_permissive_forwards_chunk_without_status_change(self, make_service, meeting, make_chunk,
                                                             transcription_repo):
        service = make_service(lifecycle={"reject_terminal_commands": False})
        started = start(service, meeting)
        service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        with patch.object(InMemoryAudioProcessor, "process_chunk") as process_chunk:
            result = service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        process_chunk.assert_called_once()
        assert result.status == TranscriptionStatus.COMPLETED
        assert result.status_changed is False
        assert service._locks == {}

    def test_permissive_completion_leaves_aggregate(self, make_service, meeting, transcription_repo, registry):
        service = make_service(lifecycle={"reject_terminal_commands": False})
        started = start(service, meeting)
        transcription = transcription_repo.find_by_id(started.transcription_id)
        transcription.fail()
        transcription_repo.update(transcription)

        result = service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        assert result.status == TranscriptionStatus.FAILED
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.FAILED
        assert not registry.is_active(started.session_id)


@pytest.mark.unit
class TestAbortAndStatus:
    """Test cases for abort_transcription and get_session_status."""

    def test_abort(self, service, meeting, make_chunk, transcription_repo, meeting_repo, registry,
                   event_bus, recorder):
        started = start(service, meeting)
        service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        result = service.abort_transcription(started.transcription_id, started.session_id,
                                             started.bot_session_id, reason="user hung up")

        assert result.status == TranscriptionStatus.FAILED
        assert started.session_id not in registry
        assert transcription_repo.find_by_id(started.transcription_id).status == TranscriptionStatus.FAILED
        assert meeting_repo.find_bot_session_by_id(started.bot_session_id).status == BotSessionStatus.FAILED
        assert meeting_repo.find_meeting_by_id(meeting.id).status == MeetingStatus.FAILED

        with pytest.raises(AlreadyTerminalError):
            service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        assert event_bus.wait_idle(2.0)
        failed = recorder.of(TRANSCRIPTION_FAILED)
        assert len(failed) == 1
        assert failed[0].error_code == "ABORTED"
        assert failed[0].reason == "user hung up"

    def test_abort_with_missing_session(self, service, meeting, registry, transcription_repo):
        started = start(service, meeting)
        registry.abort(started.session_id)

        result = service.abort_transcription(started.transcription_id, started.session_id)

        assert result.status == TranscriptionStatus.FAILED

    def test_get_session_status_is_read_only(self, service, meeting, make_chunk, registry):
        started = start(service, meeting)
        service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())

        for _ in range(3):
            status = service.get_session_status(started.transcription_id, started.session_id)

        assert status.chunk_count == 1
        assert len(status.segments) == 1
        assert registry.snapshot(started.session_id).chunk_count == 1

    def test_status_readable_after_completion(self, service, meeting, make_chunk):
        started = start(service, meeting)
        service.process_audio_chunk(started.transcription_id, started.session_id, make_chunk())
        service.complete_transcription(started.transcription_id, started.session_id, meeting.id)

        status = service.get_session_status(started.transcription_id, started.session_id)

        assert status.status == TranscriptionStatus.COMPLETED
