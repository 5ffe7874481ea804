"""Pytest configuration and fixtures for meetscribe tests."""

import pytest
import tempfile
import logging
import numpy as np

from meetscribe.audio.session_registry import SessionRegistry
from meetscribe.config import MeetscribeConfig
from meetscribe.models.audio import AudioChunk, ProcessingMode, ProcessingOptions, StreamMetadata
from meetscribe.models.meeting import Meeting
from meetscribe.services.event_bus import EventBus
from meetscribe.services.transcription_service import TranscriptionService
from meetscribe.storage.repositories import InMemoryMeetingRepository, InMemoryTranscriptionRepository
from meetscribe.transcription.factory import AudioProcessorFactory


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate  # ~0.064 seconds
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000):
        """Generate audio data for testing.

        Args:
            pattern: Type of audio pattern ('sine', 'noise', 'silence')
            duration_seconds: Duration of audio
            sample_rate: Sample rate in Hz

        Returns:
            bytes: Audio data as bytes
        """
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-1, 1, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        audio_data = (wave_data * 32767).astype(np.int16)
        return audio_data.tobytes()

    return generate_audio


@pytest.fixture
def make_chunk(sample_audio_chunk):
    """Build AudioChunks; the payload defaults to the sine fixture."""
    def _make(data=None, sequence_number=None):
        return AudioChunk(data=sample_audio_chunk if data is None else data, sequence_number=sequence_number)
    return _make


@pytest.fixture
def realtime_options():
    return ProcessingOptions(mode=ProcessingMode.REALTIME)


@pytest.fixture
def batch_options():
    return ProcessingOptions(mode=ProcessingMode.BATCH)


@pytest.fixture
def stream_metadata():
    return StreamMetadata(meeting_id="meeting-1", user_id="user-1")


@pytest.fixture
def test_config():
    """Configuration with defaults suited to tests (no eviction during a test)."""
    return MeetscribeConfig(overrides={
        "registry": {"eviction_grace_seconds": 60.0},
        "events": {"max_workers": 2},
    })


@pytest.fixture
def registry():
    reg = SessionRegistry(eviction_grace_seconds=60.0)
    yield reg
    reg.shutdown()


@pytest.fixture
def event_bus():
    bus = EventBus(max_workers=2)
    yield bus
    bus.shutdown()


class EventRecorder:
    """Collects event payloads per topic."""

    def __init__(self):
        self.events = {}

    def handler_for(self, topic):
        def handler(payload):
            self.events.setdefault(topic, []).append(payload)
        return handler

    def of(self, topic):
        return list(self.events.get(topic, []))


@pytest.fixture
def recorder(event_bus):
    from meetscribe.models.events import ALL_TOPICS

    rec = EventRecorder()
    for topic in ALL_TOPICS:
        event_bus.subscribe(topic, rec.handler_for(topic))
    return rec


@pytest.fixture
def meeting_repo():
    return InMemoryMeetingRepository()


@pytest.fixture
def transcription_repo():
    return InMemoryTranscriptionRepository()


@pytest.fixture
def meeting(meeting_repo):
    m = Meeting(user_id="user-1", title="Weekly sync")
    meeting_repo.save_meeting(m)
    return m


@pytest.fixture
def processor_factory(test_config, registry):
    return AudioProcessorFactory(test_config, registry)


@pytest.fixture
def service(transcription_repo, meeting_repo, processor_factory, event_bus, test_config):
    return TranscriptionService(transcription_repo, meeting_repo, processor_factory, event_bus, test_config)
