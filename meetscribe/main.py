"""Composition root for meetscribe."""

import sys
import logging
from pathlib import Path
from typing import Optional

from .audio.session_registry import SessionRegistry
from .config import MeetscribeConfig
from .services.event_bus import EventBus
from .services.transcription_service import TranscriptionService
from .storage.audio_store import LocalAudioStore
from .storage.repositories import InMemoryMeetingRepository, InMemoryTranscriptionRepository
from .transcription.factory import AudioProcessorFactory

logger = logging.getLogger(__name__)


class Application:
    """Wires the registry, processors, event bus, repositories and service together."""

    def __init__(self, config_path: Optional[str] = None, config: Optional[MeetscribeConfig] = None,
                 configure_logging: bool = False):
        """Build the application.

        Args:
            config_path: Path to YAML config file (ignored when `config` is given)
            config: Ready configuration object
            configure_logging: Install the file/console log handlers
        """
        self.config = config or MeetscribeConfig(config_path)
        if configure_logging:
            setup_logging(self.config, self.config.get('logging.level', 'INFO'))

        logger.info("Initializing services...")
        self.registry = SessionRegistry(self.config.get_eviction_grace_seconds())
        self.audio_store = None
        if self.config.get('storage.archive_audio', False):
            self.audio_store = LocalAudioStore(self.config.get_data_directory())

        self.processor_factory = AudioProcessorFactory(self.config, self.registry, self.audio_store)
        self.event_bus = EventBus(max_workers=int(self.config.get('events.max_workers', 4)))
        self.transcription_repo = InMemoryTranscriptionRepository()
        self.meeting_repo = InMemoryMeetingRepository()
        self.transcription_service = TranscriptionService(
            self.transcription_repo,
            self.meeting_repo,
            self.processor_factory,
            self.event_bus,
            self.config,
        )

    def shutdown(self) -> None:
        self.event_bus.shutdown()
        self.registry.shutdown()
        logger.info("Application shut down")

    def __enter__(self) -> "Application":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


def setup_logging(config: MeetscribeConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/meetscribe.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("meetscribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)
