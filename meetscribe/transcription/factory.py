"""Audio processor selection and provider capabilities."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .base import AbstractAudioProcessor
from .mock_processor import InMemoryAudioProcessor
from ..audio.session_registry import SessionRegistry
from ..config import MeetscribeConfig
from ..errors import UnknownProviderError
from ..models.audio import ProcessingMode, ProcessingOptions

logger = logging.getLogger(__name__)


MOCK_PROVIDER = "mock"
GOOGLE_PROVIDER = "google"
# Let the factory pick from the session options
AUTO_PROVIDER = "auto"


@dataclass(frozen=True)
class ProviderCapabilities:
    name: str
    display_name: str
    supported_modes: List[ProcessingMode] = field(default_factory=list)
    supports_diarization: bool = False
    supports_profanity_filter: bool = False
    requires_credentials: bool = False
    max_sync_audio_seconds: Optional[float] = None


_CAPABILITIES: Dict[str, ProviderCapabilities] = {
    MOCK_PROVIDER: ProviderCapabilities(
        name=MOCK_PROVIDER,
        display_name="In-memory mock",
        supported_modes=[ProcessingMode.REALTIME, ProcessingMode.BATCH],
        supports_diarization=True,
    ),
    GOOGLE_PROVIDER: ProviderCapabilities(
        name=GOOGLE_PROVIDER,
        display_name="Google Speech-to-Text",
        supported_modes=[ProcessingMode.REALTIME, ProcessingMode.BATCH],
        supports_diarization=True,
        supports_profanity_filter=True,
        requires_credentials=True,
        max_sync_audio_seconds=55.0,
    ),
}


class AudioProcessorFactory:
    """Builds and caches one processor per provider, all sharing one registry."""

    def __init__(self, config: MeetscribeConfig, registry: SessionRegistry, audio_store=None):
        self.config = config
        self.registry = registry
        self.audio_store = audio_store
        self.lock = threading.Lock()
        self._processors: Dict[str, AbstractAudioProcessor] = {}

    def available_providers(self) -> List[str]:
        """Providers that can actually be built with the current configuration."""
        providers = [MOCK_PROVIDER]
        if self.config.get_google_credentials_path():
            providers.append(GOOGLE_PROVIDER)
        return providers

    def get_capabilities(self, provider: str) -> ProviderCapabilities:
        capabilities = _CAPABILITIES.get((provider or "").strip().lower())
        if capabilities is None:
            raise UnknownProviderError(provider)
        return capabilities

    def resolve_provider(self, provider: Optional[str] = None) -> str:
        """Map a requested provider name onto one that can be served.

        Unknown names, and Google without credentials, fall back to the mock backend.
        """
        requested = (provider or self.config.get('transcription.default_provider', MOCK_PROVIDER) or "")
        requested = requested.strip().lower()

        if requested == GOOGLE_PROVIDER:
            if self.config.get_google_credentials_path():
                return GOOGLE_PROVIDER
            logger.warning("Google provider requested but no credentials configured; using mock provider")
            return MOCK_PROVIDER

        if requested != MOCK_PROVIDER:
            logger.warning(f"Unknown provider '{requested}'; using mock provider")
        return MOCK_PROVIDER

    def recommend_provider(self, options: ProcessingOptions) -> str:
        """Recommend an available provider for the given processing options.

        Cost-optimized sessions always stay on the mock backend. Otherwise Google is
        preferred when it is configured and supports the requested mode and diarization.
        """
        if options.cost_optimized:
            logger.debug("Cost-optimized options; recommending mock provider")
            return MOCK_PROVIDER

        if options.mode is not None:
            mode = options.mode
        else:
            mode = ProcessingMode.REALTIME if options.real_time_transcription else ProcessingMode.BATCH
        available = self.available_providers()
        for name in (GOOGLE_PROVIDER, MOCK_PROVIDER):
            if name not in available:
                continue
            capabilities = self.get_capabilities(name)
            if mode not in capabilities.supported_modes:
                continue
            if options.speaker_diarization and not capabilities.supports_diarization:
                continue
            logger.debug(f"Recommending provider '{name}' for {mode.value} mode")
            return name
        return MOCK_PROVIDER

    def provider_for(self, options: ProcessingOptions) -> str:
        """Provider serving a session: the requested one, or a recommendation for "auto"."""
        requested = options.provider or self.config.get('transcription.default_provider', MOCK_PROVIDER) or ""
        if requested.strip().lower() == AUTO_PROVIDER:
            return self.recommend_provider(options)
        return self.resolve_provider(requested)

    def get_processor(self, provider: Optional[str] = None) -> AbstractAudioProcessor:
        name = self.resolve_provider(provider)
        with self.lock:
            processor = self._processors.get(name)
            if processor is None:
                processor = self._create(name)
                self._processors[name] = processor
        return processor

    def _create(self, name: str) -> AbstractAudioProcessor:
        if name == GOOGLE_PROVIDER:
            # Imported lazily so the google client library is only needed when used
            from .google_processor import GoogleSpeechProcessor

            processor = GoogleSpeechProcessor(
                self.registry,
                credentials_path=self.config.get_google_credentials_path(),
                audio_store=self.audio_store,
                language=self.config.get('google_cloud.language', 'en-US'),
                use_enhanced=self.config.get('google_cloud.use_enhanced_model', True),
                request_timeout=float(self.config.get('google_cloud.request_timeout_seconds', 30.0)),
            )
            processor.initialize()
        else:
            processor = InMemoryAudioProcessor(
                self.registry,
                audio_store=self.audio_store,
                processing_delay=float(self.config.get('mock.processing_delay_seconds', 0.0)),
            )
        logger.info(f"Created audio processor for provider '{name}'")
        return processor
