"""Transcription backends for meetscribe."""

from .base import AbstractAudioProcessor
from .mock_processor import InMemoryAudioProcessor
from .factory import AudioProcessorFactory, ProviderCapabilities
from .assembly import segments_to_text, average_confidence

__all__ = [
    "AbstractAudioProcessor",
    "InMemoryAudioProcessor",
    "AudioProcessorFactory",
    "ProviderCapabilities",
    "segments_to_text",
    "average_confidence",
]
