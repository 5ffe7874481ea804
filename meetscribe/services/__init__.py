"""Orchestration services for meetscribe."""

from .event_bus import EventBus
from .saga import Saga, SagaStep
from .transcription_service import TranscriptionService

__all__ = ["EventBus", "Saga", "SagaStep", "TranscriptionService"]
