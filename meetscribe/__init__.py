"""meetscribe - audio session and transcription lifecycle engine."""

__version__ = "0.1.0"
