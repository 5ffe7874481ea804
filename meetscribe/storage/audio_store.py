"""Local archive for session audio."""

import logging
import wave
from pathlib import Path

from ..audio.session_registry import SessionSnapshot
from ..errors import PersistenceError

logger = logging.getLogger(__name__)


PCM_MIME_TYPES = {"audio/wav", "audio/x-wav", "audio/l16", "audio/pcm"}


class LocalAudioStore:
    """Writes the concatenated audio of a finished session to disk.

    The returned path is what the transcription records as its audio artifact.
    """

    def __init__(self, data_dir: str = "./data"):
        """Initialize audio store.

        Args:
            data_dir: Base directory; files land under <data_dir>/meetings/<meeting_id>/audio/
        """
        self.data_dir = Path(data_dir)
        self.meetings_dir = self.data_dir / "meetings"
        self.meetings_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalAudioStore initialized with data_dir: {self.data_dir}")

    def audio_directory(self, meeting_id: str) -> Path:
        return self.meetings_dir / (meeting_id or "unassigned") / "audio"

    def save_session_audio(self, snapshot: SessionSnapshot) -> str:
        """Save a session's audio and return the file path.

        PCM streams become WAV files; anything else is written raw with a .bin suffix.
        """
        metadata = snapshot.metadata
        audio_dir = self.audio_directory(metadata.meeting_id)
        mime_type = (metadata.mime_type or "").split(";")[0].strip().lower()
        is_pcm = mime_type in PCM_MIME_TYPES
        audio_path = audio_dir / f"{snapshot.session_id}{'.wav' if is_pcm else '.bin'}"

        try:
            audio_dir.mkdir(parents=True, exist_ok=True)
            if is_pcm:
                with wave.open(str(audio_path), 'wb') as wf:
                    wf.setnchannels(metadata.channels)
                    wf.setsampwidth(max(metadata.bits_per_sample // 8, 1))
                    wf.setframerate(metadata.sample_rate)
                    for chunk in snapshot.chunks:
                        wf.writeframes(chunk.data)
            else:
                with open(audio_path, 'wb') as f:
                    for chunk in snapshot.chunks:
                        f.write(chunk.data)
        except (OSError, wave.Error) as e:
            logger.error(f"Error saving audio for session {snapshot.session_id}: {e}")
            raise PersistenceError(f"Could not archive audio for session {snapshot.session_id}", cause=e) from e

        logger.info(f"Audio file saved: {audio_path} ({snapshot.total_bytes} bytes)")
        return str(audio_path)
