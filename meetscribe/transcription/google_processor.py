"""Google Speech-to-Text audio processor."""

import logging
import concurrent.futures
from collections import Counter
from typing import List, Optional, Sequence

from .base import AbstractAudioProcessor
from ..audio.session_registry import SessionRegistry, SessionSnapshot
from ..errors import ProviderFailureError
from ..models.audio import AudioChunk, ProcessingOptions, StreamMetadata
from ..models.transcription import TranscriptSegment

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)


# Synchronous recognize only accepts about one minute of audio
LONG_RUNNING_THRESHOLD_SECONDS = 55.0

_ENCODINGS = {
    "audio/wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/x-wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/l16": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/pcm": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/flac": speech.RecognitionConfig.AudioEncoding.FLAC,
    "audio/webm": speech.RecognitionConfig.AudioEncoding.WEBM_OPUS,
    "audio/ogg": speech.RecognitionConfig.AudioEncoding.OGG_OPUS,
}


def encoding_for_mime_type(mime_type: Optional[str]) -> "speech.RecognitionConfig.AudioEncoding":
    """Map a MIME type (parameters ignored) to a Google audio encoding."""
    base = (mime_type or "").split(";")[0].strip().lower()
    return _ENCODINGS.get(base, speech.RecognitionConfig.AudioEncoding.ENCODING_UNSPECIFIED)


def _seconds(value) -> float:
    if value is None:
        return 0.0
    if hasattr(value, "total_seconds"):
        return value.total_seconds()
    return float(value)


def _speaker_label(tag: int) -> Optional[str]:
    # Tag 0 means Google could not attribute the word
    return f"speaker_{tag}" if tag else None


def _clamp_confidence(value: float) -> float:
    return min(max(float(value or 0.0), 0.0), 1.0)


class GoogleSpeechProcessor(AbstractAudioProcessor):
    """Google Cloud Speech-to-Text backend."""

    provider_name = "google"

    def __init__(self,
                 registry: SessionRegistry,
                 credentials_path: Optional[str] = None,
                 audio_store=None,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 request_timeout: float = 30.0,
                 long_running_timeout: float = 600.0,
                 client=None):
        """Initialize Google Speech processor.

        Args:
            registry: Shared session registry
            credentials_path: Path to Google Cloud service account JSON file
            audio_store: Optional audio archive
            language: Fallback language code when options carry none
            use_enhanced: Whether to use the enhanced model
            request_timeout: Per-request timeout for synchronous recognition (seconds)
            long_running_timeout: How long to wait for long-running recognition (seconds)
            client: Pre-built SpeechClient (skips credential loading)
        """
        super().__init__(registry, audio_store)
        if not credentials_path and client is None:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.credentials_path = credentials_path
        self.language = language
        self.use_enhanced = use_enhanced
        self.request_timeout = request_timeout
        self.long_running_timeout = long_running_timeout
        self.client = client
        self.project_id = None

    def initialize(self) -> bool:
        """Create the SpeechClient from the service account file."""
        if self.client is not None:
            return True

        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Google Speech-to-Text processor initialized (project {self.project_id})")
        return True

    def build_recognition_config(self, metadata: StreamMetadata, options: ProcessingOptions) -> speech.RecognitionConfig:
        config = dict(
            encoding=encoding_for_mime_type(metadata.mime_type),
            sample_rate_hertz=metadata.sample_rate,
            audio_channel_count=metadata.channels,
            language_code=options.language or self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=options.punctuation,
            profanity_filter=options.profanity_filtering,
            enable_word_confidence=True,
            enable_word_time_offsets=True,
        )
        if options.speaker_diarization:
            config["diarization_config"] = speech.SpeakerDiarizationConfig(
                enable_speaker_diarization=True,
                min_speaker_count=1,
                max_speaker_count=6,
            )
        return speech.RecognitionConfig(**config)

    def transcribe_chunk(self, session_id: str, chunk: AudioChunk, metadata: StreamMetadata,
                         options: ProcessingOptions) -> Optional[TranscriptSegment]:
        config = self.build_recognition_config(metadata, options)
        logger.debug(f"Session {session_id}: recognizing chunk #{chunk.sequence_number} ({chunk.size} bytes)")
        response = self._recognize(config, chunk.data, session_id)

        alternatives = [result.alternatives[0] for result in response.results if result.alternatives]
        text = " ".join(alt.transcript.strip() for alt in alternatives if alt.transcript.strip())
        if not text:
            logger.debug(f"--- NO SPEECH DETECTED in chunk #{chunk.sequence_number} ---")
            return None

        offset = chunk.offset or 0.0
        if metadata.bytes_per_second > 0:
            chunk_seconds = chunk.size / metadata.bytes_per_second
        else:
            chunk_seconds = chunk.duration or 0.0
        words = [word for alt in alternatives for word in alt.words]
        speaker = None
        if options.speaker_diarization:
            tags = Counter(word.speaker_tag for word in words if word.speaker_tag)
            if tags:
                speaker = _speaker_label(tags.most_common(1)[0][0])

        return TranscriptSegment(
            text=text,
            start_time=offset,
            end_time=offset + chunk_seconds,
            confidence=_clamp_confidence(sum(alt.confidence for alt in alternatives) / len(alternatives)),
            sequence_number=chunk.sequence_number,
            speaker=speaker,
        )

    def transcribe_session(self, snapshot: SessionSnapshot) -> List[TranscriptSegment]:
        config = self.build_recognition_config(snapshot.metadata, snapshot.options)
        audio = speech.RecognitionAudio(content=snapshot.audio_data)

        try:
            if snapshot.duration_seconds > LONG_RUNNING_THRESHOLD_SECONDS:
                logger.info(f"Session {snapshot.session_id}: {snapshot.duration_seconds:.1f}s of audio, "
                            f"using long-running recognition")
                operation = self.client.long_running_recognize(config=config, audio=audio)
                response = operation.result(timeout=self.long_running_timeout)
            else:
                response = self.client.recognize(config=config, audio=audio, timeout=self.request_timeout)
        except concurrent.futures.TimeoutError as e:
            logger.error(f"Google STT long-running recognition timed out for session {snapshot.session_id}")
            raise ProviderFailureError(f"Google Speech long-running timeout (session={snapshot.session_id})",
                                       cause=e, provider=self.provider_name) from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google STT API call error for session {snapshot.session_id}: {e}")
            raise ProviderFailureError(f"Google Speech API error (session={snapshot.session_id})",
                                       cause=e, provider=self.provider_name) from e

        if snapshot.options.speaker_diarization:
            return self._diarized_segments(response.results)
        return self._result_segments(response.results)

    def _recognize(self, config: speech.RecognitionConfig, content: bytes, session_id: str):
        audio = speech.RecognitionAudio(content=content)
        try:
            return self.client.recognize(config=config, audio=audio, timeout=self.request_timeout)
        except gax_exceptions.DeadlineExceeded as e:
            logger.error(f"Google STT recognize deadline exceeded for session {session_id}")
            raise ProviderFailureError(f"Google Speech recognize timeout (session={session_id})",
                                       cause=e, provider=self.provider_name) from e
        except gax_exceptions.ServiceUnavailable as e:
            logger.error(f"Google STT service unavailable for session {session_id}")
            raise ProviderFailureError(f"Google Speech service unavailable (session={session_id})",
                                       cause=e, provider=self.provider_name) from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google STT API call error for session {session_id}: {e}")
            raise ProviderFailureError(f"Google Speech API error (session={session_id})",
                                       cause=e, provider=self.provider_name) from e

    def _result_segments(self, results: Sequence) -> List[TranscriptSegment]:
        """One segment per recognition result."""
        segments = []
        previous_end = 0.0
        for result in results:
            if not result.alternatives:
                continue
            alternative = result.alternatives[0]
            result_end = _seconds(result.result_end_time)
            text = alternative.transcript.strip()
            if text:
                if alternative.words:
                    start = _seconds(alternative.words[0].start_time)
                    end = _seconds(alternative.words[-1].end_time)
                else:
                    start, end = previous_end, result_end
                segments.append(TranscriptSegment(
                    text=text,
                    start_time=start,
                    end_time=max(end, start),
                    confidence=_clamp_confidence(alternative.confidence),
                    sequence_number=len(segments) + 1,
                ))
            previous_end = max(previous_end, result_end)
        return segments

    def _diarized_segments(self, results: Sequence) -> List[TranscriptSegment]:
        """Split the word list into runs of the same speaker.

        With diarization enabled the last result carries every word of the audio
        along with its speaker tag.
        """
        final = [result for result in results if result.alternatives and result.alternatives[0].words]
        if not final:
            return self._result_segments(results)

        words = final[-1].alternatives[0].words
        segments = []
        run = []
        for word in words:
            if run and word.speaker_tag != run[-1].speaker_tag:
                segments.append(self._word_run_segment(run, len(segments) + 1))
                run = []
            run.append(word)
        if run:
            segments.append(self._word_run_segment(run, len(segments) + 1))
        return segments

    @staticmethod
    def _word_run_segment(words: Sequence, sequence_number: int) -> TranscriptSegment:
        start = _seconds(words[0].start_time)
        end = _seconds(words[-1].end_time)
        confidences = [word.confidence for word in words]
        return TranscriptSegment(
            text=" ".join(word.word for word in words),
            start_time=start,
            end_time=max(end, start),
            confidence=_clamp_confidence(sum(confidences) / len(confidences)),
            sequence_number=sequence_number,
            speaker=_speaker_label(words[0].speaker_tag),
        )
