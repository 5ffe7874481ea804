"""Assemble transcript text and confidence from finalized segments."""

from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from ..models.transcription import NO_SPEECH_TEXT, TranscriptSegment


def _speaker_prefix(speaker: Optional[str], anonymous_labels: Iterable[str]) -> str:
    if speaker is None or not speaker.strip():
        return ""
    if speaker.strip() in anonymous_labels:
        return ""
    return f"{speaker}: "


def segments_to_text(segments: Sequence[TranscriptSegment], anonymous_labels: Iterable[str] = ()) -> str:
    """Join segment texts in sequence order, one line per segment.

    Blank texts and the no-speech placeholder are skipped. A speaker prefix is
    written only for named speakers.
    """
    anonymous = set(anonymous_labels)
    lines: List[str] = []
    for segment in sorted(segments, key=lambda s: s.sequence_number):
        text = segment.text.strip() if segment.text else ""
        if not text or text == NO_SPEECH_TEXT:
            continue
        lines.append(f"{_speaker_prefix(segment.speaker, anonymous)}{text}")
    return "\n".join(lines)


def average_confidence(segments: Sequence[TranscriptSegment]) -> float:
    """Arithmetic mean of the given segments' confidences (0.0 when empty)."""
    if not segments:
        return 0.0
    total = sum((Decimal(str(segment.confidence)) for segment in segments), Decimal(0))
    return float(total / len(segments))
