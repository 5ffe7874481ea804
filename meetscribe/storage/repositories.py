"""Repository contracts and in-memory implementations."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..errors import BotSessionNotFoundError, MeetingNotFoundError, TranscriptionNotFoundError
from ..models.meeting import BotSession, Meeting
from ..models.transcription import Transcription, TranscriptionStatus, TranscriptSegment

logger = logging.getLogger(__name__)


class TranscriptionRepository(ABC):
    """Persistence of Transcription aggregates and their segments."""

    @abstractmethod
    def save(self, transcription: Transcription) -> None:
        pass

    @abstractmethod
    def find_by_id(self, transcription_id: str) -> Optional[Transcription]:
        pass

    @abstractmethod
    def find_by_meeting_id(self, meeting_id: str) -> List[Transcription]:
        pass

    @abstractmethod
    def find_by_status(self, status: TranscriptionStatus) -> List[Transcription]:
        pass

    @abstractmethod
    def update(self, transcription: Transcription) -> None:
        """Persist changes to an existing transcription.

        Raises:
            TranscriptionNotFoundError: Transcription was never saved
        """
        pass

    @abstractmethod
    def save_segments(self, transcription_id: str, segments: List[TranscriptSegment]) -> None:
        """Replace every stored segment of a transcription."""
        pass

    @abstractmethod
    def find_segments(self, transcription_id: str) -> List[TranscriptSegment]:
        pass


class MeetingRepository(ABC):
    """Persistence of Meetings and BotSessions."""

    @abstractmethod
    def save_meeting(self, meeting: Meeting) -> None:
        pass

    @abstractmethod
    def find_meeting_by_id(self, meeting_id: str) -> Optional[Meeting]:
        pass

    @abstractmethod
    def update_meeting(self, meeting: Meeting) -> None:
        pass

    @abstractmethod
    def save_bot_session(self, bot_session: BotSession) -> None:
        pass

    @abstractmethod
    def find_bot_session_by_id(self, bot_session_id: str) -> Optional[BotSession]:
        pass

    @abstractmethod
    def update_bot_session(self, bot_session: BotSession) -> None:
        pass

    @abstractmethod
    def find_bot_sessions_by_meeting_id(self, meeting_id: str) -> List[BotSession]:
        pass


class InMemoryTranscriptionRepository(TranscriptionRepository):
    """Dict-backed repository. Stores and hands out deep copies."""

    def __init__(self):
        self.lock = threading.Lock()
        self._transcriptions: Dict[str, Transcription] = {}
        self._segments: Dict[str, List[TranscriptSegment]] = {}

    def save(self, transcription: Transcription) -> None:
        with self.lock:
            self._transcriptions[transcription.id] = copy.deepcopy(transcription)
        logger.debug(f"Saved transcription {transcription.id} ({transcription.status.value})")

    def find_by_id(self, transcription_id: str) -> Optional[Transcription]:
        with self.lock:
            transcription = self._transcriptions.get(transcription_id)
            return copy.deepcopy(transcription) if transcription is not None else None

    def find_by_meeting_id(self, meeting_id: str) -> List[Transcription]:
        with self.lock:
            return [copy.deepcopy(t) for t in self._transcriptions.values() if t.meeting_id == meeting_id]

    def find_by_status(self, status: TranscriptionStatus) -> List[Transcription]:
        with self.lock:
            return [copy.deepcopy(t) for t in self._transcriptions.values() if t.status == status]

    def update(self, transcription: Transcription) -> None:
        with self.lock:
            if transcription.id not in self._transcriptions:
                raise TranscriptionNotFoundError(transcription.id)
            self._transcriptions[transcription.id] = copy.deepcopy(transcription)
        logger.debug(f"Updated transcription {transcription.id} ({transcription.status.value})")

    def save_segments(self, transcription_id: str, segments: List[TranscriptSegment]) -> None:
        with self.lock:
            if transcription_id not in self._transcriptions:
                raise TranscriptionNotFoundError(transcription_id)
            self._segments[transcription_id] = [s.for_transcription(transcription_id) for s in segments]

    def find_segments(self, transcription_id: str) -> List[TranscriptSegment]:
        with self.lock:
            return sorted(self._segments.get(transcription_id, []), key=lambda s: s.sequence_number)


class InMemoryMeetingRepository(MeetingRepository):
    """Dict-backed meeting/bot-session repository. Stores and hands out deep copies."""

    def __init__(self):
        self.lock = threading.Lock()
        self._meetings: Dict[str, Meeting] = {}
        self._bot_sessions: Dict[str, BotSession] = {}

    def save_meeting(self, meeting: Meeting) -> None:
        with self.lock:
            self._meetings[meeting.id] = copy.deepcopy(meeting)

    def find_meeting_by_id(self, meeting_id: str) -> Optional[Meeting]:
        with self.lock:
            meeting = self._meetings.get(meeting_id)
            return copy.deepcopy(meeting) if meeting is not None else None

    def update_meeting(self, meeting: Meeting) -> None:
        with self.lock:
            if meeting.id not in self._meetings:
                raise MeetingNotFoundError(meeting.id)
            self._meetings[meeting.id] = copy.deepcopy(meeting)

    def save_bot_session(self, bot_session: BotSession) -> None:
        with self.lock:
            self._bot_sessions[bot_session.id] = copy.deepcopy(bot_session)

    def find_bot_session_by_id(self, bot_session_id: str) -> Optional[BotSession]:
        with self.lock:
            bot_session = self._bot_sessions.get(bot_session_id)
            return copy.deepcopy(bot_session) if bot_session is not None else None

    def update_bot_session(self, bot_session: BotSession) -> None:
        with self.lock:
            if bot_session.id not in self._bot_sessions:
                raise BotSessionNotFoundError(bot_session.id)
            self._bot_sessions[bot_session.id] = copy.deepcopy(bot_session)

    def find_bot_sessions_by_meeting_id(self, meeting_id: str) -> List[BotSession]:
        with self.lock:
            return [copy.deepcopy(b) for b in self._bot_sessions.values() if b.meeting_id == meeting_id]
