"""Meeting and bot session models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BotSessionStatus(str, Enum):
    JOINING = "joining"
    ACTIVE = "active"
    RECORDING = "recording"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Meeting:
    """A meeting that transcriptions are attached to."""
    user_id: str
    title: str
    status: MeetingStatus = MeetingStatus.SCHEDULED
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def start(self) -> None:
        self.status = MeetingStatus.IN_PROGRESS
        if self.start_time is None:
            self.start_time = datetime.now()
        self.updated_at = datetime.now()

    def complete(self, end_time: Optional[datetime] = None) -> None:
        self.status = MeetingStatus.COMPLETED
        self.end_time = end_time or datetime.now()
        self.updated_at = datetime.now()

    def fail(self) -> None:
        self.status = MeetingStatus.FAILED
        self.end_time = self.end_time or datetime.now()
        self.updated_at = datetime.now()


@dataclass
class BotSession:
    """The bot's presence in a meeting while it records."""
    meeting_id: str
    session_id: str
    status: BotSessionStatus = BotSessionStatus.JOINING
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def activate(self) -> None:
        self.status = BotSessionStatus.ACTIVE
        self.joined_at = self.joined_at or datetime.now()

    def complete(self, left_at: Optional[datetime] = None) -> None:
        self.status = BotSessionStatus.COMPLETED
        self.left_at = left_at or datetime.now()

    def fail(self) -> None:
        self.status = BotSessionStatus.FAILED
        self.left_at = self.left_at or datetime.now()

    @property
    def is_finished(self) -> bool:
        return self.status in (BotSessionStatus.COMPLETED, BotSessionStatus.FAILED)
