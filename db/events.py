"""
Event Sourcing: Event Definitions for learnflow

All domain events that can occur in the system. Events are immutable
records of facts that have happened; once appended they are never changed.

Update events carry UNSET for every field the command did not supply, and
UNSET fields are left out of the serialized form, so "absent" survives a
round trip through the event store.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, Union
from enum import Enum
from uuid import UUID, uuid4

from core.types import UNSET, Maybe, is_set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the string is not ISO-8601
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


class EventType(Enum):
    """Types of domain events in the system."""
    # Course Events
    COURSE_CREATED = "CourseCreated"
    COURSE_UPDATED = "CourseUpdated"
    COURSE_DELETED = "CourseDeleted"

    # Lesson Events
    LESSON_CREATED = "LessonCreated"
    LESSON_UPDATED = "LessonUpdated"
    LESSON_DELETED = "LessonDeleted"
    LESSON_COMPLETED = "LessonCompleted"


# Envelope fields shared by every event; everything else is payload
ENVELOPE_FIELDS = frozenset(
    {"event_id", "event_type", "timestamp", "aggregate_id", "sequence_number", "metadata"}
)


@dataclass(frozen=True)
class BaseEvent:
    """
    Base class for all events.

    Events are immutable and represent facts that have occurred.
    sequence_number is the event's 1-based position in its stream.
    """
    event_id: UUID = field(default_factory=uuid4)
    event_type: str = field(init=False)
    timestamp: datetime = field(default_factory=utcnow)
    aggregate_id: str = ""
    sequence_number: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def payload(self) -> Dict[str, Any]:
        """Payload fields that carry a value, in declaration order."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in ENVELOPE_FIELDS:
                continue
            value = getattr(self, f.name)
            if not is_set(value):
                continue
            data[f.name] = value.isoformat() if isinstance(value, datetime) else value
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "aggregate_id": self.aggregate_id,
            "sequence_number": self.sequence_number,
            "metadata": dict(self.metadata),
            **self.payload(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseEvent':
        """Reconstruct event from dictionary."""
        data = data.copy()
        if 'event_id' in data:
            data['event_id'] = UUID(data['event_id']) if isinstance(data['event_id'], str) else data['event_id']
        if 'timestamp' in data:
            data['timestamp'] = parse_timestamp(data['timestamp'])
        if 'completed_at' in data and data['completed_at'] is not None:
            data['completed_at'] = parse_timestamp(data['completed_at'])
        # Filter to only include fields that are init=True in the dataclass
        init_fields = {
            name for name, field_obj in cls.__dataclass_fields__.items()
            if field_obj.init
        }
        return cls(**{k: v for k, v in data.items() if k in init_fields})

    def with_position(self, aggregate_id: str, sequence_number: int) -> 'BaseEvent':
        """Copy of this event stamped with its stream position."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.init}
        values.update(aggregate_id=aggregate_id, sequence_number=sequence_number)
        return type(self)(**values)


# =============================================================================
# COURSE EVENTS
# =============================================================================


@dataclass(frozen=True)
class CourseCreated(BaseEvent):
    """A course was created."""
    event_type: str = field(default=EventType.COURSE_CREATED.value, init=False)
    title: str = ""
    description: Optional[str] = None
    instructor_id: str = ""


@dataclass(frozen=True)
class CourseUpdated(BaseEvent):
    """Some course fields changed; UNSET fields did not."""
    event_type: str = field(default=EventType.COURSE_UPDATED.value, init=False)
    title: Maybe[str] = UNSET
    description: Maybe[Optional[str]] = UNSET


@dataclass(frozen=True)
class CourseDeleted(BaseEvent):
    """A course was deleted. Terminal."""
    event_type: str = field(default=EventType.COURSE_DELETED.value, init=False)


# =============================================================================
# LESSON EVENTS
# =============================================================================


@dataclass(frozen=True)
class LessonCreated(BaseEvent):
    """A lesson was created inside a course."""
    event_type: str = field(default=EventType.LESSON_CREATED.value, init=False)
    course_id: str = ""
    title: str = ""
    content: Optional[str] = None
    order: int = 0


@dataclass(frozen=True)
class LessonUpdated(BaseEvent):
    """Some lesson fields changed; UNSET fields did not."""
    event_type: str = field(default=EventType.LESSON_UPDATED.value, init=False)
    title: Maybe[str] = UNSET
    content: Maybe[Optional[str]] = UNSET
    order: Maybe[int] = UNSET


@dataclass(frozen=True)
class LessonDeleted(BaseEvent):
    """A lesson was deleted. Terminal."""
    event_type: str = field(default=EventType.LESSON_DELETED.value, init=False)


@dataclass(frozen=True)
class LessonCompleted(BaseEvent):
    """
    A learner completed a lesson.

    Appended once per completion; the same learner completing the same
    lesson twice produces two events.
    """
    event_type: str = field(default=EventType.LESSON_COMPLETED.value, init=False)
    user_id: str = ""
    lesson_id: str = ""
    course_id: str = ""
    completed_at: datetime = field(default_factory=utcnow)


# =============================================================================
# EVENT REGISTRY
# =============================================================================

EVENT_REGISTRY: Dict[str, Type[BaseEvent]] = {
    EventType.COURSE_CREATED.value: CourseCreated,
    EventType.COURSE_UPDATED.value: CourseUpdated,
    EventType.COURSE_DELETED.value: CourseDeleted,
    EventType.LESSON_CREATED.value: LessonCreated,
    EventType.LESSON_UPDATED.value: LessonUpdated,
    EventType.LESSON_DELETED.value: LessonDeleted,
    EventType.LESSON_COMPLETED.value: LessonCompleted,
}


def deserialize_event(data: Dict[str, Any]) -> BaseEvent:
    """
    Deserialize event from dictionary.

    Raises:
        ValueError: If event type is unknown
    """
    event_type = data.get('event_type')
    if not event_type:
        raise ValueError("Event data has no event_type")

    event_class = EVENT_REGISTRY.get(event_type)
    if not event_class:
        raise ValueError(f"Unknown event type: {event_type}")

    return event_class.from_dict(data)
