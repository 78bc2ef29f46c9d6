"""
learnflow - Aggregates

Course and Lesson are consistency boundaries whose state is derived entirely
from their own event stream. An aggregate instance only lives for the
duration of one command: it is rebuilt by folding the stream, validates the
requested change, and records the resulting events as pending.

Usage:
    course = Course.create("c-1", title="Python", description=None, instructor_id="i-1")
    events = course.pending_events

    lesson = Lesson.from_history("l-1", stored_events)
    lesson.complete("user-1")
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Type, TypeVar

from core.errors import AggregateDeletedError, NotFoundError, ValidationError
from core.types import UNSET, Maybe, is_set
from db.events import (
    BaseEvent,
    CourseCreated,
    CourseDeleted,
    CourseUpdated,
    LessonCompleted,
    LessonCreated,
    LessonDeleted,
    LessonUpdated,
    utcnow,
    ensure_utc,
)
from db.event_store import Snapshot

A = TypeVar("A", bound="AggregateRoot")


def _require_text(value: Any, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field_name} is required",
            field_name=field_name,
            actual_value=value,
        )


def _require_order(value: Any) -> None:
    # bool is an int subclass; True is not a lesson position
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            "order must be a non-negative integer",
            field_name="order",
            actual_value=value,
        )


class AggregateRoot(ABC):
    """
    Base class for event-sourced aggregates.

    The version is the sequence number of the last event applied, so it is
    also the expected version for the next append.
    """

    aggregate_type: ClassVar[str] = "aggregate"

    def __init__(self, aggregate_id: str) -> None:
        self._id = aggregate_id
        self._version: int = 0
        self._pending_events: List[BaseEvent] = []
        self.deleted: bool = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def version(self) -> int:
        """Current version for optimistic concurrency."""
        return self._version

    @property
    def exists(self) -> bool:
        return self._version > 0

    @property
    def pending_events(self) -> List[BaseEvent]:
        """Events raised since the aggregate was loaded."""
        return list(self._pending_events)

    def clear_pending_events(self) -> List[BaseEvent]:
        events = self._pending_events
        self._pending_events = []
        return events

    @classmethod
    def from_history(
        cls: Type[A],
        aggregate_id: str,
        events: Sequence[BaseEvent],
        snapshot: Optional[Snapshot] = None,
    ) -> A:
        """Rebuild an aggregate from an optional snapshot plus the events after it."""
        aggregate = cls(aggregate_id)
        if snapshot is not None:
            aggregate._restore(snapshot.state)
            aggregate._version = snapshot.version
        for event in events:
            aggregate._apply(event)
            aggregate._version = event.sequence_number
        return aggregate

    def _raise_event(self, event: BaseEvent) -> None:
        positioned = event.with_position(self._id, self._version + 1)
        self._apply(positioned)
        self._version = positioned.sequence_number
        self._pending_events.append(positioned)

    def _ensure_mutable(self) -> None:
        if not self.exists:
            raise NotFoundError(
                f"{self.aggregate_type.capitalize()} {self._id} not found",
                aggregate_type=self.aggregate_type,
                aggregate_id=self._id,
            )
        if self.deleted:
            raise AggregateDeletedError(
                f"{self.aggregate_type.capitalize()} {self._id} has been deleted",
                aggregate_type=self.aggregate_type,
                aggregate_id=self._id,
            )

    @abstractmethod
    def _apply(self, event: BaseEvent) -> None:
        """Fold one event into state. Must reject events of other aggregates."""

    def _unknown_event(self, event: BaseEvent) -> None:
        raise TypeError(
            f"{type(self).__name__} cannot apply {type(event).__name__}"
        )

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            aggregate_id=self._id,
            aggregate_type=self.aggregate_type,
            version=self._version,
            state=self._state(),
        )

    @abstractmethod
    def _state(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _restore(self, state: Dict[str, Any]) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self._id!r}, version={self._version})"


class Course(AggregateRoot):
    """A course: title, optional description and the instructor who owns it."""

    aggregate_type: ClassVar[str] = "course"

    def __init__(self, aggregate_id: str) -> None:
        super().__init__(aggregate_id)
        self.title: str = ""
        self.description: Optional[str] = None
        self.instructor_id: str = ""

    @classmethod
    def create(
        cls,
        aggregate_id: str,
        title: str,
        description: Optional[str],
        instructor_id: str,
    ) -> "Course":
        _require_text(title, "title")
        _require_text(instructor_id, "instructor_id")
        course = cls(aggregate_id)
        course._raise_event(CourseCreated(
            title=title,
            description=description,
            instructor_id=instructor_id,
        ))
        return course

    def update(
        self,
        title: Maybe[str] = UNSET,
        description: Maybe[Optional[str]] = UNSET,
    ) -> None:
        """Partial update; UNSET fields keep their value, "" is applied as given."""
        self._ensure_mutable()
        self._raise_event(CourseUpdated(title=title, description=description))

    def delete(self) -> None:
        self._ensure_mutable()
        self._raise_event(CourseDeleted())

    def _apply(self, event: BaseEvent) -> None:
        if isinstance(event, CourseCreated):
            self.title = event.title
            self.description = event.description
            self.instructor_id = event.instructor_id
        elif isinstance(event, CourseUpdated):
            if is_set(event.title):
                self.title = event.title
            if is_set(event.description):
                self.description = event.description
        elif isinstance(event, CourseDeleted):
            self.deleted = True
        else:
            self._unknown_event(event)

    def _state(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "instructor_id": self.instructor_id,
            "deleted": self.deleted,
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        self.title = state["title"]
        self.description = state.get("description")
        self.instructor_id = state["instructor_id"]
        self.deleted = state.get("deleted", False)


class Lesson(AggregateRoot):
    """
    A lesson inside a course.

    Completions are recorded as events but not tracked here: who completed
    what lives only in the read model.
    """

    aggregate_type: ClassVar[str] = "lesson"

    def __init__(self, aggregate_id: str) -> None:
        super().__init__(aggregate_id)
        self.course_id: str = ""
        self.title: str = ""
        self.content: Optional[str] = None
        self.order: int = 0

    @classmethod
    def create(
        cls,
        aggregate_id: str,
        course_id: str,
        title: str,
        content: Optional[str] = None,
        order: int = 0,
    ) -> "Lesson":
        _require_text(course_id, "course_id")
        _require_text(title, "title")
        _require_order(order)
        lesson = cls(aggregate_id)
        lesson._raise_event(LessonCreated(
            course_id=course_id,
            title=title,
            content=content,
            order=order,
        ))
        return lesson

    def update(
        self,
        title: Maybe[str] = UNSET,
        content: Maybe[Optional[str]] = UNSET,
        order: Maybe[int] = UNSET,
    ) -> None:
        self._ensure_mutable()
        if is_set(order):
            _require_order(order)
        self._raise_event(LessonUpdated(title=title, content=content, order=order))

    def delete(self) -> None:
        self._ensure_mutable()
        self._raise_event(LessonDeleted())

    def complete(self, user_id: str, completed_at: Optional[datetime] = None) -> None:
        self._ensure_mutable()
        _require_text(user_id, "user_id")
        self._raise_event(LessonCompleted(
            user_id=user_id,
            lesson_id=self.id,
            course_id=self.course_id,
            completed_at=ensure_utc(completed_at) if completed_at else utcnow(),
        ))

    def _apply(self, event: BaseEvent) -> None:
        if isinstance(event, LessonCreated):
            self.course_id = event.course_id
            self.title = event.title
            self.content = event.content
            self.order = event.order
        elif isinstance(event, LessonUpdated):
            if is_set(event.title):
                self.title = event.title
            if is_set(event.content):
                self.content = event.content
            if is_set(event.order):
                self.order = event.order
        elif isinstance(event, LessonDeleted):
            self.deleted = True
        elif isinstance(event, LessonCompleted):
            pass
        else:
            self._unknown_event(event)

    def _state(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "title": self.title,
            "content": self.content,
            "order": self.order,
            "deleted": self.deleted,
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        self.course_id = state["course_id"]
        self.title = state["title"]
        self.content = state.get("content")
        self.order = state.get("order", 0)
        self.deleted = state.get("deleted", False)

