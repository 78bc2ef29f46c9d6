"""
CQRS: Projections (Read Models)

Projections map committed events to read-model writes. They run inside the
committing session, in commit order, so a read right after a successful
command sees its effect.

Each committed event is projected exactly once; there is no replay cursor or
idempotency key, so re-projecting the same event would duplicate inserts.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Sequence, Type

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.events import (
    BaseEvent,
    CourseCreated,
    CourseDeleted,
    CourseUpdated,
    LessonCompleted,
    LessonCreated,
    LessonDeleted,
    LessonUpdated,
    ensure_utc,
)
from db.models import (
    CourseRecord,
    LearnerHistoryRecord,
    LessonCompletionRecord,
    LessonRecord,
)


logger = logging.getLogger(__name__)

EventHandler = Callable[[AsyncSession, BaseEvent], Awaitable[None]]


class ProjectionBase:
    """
    Base class for event-sourced projections.

    Subclasses register one coroutine per event type they care about;
    other event types pass through untouched.
    """

    def __init__(self) -> None:
        self.projection_name = self.__class__.__name__
        self._handlers: Dict[Type[BaseEvent], EventHandler] = {}

    def on(self, event_type: Type[BaseEvent], handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    def handles(self, event: BaseEvent) -> bool:
        return type(event) in self._handlers

    async def handle_event(self, session: AsyncSession, event: BaseEvent) -> None:
        """Apply one event to the read model."""
        handler = self._handlers.get(type(event))
        if handler is None:
            return
        await handler(session, event)


class CourseProjection(ProjectionBase):
    """
    Courses, lessons and lesson completions for the lms service.

    Updates touch only the fields present in the event. Deletes remove the
    row by aggregate id and never touch completion rows.
    """

    def __init__(self) -> None:
        super().__init__()
        self.on(CourseCreated, self._handle_course_created)
        self.on(CourseUpdated, self._handle_course_updated)
        self.on(CourseDeleted, self._handle_course_deleted)
        self.on(LessonCreated, self._handle_lesson_created)
        self.on(LessonUpdated, self._handle_lesson_updated)
        self.on(LessonDeleted, self._handle_lesson_deleted)
        self.on(LessonCompleted, self._handle_lesson_completed)

    async def _handle_course_created(self, session: AsyncSession, event: CourseCreated) -> None:
        timestamp = ensure_utc(event.timestamp)
        session.add(CourseRecord(
            aggregate_id=event.aggregate_id,
            title=event.title,
            description=event.description,
            instructor_id=event.instructor_id,
            created_at=timestamp,
            updated_at=timestamp,
        ))

    async def _handle_course_updated(self, session: AsyncSession, event: CourseUpdated) -> None:
        await session.execute(
            update(CourseRecord)
            .where(CourseRecord.aggregate_id == event.aggregate_id)
            .values(**event.payload(), updated_at=ensure_utc(event.timestamp))
        )

    async def _handle_course_deleted(self, session: AsyncSession, event: CourseDeleted) -> None:
        await session.execute(
            delete(CourseRecord).where(CourseRecord.aggregate_id == event.aggregate_id)
        )

    async def _handle_lesson_created(self, session: AsyncSession, event: LessonCreated) -> None:
        timestamp = ensure_utc(event.timestamp)
        session.add(LessonRecord(
            aggregate_id=event.aggregate_id,
            course_id=event.course_id,
            title=event.title,
            content=event.content,
            order=event.order,
            created_at=timestamp,
            updated_at=timestamp,
        ))

    async def _handle_lesson_updated(self, session: AsyncSession, event: LessonUpdated) -> None:
        await session.execute(
            update(LessonRecord)
            .where(LessonRecord.aggregate_id == event.aggregate_id)
            .values(**event.payload(), updated_at=ensure_utc(event.timestamp))
        )

    async def _handle_lesson_deleted(self, session: AsyncSession, event: LessonDeleted) -> None:
        await session.execute(
            delete(LessonRecord).where(LessonRecord.aggregate_id == event.aggregate_id)
        )

    async def _handle_lesson_completed(self, session: AsyncSession, event: LessonCompleted) -> None:
        session.add(LessonCompletionRecord(
            user_id=event.user_id,
            lesson_id=event.lesson_id,
            course_id=event.course_id,
            completed_at=ensure_utc(event.completed_at),
            created_at=ensure_utc(event.timestamp),
        ))


class LearnerHistoryProjection(ProjectionBase):
    """One learner_histories row per relayed completion (reco service)."""

    def __init__(self) -> None:
        super().__init__()
        self.on(LessonCompleted, self._handle_lesson_completed)

    async def _handle_lesson_completed(self, session: AsyncSession, event: LessonCompleted) -> None:
        session.add(LearnerHistoryRecord(
            user_id=event.user_id,
            lesson_id=event.lesson_id,
            course_id=event.course_id,
            completed_at=ensure_utc(event.completed_at),
            created_at=ensure_utc(event.timestamp),
        ))


class ProjectionManager:
    """
    Runs every registered projection over newly committed events.
    """

    def __init__(self, projections: Sequence[ProjectionBase] = ()) -> None:
        self.projections: List[ProjectionBase] = []
        for projection in projections:
            self.register(projection)

    def register(self, projection: ProjectionBase) -> None:
        """Register a projection."""
        self.projections.append(projection)
        logger.info(f"Registered projection: {projection.projection_name}")

    async def project(self, session: AsyncSession, events: Sequence[BaseEvent]) -> None:
        """Apply events in commit order; each projection sees each event once."""
        for event in events:
            for projection in self.projections:
                await projection.handle_event(session, event)
        if events:
            await session.flush()
            logger.debug(
                f"Projected {len(events)} event(s) through {len(self.projections)} projection(s)"
            )
