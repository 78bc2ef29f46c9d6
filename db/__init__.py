"""
learnflow - Database Layer

Event store, read models and the command side of both services.

Event Sourcing:
    Courses and lessons are stored as the history of what happened to
    them. Current state is derived by replaying a stream; the read-model
    tables are projections of the same events, kept for queries.

Usage:
    from db import EventStore, NO_STREAM, DatabaseClient

    async with db.session() as session:
        await event_store.append(session, "c-1", "course", NO_STREAM, [CourseCreated(...)])

Command handlers depend on the domain aggregates and are imported from
db.command_handlers directly.
"""
from db.database import DatabaseClient
from db.event_store import (
    NO_STREAM,
    CommandAudit,
    EventStore,
    IEventStore,
    ISnapshotStore,
    Snapshot,
    SnapshotStore,
    StreamInfo,
)
from db.events import (
    EVENT_REGISTRY,
    BaseEvent,
    CourseCreated,
    CourseDeleted,
    CourseUpdated,
    EventType,
    LessonCompleted,
    LessonCreated,
    LessonDeleted,
    LessonUpdated,
    deserialize_event,
)
from db.projections import (
    CourseProjection,
    LearnerHistoryProjection,
    ProjectionBase,
    ProjectionManager,
)
from db.read_models import CourseQueries, LearnerHistoryQueries

__all__ = [
    "DatabaseClient",
    # Event store
    "NO_STREAM",
    "CommandAudit",
    "EventStore",
    "IEventStore",
    "ISnapshotStore",
    "Snapshot",
    "SnapshotStore",
    "StreamInfo",
    # Events
    "EVENT_REGISTRY",
    "EventType",
    "BaseEvent",
    "CourseCreated",
    "CourseUpdated",
    "CourseDeleted",
    "LessonCreated",
    "LessonUpdated",
    "LessonDeleted",
    "LessonCompleted",
    "deserialize_event",
    # Projections
    "ProjectionBase",
    "ProjectionManager",
    "CourseProjection",
    "LearnerHistoryProjection",
    # Read models
    "CourseQueries",
    "LearnerHistoryQueries",
]
