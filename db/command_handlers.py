"""
CQRS: Command Handlers

Orchestrates one command end to end:

1. validate the command's shape
2. create the aggregate (creation commands) or rebuild it from its stream
3. invoke the aggregate operation, collecting new events
4. append them with the loaded version as expected version
5. project the committed events, in the same transaction
6. after commit, notify post-commit listeners (the completion relay)

A version race on a mutation command re-runs steps 2-5 a bounded number of
times before the ConcurrencyError reaches the caller. Creation commands are
not retried: a conflict there means the id is already taken.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ConcurrencyError, NotFoundError
from core.resilience import RetryConfig, RetryPolicy
from db.commands import (
    BaseCommand,
    CompleteLesson,
    CreateCourse,
    CreateLesson,
    DeleteCourse,
    DeleteLesson,
    UpdateCourse,
    UpdateLesson,
)
from db.database import DatabaseClient
from db.event_store import IEventStore, ISnapshotStore, SnapshotStore
from db.events import BaseEvent
from db.projections import ProjectionManager
from domain.aggregates import AggregateRoot, Course, Lesson
from observability.tracing import create_span


logger = logging.getLogger(__name__)

A = TypeVar("A", bound=AggregateRoot)

PostCommitListener = Callable[[Sequence[BaseEvent]], Awaitable[None]]


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a successful command."""
    aggregate_id: str
    version: int
    events: List[BaseEvent]


class CommandHandler:
    """
    Base command handler with the load-apply-append-project cycle.

    Subclasses implement handle() for their command types.
    """

    def __init__(
        self,
        db: DatabaseClient,
        event_store: IEventStore,
        projections: ProjectionManager,
        snapshot_store: Optional[ISnapshotStore] = None,
        retry_config: Optional[RetryConfig] = None,
        listeners: Sequence[PostCommitListener] = (),
    ):
        """
        Initialize command handler.

        Args:
            db: Database whose sessions bound each unit of work
            event_store: Event store for persisting events
            projections: Projections run inside the committing transaction
            snapshot_store: Optional threshold snapshot store
            retry_config: Retry policy for version races
            listeners: Called with committed events after commit
        """
        self.db = db
        self.event_store = event_store
        self.projections = projections
        self.snapshot_store = snapshot_store
        self.retry_policy = RetryPolicy(retry_config or RetryConfig(
            max_attempts=3,
            retryable_exceptions={ConcurrencyError},
        ))
        self.listeners: List[PostCommitListener] = list(listeners)

    def add_listener(self, listener: PostCommitListener) -> None:
        self.listeners.append(listener)

    async def execute(self, command: BaseCommand) -> CommandResult:
        """
        Execute a command and return the committed events.

        Raises:
            ValidationError: If the command or its values are invalid
            NotFoundError: If a mutation targets a missing or deleted aggregate
            ConcurrencyError: If the stream kept moving after all retries
        """
        command.validate()

        with create_span(
            f"command.{command.command_type}",
            attributes={
                "command.id": str(command.command_id),
                "aggregate.id": command.aggregate_id,
            },
        ) as span:
            if command.creates_aggregate:
                result = await self._execute_once(command)
            else:
                result = await self.retry_policy.run(self._execute_once, command)
            span.set_attribute("events.count", len(result.events))

        logger.info(
            f"Executed {command.command_type} on {result.aggregate_id}, "
            f"emitted {len(result.events)} events"
        )

        await self._notify_listeners(result.events)
        return result

    async def _execute_once(self, command: BaseCommand) -> CommandResult:
        async with self.db.session() as session:
            aggregate = await self.handle(session, command)
            events = aggregate.clear_pending_events()
            expected_version = aggregate.version - len(events)

            committed = await self.event_store.append(
                session,
                aggregate.id,
                aggregate.aggregate_type,
                expected_version,
                events,
                command=command.to_audit(),
            )
            await self.projections.project(session, committed)
            await self._maybe_snapshot(session, aggregate, expected_version)

        return CommandResult(
            aggregate_id=aggregate.id,
            version=aggregate.version,
            events=committed,
        )

    async def handle(self, session: AsyncSession, command: BaseCommand) -> AggregateRoot:
        """
        Run the command against its aggregate and return the aggregate with
        its new events pending.
        """
        raise NotImplementedError("Subclasses must implement handle()")

    async def load_aggregate(
        self,
        session: AsyncSession,
        aggregate_class: Type[A],
        aggregate_id: str,
    ) -> A:
        """
        Rebuild an aggregate from its latest snapshot and the events after it.

        Raises:
            NotFoundError: If no stream of that aggregate type exists
        """
        stream = await self.event_store.get_stream(session, aggregate_id)
        if stream is None or stream.aggregate_type != aggregate_class.aggregate_type:
            raise NotFoundError(
                f"{aggregate_class.aggregate_type.capitalize()} {aggregate_id} not found",
                aggregate_type=aggregate_class.aggregate_type,
                aggregate_id=aggregate_id,
            )

        snapshot = None
        if self.snapshot_store is not None:
            snapshot = await self.snapshot_store.get_latest_snapshot(session, aggregate_id)
        events = await self.event_store.load(
            session, aggregate_id, after_sequence=snapshot.version if snapshot else 0
        )
        return aggregate_class.from_history(aggregate_id, events, snapshot)

    async def _maybe_snapshot(
        self,
        session: AsyncSession,
        aggregate: AggregateRoot,
        previous_version: int,
    ) -> None:
        if self.snapshot_store is None:
            return
        threshold = getattr(self.event_store, "snapshot_threshold", 0)
        if SnapshotStore.should_snapshot(previous_version, aggregate.version, threshold):
            await self.snapshot_store.save_snapshot(session, aggregate.to_snapshot())

    async def _notify_listeners(self, events: Sequence[BaseEvent]) -> None:
        # The command is already committed; a listener failure must not undo it
        for listener in self.listeners:
            try:
                await listener(events)
            except Exception:
                logger.warning(
                    f"Post-commit listener {getattr(listener, '__qualname__', listener)!r} failed",
                    exc_info=True,
                )


class CourseCommandHandler(CommandHandler):
    """Handles every course and lesson command of the lms service."""

    async def handle(self, session: AsyncSession, command: BaseCommand) -> AggregateRoot:
        if isinstance(command, CreateCourse):
            return Course.create(
                command.aggregate_id,
                title=command.title,
                description=command.description,
                instructor_id=command.instructor_id,
            )

        if isinstance(command, UpdateCourse):
            course = await self.load_aggregate(session, Course, command.aggregate_id)
            course.update(title=command.title, description=command.description)
            return course

        if isinstance(command, DeleteCourse):
            course = await self.load_aggregate(session, Course, command.aggregate_id)
            course.delete()
            return course

        if isinstance(command, CreateLesson):
            return Lesson.create(
                command.aggregate_id,
                course_id=command.course_id,
                title=command.title,
                content=command.content,
                order=command.order,
            )

        if isinstance(command, UpdateLesson):
            lesson = await self.load_aggregate(session, Lesson, command.aggregate_id)
            lesson.update(title=command.title, content=command.content, order=command.order)
            return lesson

        if isinstance(command, DeleteLesson):
            lesson = await self.load_aggregate(session, Lesson, command.aggregate_id)
            lesson.delete()
            return lesson

        if isinstance(command, CompleteLesson):
            lesson = await self.load_aggregate(session, Lesson, command.aggregate_id)
            lesson.complete(command.user_id, completed_at=command.completed_at)
            return lesson

        raise TypeError(f"{type(self).__name__} cannot handle {command.command_type}")
