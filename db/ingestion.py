"""
learnflow - Relayed Event Ingestion

The reco service receives lesson completions relayed by the lms service.
Each one is appended as a LessonCompleted event to the learner's own stream
(aggregate type "learner", keyed by user id) and projected into
learner_histories in the same transaction.

Usage:
    ingestor = LessonCompletedIngestor(db, EventStore(), ProjectionManager([LearnerHistoryProjection()]))
    event = await ingestor.ingest({"user_id": "u-1", "lesson_id": "l-1", "course_id": "c-1"})
"""
import logging
from typing import Any, Mapping, Optional

from core.errors import ConcurrencyError, ValidationError
from core.resilience import RetryConfig, RetryPolicy
from db.database import DatabaseClient
from db.event_store import NO_STREAM, CommandAudit, IEventStore
from db.events import LessonCompleted, parse_timestamp, utcnow
from db.projections import ProjectionManager
from observability.tracing import create_span


logger = logging.getLogger(__name__)

LEARNER_AGGREGATE_TYPE = "learner"

REQUIRED_FIELDS = ("user_id", "lesson_id", "course_id")


class LessonCompletedIngestor:
    """Stores relayed completions in the downstream event store."""

    def __init__(
        self,
        db: DatabaseClient,
        event_store: IEventStore,
        projections: ProjectionManager,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.db = db
        self.event_store = event_store
        self.projections = projections
        self.retry_policy = RetryPolicy(retry_config or RetryConfig(
            max_attempts=3,
            retryable_exceptions={ConcurrencyError},
        ))

    @staticmethod
    def parse(payload: Mapping[str, Any]) -> LessonCompleted:
        """
        Build the event from a relayed payload.

        completed_at is optional; when absent the receipt time is used.

        Raises:
            ValidationError: If an id is missing or completed_at is malformed
        """
        for name in REQUIRED_FIELDS:
            value = payload.get(name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(
                    f"{name} is required",
                    field_name=name,
                    actual_value=value,
                )

        raw_completed_at = payload.get("completed_at")
        if raw_completed_at in (None, ""):
            completed_at = utcnow()
        else:
            try:
                completed_at = parse_timestamp(raw_completed_at)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"completed_at is not an ISO-8601 timestamp: {raw_completed_at!r}",
                    field_name="completed_at",
                    actual_value=raw_completed_at,
                    cause=e,
                ) from e

        return LessonCompleted(
            user_id=payload["user_id"],
            lesson_id=payload["lesson_id"],
            course_id=payload["course_id"],
            completed_at=completed_at,
        )

    async def ingest(self, payload: Mapping[str, Any]) -> LessonCompleted:
        """Validate, append and project one relayed completion."""
        event = self.parse(payload)
        with create_span(
            "ingest.lesson_completed",
            attributes={"user.id": event.user_id, "lesson.id": event.lesson_id},
        ):
            committed = await self.retry_policy.run(self._ingest_once, event)

        logger.info(
            f"Ingested completion of lesson {event.lesson_id} by {event.user_id} "
            f"(stream version {committed.sequence_number})"
        )
        return committed

    async def _ingest_once(self, event: LessonCompleted) -> LessonCompleted:
        async with self.db.session() as session:
            stream = await self.event_store.get_stream(session, event.user_id)
            expected_version = stream.version if stream is not None else NO_STREAM

            committed = await self.event_store.append(
                session,
                event.user_id,
                LEARNER_AGGREGATE_TYPE,
                expected_version,
                [event],
                command=CommandAudit(
                    command_type="RecordLessonCompleted",
                    payload=event.payload(),
                    user_id=event.user_id,
                ),
            )
            await self.projections.project(session, committed)
        return committed[0]
