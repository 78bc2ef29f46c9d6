"""
learnflow - SQLAlchemy ORM Models

Two groups of tables:
- the event store (streams, events, commands, snapshots), present in both
  service databases
- read models: courses, lessons and completions for lms; learner history
  for reco

Read-model rows are derived state and can always be rebuilt from events.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger, Integer, String, Text, DateTime, JSON,
    ForeignKey, Index, Table, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in local runs and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

ID_LENGTH = 255


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# EVENT STORE
# =============================================================================


class StreamRecord(Base):
    """One row per aggregate stream; version is the last sequence number."""
    __tablename__ = "stream_records"

    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    aggregate_type: Mapped[str] = mapped_column(String(50), index=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    snapshot_threshold: Mapped[int] = mapped_column(Integer, default=50)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<StreamRecord({self.aggregate_type}:{self.aggregate_id} v{self.version})>"


class CommandRecord(Base):
    """Audit row for every command that produced events."""
    __tablename__ = "command_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    command_type: Mapped[str] = mapped_column(String(100), index=True)
    command_json: Mapped[Dict[str, Any]] = mapped_column(JSONType)
    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(ID_LENGTH), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CommandRecord({self.command_type} -> {self.aggregate_id})>"


class EventRecord(Base):
    """Append-only event log keyed by (aggregate_id, sequence_number)."""
    __tablename__ = "event_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), unique=True)
    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH))
    sequence_number: Mapped[int] = mapped_column(Integer)
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    event_json: Mapped[Dict[str, Any]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    command_record_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("command_records.id"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("aggregate_id", "sequence_number", name="uq_event_stream_sequence"),
        Index("ix_event_records_aggregate", "aggregate_id", "sequence_number"),
    )

    def __repr__(self) -> str:
        return f"<EventRecord({self.aggregate_id}#{self.sequence_number} {self.event_type})>"


class SnapshotRecord(Base):
    """Aggregate state captured when a stream crosses its snapshot threshold."""
    __tablename__ = "snapshot_records"

    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    sequence_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    aggregate_type: Mapped[str] = mapped_column(String(50))
    state: Mapped[Dict[str, Any]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<SnapshotRecord({self.aggregate_id}@{self.sequence_number})>"


# =============================================================================
# LMS READ MODELS
# =============================================================================


class CourseRecord(Base):
    """Course read model."""
    __tablename__ = "courses"

    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    instructor_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<CourseRecord({self.aggregate_id}: {self.title!r})>"


class LessonRecord(Base):
    """Lesson read model."""
    __tablename__ = "lessons"

    aggregate_id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    course_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    title: Mapped[str] = mapped_column(String(500))
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_lessons_course_order", "course_id", "order"),
    )

    def __repr__(self) -> str:
        return f"<LessonRecord({self.aggregate_id} of {self.course_id})>"


class LessonCompletionRecord(Base):
    """One row per completion event; duplicates are collapsed at query time."""
    __tablename__ = "lesson_completions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    lesson_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    course_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<LessonCompletionRecord({self.user_id} -> {self.lesson_id})>"


# =============================================================================
# RECO READ MODELS
# =============================================================================


class LearnerHistoryRecord(Base):
    """Downstream copy of a relayed completion. No link to lms rows."""
    __tablename__ = "learner_histories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    lesson_id: Mapped[str] = mapped_column(String(ID_LENGTH))
    course_id: Mapped[str] = mapped_column(String(ID_LENGTH), index=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<LearnerHistoryRecord({self.user_id} {self.course_id}/{self.lesson_id})>"


EVENT_STORE_TABLES: List[Table] = [
    StreamRecord.__table__,
    CommandRecord.__table__,
    EventRecord.__table__,
    SnapshotRecord.__table__,
]

LMS_TABLES: List[Table] = EVENT_STORE_TABLES + [
    CourseRecord.__table__,
    LessonRecord.__table__,
    LessonCompletionRecord.__table__,
]

RECO_TABLES: List[Table] = EVENT_STORE_TABLES + [
    LearnerHistoryRecord.__table__,
]
