"""
learnflow - Event Store Implementation

An append-only ledger holding one stream per aggregate. Each stream has a
version (its last sequence number) used for optimistic concurrency: a writer
that loaded the stream at version N may append only while the stored version
is still N.

Features:
    - Atomic multi-event append per stream (one transaction)
    - Optimistic concurrency via expected version, backed by a conditional
      version update and the (aggregate_id, sequence_number) unique index
    - Command audit records linked to the events they produced
    - Threshold snapshots for faster rehydration

All operations take the caller's AsyncSession so that events and read-model
writes commit or roll back together.

Usage:
    async with db.session() as session:
        committed = await event_store.append(
            session, "course-1", "course", NO_STREAM, [CourseCreated(...)]
        )
        events = await event_store.load(session, "course-1")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ConcurrencyError, EventStoreError
from db.events import BaseEvent, deserialize_event, ensure_utc
from db.models import CommandRecord, EventRecord, SnapshotRecord, StreamRecord
from observability.tracing import create_span

logger = logging.getLogger(__name__)

# Expected version of a stream that has never been written
NO_STREAM = 0

DEFAULT_SNAPSHOT_THRESHOLD = 50


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass(frozen=True, slots=True)
class StreamInfo:
    """Identity and current version of a stream."""
    aggregate_id: str
    aggregate_type: str
    version: int
    snapshot_threshold: int = DEFAULT_SNAPSHOT_THRESHOLD


@dataclass(frozen=True, slots=True)
class CommandAudit:
    """What gets written to command_records alongside the events."""
    command_type: str
    payload: Dict[str, Any]
    user_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    A snapshot of aggregate state at a given stream version.
    """
    aggregate_id: str
    aggregate_type: str
    version: int
    state: Dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# INTERFACES
# =============================================================================


class IEventStore(ABC):
    """
    Core interface for event persistence.
    """

    @abstractmethod
    async def append(
        self,
        session: AsyncSession,
        aggregate_id: str,
        aggregate_type: str,
        expected_version: int,
        events: Sequence[BaseEvent],
        command: Optional[CommandAudit] = None,
    ) -> List[BaseEvent]:
        """
        Append events to a stream as one unit.

        Args:
            session: Unit of work the write joins
            aggregate_id: Stream identity
            aggregate_type: Type of the aggregate owning the stream
            expected_version: Version the caller loaded (NO_STREAM for a new stream)
            events: Events to append, in order
            command: Optional command audit record

        Returns:
            The committed events stamped with their sequence numbers

        Raises:
            ConcurrencyError: If the stream is not at expected_version
            EventStoreError: If the events do not belong to the stream
        """

    @abstractmethod
    async def load(
        self,
        session: AsyncSession,
        aggregate_id: str,
        after_sequence: int = 0,
    ) -> List[BaseEvent]:
        """Events of a stream with sequence_number > after_sequence, in order."""

    @abstractmethod
    async def get_stream(
        self,
        session: AsyncSession,
        aggregate_id: str,
    ) -> Optional[StreamInfo]:
        """Stream identity and version, or None if it was never written."""


class ISnapshotStore(ABC):
    """
    Interface for aggregate snapshot storage.
    """

    @abstractmethod
    async def save_snapshot(self, session: AsyncSession, snapshot: Snapshot) -> None:
        """Save an aggregate snapshot."""

    @abstractmethod
    async def get_latest_snapshot(
        self,
        session: AsyncSession,
        aggregate_id: str,
    ) -> Optional[Snapshot]:
        """Latest snapshot of an aggregate, or None."""


# =============================================================================
# IMPLEMENTATIONS
# =============================================================================


class EventStore(IEventStore):
    """
    SQLAlchemy-backed event store.
    """

    def __init__(self, snapshot_threshold: int = DEFAULT_SNAPSHOT_THRESHOLD) -> None:
        self.snapshot_threshold = snapshot_threshold

    async def append(
        self,
        session: AsyncSession,
        aggregate_id: str,
        aggregate_type: str,
        expected_version: int,
        events: Sequence[BaseEvent],
        command: Optional[CommandAudit] = None,
    ) -> List[BaseEvent]:
        if not events:
            return []
        if expected_version < NO_STREAM:
            raise EventStoreError(f"Invalid expected version {expected_version}")

        positioned = self._position_events(aggregate_id, expected_version, events)
        new_version = expected_version + len(positioned)

        with create_span(
            "event_store.append",
            attributes={
                "aggregate.id": aggregate_id,
                "aggregate.type": aggregate_type,
                "stream.expected_version": expected_version,
                "events.count": len(positioned),
            },
        ):
            await self._advance_stream(
                session, aggregate_id, aggregate_type, expected_version, new_version
            )

            command_record_id: Optional[int] = None
            if command is not None:
                record = CommandRecord(
                    command_type=command.command_type,
                    command_json=command.payload,
                    aggregate_id=aggregate_id,
                    user_id=command.user_id,
                )
                session.add(record)
                await session.flush()
                command_record_id = record.id

            session.add_all([
                EventRecord(
                    event_id=str(event.event_id),
                    aggregate_id=aggregate_id,
                    sequence_number=event.sequence_number,
                    event_type=event.event_type,
                    event_json=event.to_dict(),
                    created_at=ensure_utc(event.timestamp),
                    command_record_id=command_record_id,
                )
                for event in positioned
            ])
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConcurrencyError(aggregate_id, expected_version, None, cause=e) from e

        logger.debug(
            f"Appended {len(positioned)} event(s) to {aggregate_type}/{aggregate_id} "
            f"v{expected_version} -> v{new_version}"
        )
        return positioned

    async def load(
        self,
        session: AsyncSession,
        aggregate_id: str,
        after_sequence: int = 0,
    ) -> List[BaseEvent]:
        result = await session.execute(
            select(EventRecord)
            .where(
                EventRecord.aggregate_id == aggregate_id,
                EventRecord.sequence_number > after_sequence,
            )
            .order_by(EventRecord.sequence_number)
        )
        return [self._to_domain_event(row) for row in result.scalars()]

    async def get_stream(
        self,
        session: AsyncSession,
        aggregate_id: str,
    ) -> Optional[StreamInfo]:
        result = await session.execute(
            select(StreamRecord)
            .where(StreamRecord.aggregate_id == aggregate_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return StreamInfo(
            aggregate_id=record.aggregate_id,
            aggregate_type=record.aggregate_type,
            version=record.version,
            snapshot_threshold=record.snapshot_threshold,
        )

    async def _advance_stream(
        self,
        session: AsyncSession,
        aggregate_id: str,
        aggregate_type: str,
        expected_version: int,
        new_version: int,
    ) -> None:
        """Create the stream or move its version, failing on any version race."""
        stream = await self.get_stream(session, aggregate_id)

        if stream is None:
            if expected_version != NO_STREAM:
                raise ConcurrencyError(aggregate_id, expected_version, NO_STREAM)
            session.add(StreamRecord(
                aggregate_id=aggregate_id,
                aggregate_type=aggregate_type,
                version=new_version,
                snapshot_threshold=self.snapshot_threshold,
            ))
            try:
                await session.flush()
            except IntegrityError as e:
                # Another writer created the stream first
                raise ConcurrencyError(aggregate_id, expected_version, None, cause=e) from e
            return

        if stream.aggregate_type != aggregate_type:
            raise EventStoreError(
                f"Stream {aggregate_id} belongs to a {stream.aggregate_type}, "
                f"not a {aggregate_type}"
            )
        if stream.version != expected_version:
            raise ConcurrencyError(aggregate_id, expected_version, stream.version)

        result = await session.execute(
            update(StreamRecord)
            .where(
                StreamRecord.aggregate_id == aggregate_id,
                StreamRecord.version == expected_version,
            )
            .values(version=new_version, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyError(aggregate_id, expected_version, None)

    @staticmethod
    def _position_events(
        aggregate_id: str,
        expected_version: int,
        events: Sequence[BaseEvent],
    ) -> List[BaseEvent]:
        """Stamp unpositioned events and check the rest are contiguous."""
        positioned: List[BaseEvent] = []
        for offset, event in enumerate(events, start=1):
            sequence = expected_version + offset
            if event.aggregate_id and event.aggregate_id != aggregate_id:
                raise EventStoreError(
                    f"Event {event.event_type} targets {event.aggregate_id}, "
                    f"cannot append to stream {aggregate_id}"
                )
            if event.sequence_number not in (0, sequence):
                raise EventStoreError(
                    f"Event {event.event_type} has sequence {event.sequence_number}, "
                    f"expected {sequence} for stream {aggregate_id}"
                )
            positioned.append(event.with_position(aggregate_id, sequence))
        return positioned

    @staticmethod
    def _to_domain_event(row: EventRecord) -> BaseEvent:
        data = dict(row.event_json)
        data["aggregate_id"] = row.aggregate_id
        data["sequence_number"] = row.sequence_number
        data["event_type"] = row.event_type
        return deserialize_event(data)


class SnapshotStore(ISnapshotStore):
    """
    Table-backed snapshot store.

    A snapshot is taken whenever an append carries a stream across a multiple
    of its snapshot threshold.
    """

    @staticmethod
    def should_snapshot(previous_version: int, new_version: int, threshold: int) -> bool:
        """True when an append moved a stream across a multiple of threshold."""
        if threshold <= 0:
            return False
        return new_version // threshold > previous_version // threshold

    async def save_snapshot(self, session: AsyncSession, snapshot: Snapshot) -> None:
        await session.merge(SnapshotRecord(
            aggregate_id=snapshot.aggregate_id,
            sequence_number=snapshot.version,
            aggregate_type=snapshot.aggregate_type,
            state=snapshot.state,
            created_at=snapshot.created_at,
        ))
        await session.flush()

        logger.debug(
            f"Saved snapshot for {snapshot.aggregate_type}/{snapshot.aggregate_id} "
            f"at version {snapshot.version}"
        )

    async def get_latest_snapshot(
        self,
        session: AsyncSession,
        aggregate_id: str,
    ) -> Optional[Snapshot]:
        result = await session.execute(
            select(SnapshotRecord)
            .where(SnapshotRecord.aggregate_id == aggregate_id)
            .order_by(SnapshotRecord.sequence_number.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return Snapshot(
            aggregate_id=record.aggregate_id,
            aggregate_type=record.aggregate_type,
            version=record.sequence_number,
            state=dict(record.state),
            created_at=ensure_utc(record.created_at),
        )
