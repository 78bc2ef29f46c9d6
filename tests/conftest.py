"""
learnflow - Test Configuration

Pytest fixtures shared by all tests. Databases are SQLite files under
tmp_path; HTTP calls between the services go through httpx.MockTransport
or ASGITransport, never the network.
"""
import json
from typing import Any, Dict, List

import httpx
import pytest
from sqlalchemy import func, select

from config import Config
from core.resilience import RetryConfig
from core.errors import ConcurrencyError
from db.command_handlers import CourseCommandHandler
from db.commands import CreateCourse, CreateLesson
from db.database import DatabaseClient
from db.event_store import EventStore, SnapshotStore
from db.models import LMS_TABLES, RECO_TABLES, LessonCompletionRecord
from db.projections import CourseProjection, ProjectionManager
from db.read_models import CourseQueries


@pytest.fixture
def test_config(monkeypatch) -> Config:
    """Configuration with deterministic, test-friendly values."""
    monkeypatch.setenv("RECO_SERVICE_HOST", "reco.test")
    monkeypatch.setenv("RECO_SERVICE_PORT", "3000")
    monkeypatch.setenv("LMS_SERVICE_URL", "http://lms.test")
    monkeypatch.setenv("COMMAND_RETRY_BASE_DELAY", "0")
    monkeypatch.setenv("OTEL_TRACING_ENABLED", "false")
    return Config()


@pytest.fixture
async def lms_db(tmp_path):
    """An lms database with all lms tables created."""
    db = DatabaseClient(f"sqlite+aiosqlite:///{tmp_path / 'lms.db'}")
    await db.create_tables(LMS_TABLES)
    yield db
    await db.close()


@pytest.fixture
async def reco_db(tmp_path):
    """A reco database with all reco tables created."""
    db = DatabaseClient(f"sqlite+aiosqlite:///{tmp_path / 'reco.db'}")
    await db.create_tables(RECO_TABLES)
    yield db
    await db.close()


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        base_delay=0,
        jitter=False,
        retryable_exceptions={ConcurrencyError},
    )


@pytest.fixture
def event_store() -> EventStore:
    return EventStore(snapshot_threshold=50)


@pytest.fixture
def course_handler(lms_db, event_store, retry_config) -> CourseCommandHandler:
    """lms command handler without listeners."""
    return CourseCommandHandler(
        db=lms_db,
        event_store=event_store,
        projections=ProjectionManager([CourseProjection()]),
        snapshot_store=SnapshotStore(),
        retry_config=retry_config,
    )


@pytest.fixture
def course_queries() -> CourseQueries:
    return CourseQueries()


@pytest.fixture
def completion_count():
    """Raw completion rows of one learner and lesson, duplicates included."""
    async def _count(session, user_id: str, lesson_id: str) -> int:
        return await session.scalar(
            select(func.count()).select_from(LessonCompletionRecord).where(
                LessonCompletionRecord.user_id == user_id,
                LessonCompletionRecord.lesson_id == lesson_id,
            )
        ) or 0

    return _count


@pytest.fixture
def make_course(course_handler):
    """Create a course through the handler and return its id."""

    async def _make(title: str = "Python Basics", instructor_id: str = "instructor-1", **kwargs) -> str:
        result = await course_handler.execute(CreateCourse(
            title=title,
            instructor_id=instructor_id,
            description=kwargs.pop("description", None),
            **kwargs,
        ))
        return result.aggregate_id

    return _make


@pytest.fixture
def make_lesson(course_handler):
    """Create a lesson through the handler and return its id."""

    async def _make(course_id: str, title: str = "Lesson", order: int = 0, **kwargs) -> str:
        result = await course_handler.execute(CreateLesson(
            course_id=course_id,
            title=title,
            order=order,
            **kwargs,
        ))
        return result.aggregate_id

    return _make


class RecordingTransport:
    """
    Builds an httpx.MockTransport that records requests and answers them
    from a handler function.
    """

    def __init__(self, handler=None):
        self.requests: List[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(201, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def recording_transport():
    return RecordingTransport
