"""
Tests for domain/recommendation.py - Next-Course Recommendation.

Covers:
- New learners: first lms course, then the configured fallback
- Continue the first incomplete course
- Related course after everything is complete
- Upstream failures degrade instead of raising
- Empty fallback ids mean no recommendation
- Malformed lms payloads degrade like outages
- Popular-course fallback
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from config import RecommendationConfig
from core.errors import UpstreamUnavailableError
from db.event_store import EventStore
from db.ingestion import LessonCompletedIngestor
from db.models import LearnerHistoryRecord
from db.projections import LearnerHistoryProjection, ProjectionManager
from db.read_models import LearnerHistoryQueries
from domain.recommendation import (
    NEW_LEARNER_REASON,
    RELATED_COURSE_TITLE,
    Recommendation,
    RecommendationEngine,
    first_incomplete,
)
from integrations.lms_client import LmsClient


class FakeLmsClient:
    """In-memory stand-in for LmsClient."""

    def __init__(
        self,
        courses: Optional[List[Dict[str, Any]]] = None,
        stats: Optional[Dict[str, Any]] = None,
        fail: bool = False,
    ):
        self.courses = courses or []
        self.stats = stats or {"courses": []}
        self.fail = fail
        self.calls: List[str] = []

    async def get_courses(self):
        self.calls.append("get_courses")
        if self.fail:
            raise UpstreamUnavailableError("lms down", service="lms")
        return self.courses

    async def get_course(self, course_id, user_id=None):
        raise AssertionError("not used by the engine")

    async def get_user_stats(self, user_id):
        self.calls.append("get_user_stats")
        if self.fail:
            raise UpstreamUnavailableError("lms down", service="lms")
        return self.stats


def _config(**overrides) -> RecommendationConfig:
    values = dict(
        new_learner_course_id="beginner-course-001",
        new_learner_course_title="Introduction to Learning",
        new_learner_reason="Recommended for new learners (fallback)",
        popular_course_id="popular-course-001",
        popular_course_title="Popular Course",
        popular_reason="Recommended based on popular courses",
    )
    values.update(overrides)
    return RecommendationConfig(**values)


@pytest.fixture
def engine_for(reco_db):
    def _build(client: FakeLmsClient, **config) -> RecommendationEngine:
        return RecommendationEngine(reco_db, LearnerHistoryQueries(), client, _config(**config))

    return _build


@pytest.fixture
def record_completion(reco_db, retry_config):
    ingestor = LessonCompletedIngestor(
        reco_db,
        EventStore(),
        ProjectionManager([LearnerHistoryProjection()]),
        retry_config=retry_config,
    )

    async def _record(user_id: str, course_id: str, lesson_id: str = "lesson-1", completed_at=None):
        await ingestor.ingest({
            "user_id": user_id,
            "lesson_id": lesson_id,
            "course_id": course_id,
            "completed_at": completed_at,
        })

    return _record


@pytest.fixture
async def lms_returning():
    """A real LmsClient whose every request gets the given 200 JSON body."""
    clients: List[LmsClient] = []

    def _build(body: Any) -> LmsClient:
        client = LmsClient(
            "http://lms.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        clients.append(client)
        return client

    yield _build
    for client in clients:
        await client.close()


@pytest.fixture
def seed_history(reco_db):
    """Insert a learner history row directly, bypassing ingestion checks."""
    async def _seed(user_id: str, course_id: str) -> None:
        async with reco_db.session() as session:
            session.add(LearnerHistoryRecord(
                user_id=user_id,
                lesson_id="lesson-1",
                course_id=course_id,
                completed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            ))

    return _seed


# =============================================================================
# New Learner Tests
# =============================================================================

class TestNewLearner:
    """Tests for learners without local history."""

    @pytest.mark.asyncio
    async def test_first_lms_course(self, engine_for):
        """Test that a new learner gets the first course the lms lists."""
        client = FakeLmsClient(courses=[
            {"id": "c-1", "title": "Python Basics"},
            {"id": "c-2", "title": "Rust"},
        ])

        result = await engine_for(client).recommend("newbie")

        assert result == Recommendation("c-1", "Python Basics", NEW_LEARNER_REASON)
        assert client.calls == ["get_courses"]

    @pytest.mark.asyncio
    async def test_empty_catalogue_uses_fallback(self, engine_for):
        """Test that no lms courses means the new-learner fallback."""
        result = await engine_for(FakeLmsClient()).recommend("newbie")

        assert result.course_id == "beginner-course-001"
        assert result.title == "Introduction to Learning"
        assert result.reason == "Recommended for new learners (fallback)"

    @pytest.mark.asyncio
    async def test_lms_down_uses_fallback(self, engine_for):
        """Test that an unreachable lms degrades to the fallback."""
        result = await engine_for(FakeLmsClient(fail=True)).recommend("newbie")

        assert result.course_id == "beginner-course-001"

    @pytest.mark.asyncio
    async def test_empty_fallback_id_means_none(self, engine_for):
        """Test that no configured fallback yields no recommendation."""
        engine = engine_for(FakeLmsClient(), new_learner_course_id="")

        assert await engine.recommend("newbie") is None


# =============================================================================
# Returning Learner Tests
# =============================================================================

class TestReturningLearner:
    """Tests for learners with local history."""

    @pytest.mark.asyncio
    async def test_continue_first_incomplete(self, engine_for, record_completion):
        """Test that the first course below 100% is recommended with its percentage."""
        await record_completion("user-1", "c-1")
        client = FakeLmsClient(stats={"courses": [
            {"course_id": "c-1", "title": "Done", "completion_percentage": 100},
            {"course_id": "c-2", "title": "Halfway", "completion_percentage": 33.33},
            {"course_id": "c-3", "title": "Also open", "completion_percentage": 10},
        ]})

        result = await engine_for(client).recommend("user-1")

        assert result == Recommendation(
            "c-2", "Halfway", "Continue your learning - 33.33% complete"
        )
        assert client.calls == ["get_user_stats"]

    @pytest.mark.asyncio
    async def test_related_after_everything_complete(self, engine_for, record_completion):
        """Test that a fully complete learner gets a course related to the latest completion."""
        await record_completion("user-1", "c-old", completed_at="2024-01-01T00:00:00Z")
        await record_completion("user-1", "c-new", completed_at="2024-02-01T00:00:00Z")
        client = FakeLmsClient(stats={"courses": [
            {"course_id": "c-old", "title": "Old", "completion_percentage": 100},
        ]})

        result = await engine_for(client).recommend("user-1")

        assert result.course_id == "related-to-c-new"
        assert result.title == RELATED_COURSE_TITLE
        assert result.reason == "Based on your completion of course c-new"

    @pytest.mark.asyncio
    async def test_lms_down_falls_through_to_related(self, engine_for, record_completion):
        """Test that a stats failure skips the incomplete tier."""
        await record_completion("user-1", "c-1")

        result = await engine_for(FakeLmsClient(fail=True)).recommend("user-1")

        assert result.course_id == "related-to-c-1"

    @pytest.mark.asyncio
    async def test_history_is_per_learner(self, engine_for, record_completion):
        """Test that another learner's history does not count."""
        await record_completion("someone-else", "c-1")
        client = FakeLmsClient(courses=[{"id": "c-9", "title": "First"}])

        result = await engine_for(client).recommend("user-1")

        assert result.course_id == "c-9"


# =============================================================================
# Malformed Upstream Tests
# =============================================================================

class TestMalformedUpstream:
    """Tests for 200 responses from lms whose entries are unusable."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"courses": [{"completion_percentage": 50}]},
        {"courses": "oops"},
        {"courses": [None]},
    ])
    async def test_bad_stats_fall_through_to_related(
        self, engine_for, record_completion, lms_returning, body
    ):
        """Test that unusable stats skip the incomplete tier."""
        await record_completion("user-1", "c-1")

        result = await engine_for(lms_returning(body)).recommend("user-1")

        assert result.course_id == "related-to-c-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"data": ["c1"]}, {"data": [{"title": "No id"}]}, [{"id": ""}]])
    async def test_bad_course_list_uses_fallback(self, engine_for, lms_returning, body):
        """Test that a course list without usable entries means the new-learner fallback."""
        result = await engine_for(lms_returning(body)).recommend("newbie")

        assert result.course_id == "beginner-course-001"

    @pytest.mark.asyncio
    async def test_courses_without_id_are_skipped(self, engine_for, lms_returning):
        """Test that the first course with an id is recommended."""
        client = lms_returning({"data": [{"title": "No id"}, {"id": "c-2", "title": "Second"}]})

        result = await engine_for(client).recommend("newbie")

        assert result == Recommendation("c-2", "Second", NEW_LEARNER_REASON)


# =============================================================================
# Popular Fallback Tests
# =============================================================================

class TestPopularFallback:
    """Tests for the last tier, reached when the latest completion has no course."""

    @pytest.mark.asyncio
    async def test_popular_course(self, engine_for, seed_history):
        """Test that the configured popular course is recommended."""
        await seed_history("user-1", "")

        result = await engine_for(FakeLmsClient(fail=True)).recommend("user-1")

        assert result == Recommendation(
            "popular-course-001", "Popular Course", "Recommended based on popular courses"
        )

    @pytest.mark.asyncio
    async def test_empty_popular_id_means_none(self, engine_for, seed_history):
        """Test that no configured popular course yields no recommendation."""
        await seed_history("user-1", "")

        engine = engine_for(FakeLmsClient(fail=True), popular_course_id="")

        assert await engine.recommend("user-1") is None


# =============================================================================
# first_incomplete Tests
# =============================================================================

class TestFirstIncomplete:
    """Tests for the first_incomplete helper."""

    def test_skips_non_numeric(self):
        """Test that courses without a numeric percentage are skipped."""
        courses = [
            {"course_id": "a", "title": "A", "completion_percentage": None},
            {"course_id": "b", "title": "B", "completion_percentage": "50"},
            {"course_id": "c", "title": "C", "completion_percentage": 0},
        ]
        assert first_incomplete(courses)["course_id"] == "c"

    def test_all_complete(self):
        """Test that no incomplete course gives None."""
        assert first_incomplete([{"course_id": "a", "title": "A", "completion_percentage": 100}]) is None
        assert first_incomplete([]) is None

    def test_to_dict(self):
        """Test the wire form of a recommendation."""
        assert Recommendation("c", "T", "R").to_dict() == {"course_id": "c", "title": "T", "reason": "R"}
