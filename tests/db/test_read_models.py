"""
Tests for db/projections.py and db/read_models.py - Read Models.

Covers:
- Course and lesson rows maintained by CourseProjection
- Completion percentage (rounding, distinct lessons, empty courses)
- Deletes that leave completion rows in place
- User stats
- Learner history projection and queries
"""
from datetime import datetime, timedelta, timezone

import pytest

from db.commands import CompleteLesson, DeleteCourse, DeleteLesson, UpdateLesson
from db.event_store import EventStore
from db.events import LessonCompleted
from db.projections import LearnerHistoryProjection, ProjectionManager
from db.read_models import LearnerHistoryQueries


async def _complete(handler, lesson_id: str, user_id: str = "user-1") -> None:
    await handler.execute(CompleteLesson(aggregate_id=lesson_id, user_id=user_id))


# =============================================================================
# Course / Lesson Projection Tests
# =============================================================================

class TestCourseProjection:
    """Tests for course and lesson rows."""

    @pytest.mark.asyncio
    async def test_lessons_listed_in_order(self, lms_db, course_queries, make_course, make_lesson):
        """Test that lessons of a course come back by their order field."""
        course_id = await make_course()
        await make_lesson(course_id, title="Third", order=3)
        await make_lesson(course_id, title="First", order=1)
        await make_lesson(course_id, title="Second", order=2)

        async with lms_db.session() as session:
            lessons = await course_queries.list_lessons(session, course_id)

        assert [lesson.title for lesson in lessons] == ["First", "Second", "Third"]

    @pytest.mark.asyncio
    async def test_list_lessons_filters_by_course(self, lms_db, course_queries, make_course, make_lesson):
        """Test that list_lessons with a course id only returns that course's lessons."""
        first = await make_course(title="A")
        second = await make_course(title="B")
        await make_lesson(first, title="A1")
        await make_lesson(second, title="B1")

        async with lms_db.session() as session:
            only_first = await course_queries.list_lessons(session, first)
            everything = await course_queries.list_lessons(session)

        assert [lesson.title for lesson in only_first] == ["A1"]
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_lesson_update_bumps_updated_at(
        self, lms_db, course_queries, course_handler, make_course, make_lesson
    ):
        """Test that an update changes updated_at but not created_at."""
        lesson_id = await make_lesson(await make_course())
        async with lms_db.session() as session:
            before = await course_queries.get_lesson(session, lesson_id)

        await course_handler.execute(UpdateLesson(aggregate_id=lesson_id, title="Renamed"))

        async with lms_db.session() as session:
            after = await course_queries.get_lesson(session, lesson_id)

        assert after.title == "Renamed"
        assert after.created_at == before.created_at
        assert after.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_course_listing(self, lms_db, course_queries, make_course):
        """Test that every live course is listed with a JSON-ready dict."""
        await make_course(title="A")
        await make_course(title="B")

        async with lms_db.session() as session:
            courses = await course_queries.list_courses(session)

        assert sorted(c.title for c in courses) == ["A", "B"]
        data = courses[0].to_dict()
        assert set(data) == {
            "id", "title", "description", "instructor_id",
            "created_at", "updated_at", "completion_percentage",
        }
        assert data["completion_percentage"] is None


# =============================================================================
# Completion Percentage Tests
# =============================================================================

class TestCompletionPercentage:
    """Tests for the per-learner completion percentage."""

    @pytest.mark.asyncio
    async def test_one_of_three(self, lms_db, course_queries, course_handler, make_course, make_lesson):
        """Test that one of three lessons is 33.33 percent."""
        course_id = await make_course()
        lessons = [await make_lesson(course_id, order=i) for i in range(3)]
        await _complete(course_handler, lessons[0])

        async with lms_db.session() as session:
            course = await course_queries.get_course(session, course_id, user_id="user-1")

        assert course.completion_percentage == 33.33

    @pytest.mark.asyncio
    async def test_all_lessons(self, lms_db, course_queries, course_handler, make_course, make_lesson):
        """Test that completing every lesson is 100."""
        course_id = await make_course()
        for i in range(2):
            await _complete(course_handler, await make_lesson(course_id, order=i))

        async with lms_db.session() as session:
            assert await course_queries.completion_percentage(session, course_id, "user-1") == 100

    @pytest.mark.asyncio
    async def test_no_lessons_is_zero(self, lms_db, course_queries, make_course):
        """Test that a course without lessons reports 0, not a division error."""
        course_id = await make_course()

        async with lms_db.session() as session:
            assert await course_queries.completion_percentage(session, course_id, "user-1") == 0

    @pytest.mark.asyncio
    async def test_duplicate_completions_count_once(
        self, lms_db, course_queries, completion_count, course_handler, make_course, make_lesson
    ):
        """Test that completing the same lesson twice adds two rows but one lesson."""
        course_id = await make_course()
        lesson_id = await make_lesson(course_id)
        await make_lesson(course_id, order=1)
        await _complete(course_handler, lesson_id)
        await _complete(course_handler, lesson_id)

        async with lms_db.session() as session:
            assert await completion_count(session, "user-1", lesson_id) == 2
            assert await course_queries.completion_percentage(session, course_id, "user-1") == 50

    @pytest.mark.asyncio
    async def test_other_learners_do_not_count(
        self, lms_db, course_queries, course_handler, make_course, make_lesson
    ):
        """Test that only the asked learner's completions count."""
        course_id = await make_course()
        lesson_id = await make_lesson(course_id)
        await _complete(course_handler, lesson_id, user_id="someone-else")

        async with lms_db.session() as session:
            assert await course_queries.completion_percentage(session, course_id, "user-1") == 0

    @pytest.mark.asyncio
    async def test_no_user_no_percentage(self, lms_db, course_queries, make_course):
        """Test that get_course without a user leaves the percentage out."""
        course_id = await make_course()

        async with lms_db.session() as session:
            course = await course_queries.get_course(session, course_id)

        assert course.completion_percentage is None


# =============================================================================
# Delete Tests
# =============================================================================

class TestDeletes:
    """Tests for deletes that do not cascade."""

    @pytest.mark.asyncio
    async def test_lesson_delete_keeps_completions(
        self, lms_db, course_queries, completion_count, course_handler, make_course, make_lesson
    ):
        """Test that a deleted lesson's completions are kept and still counted."""
        course_id = await make_course()
        doomed = await make_lesson(course_id)
        await make_lesson(course_id, order=1)
        await make_lesson(course_id, order=2)
        await _complete(course_handler, doomed)

        await course_handler.execute(DeleteLesson(aggregate_id=doomed))

        async with lms_db.session() as session:
            assert await course_queries.get_lesson(session, doomed) is None
            assert await completion_count(session, "user-1", doomed) == 1
            # 1 completed of the 2 lessons that remain
            assert await course_queries.completion_percentage(session, course_id, "user-1") == 50

    @pytest.mark.asyncio
    async def test_course_delete_keeps_lessons(
        self, lms_db, course_queries, completion_count, course_handler, make_course, make_lesson
    ):
        """Test that deleting a course leaves its lessons and completions."""
        course_id = await make_course()
        lesson_id = await make_lesson(course_id)
        await _complete(course_handler, lesson_id)

        await course_handler.execute(DeleteCourse(aggregate_id=course_id))

        async with lms_db.session() as session:
            assert await course_queries.get_course(session, course_id) is None
            assert await course_queries.get_lesson(session, lesson_id) is not None
            assert await completion_count(session, "user-1", lesson_id) == 1


# =============================================================================
# User Stats Tests
# =============================================================================

class TestUserStats:
    """Tests for CourseQueries.user_stats."""

    @pytest.mark.asyncio
    async def test_stats_across_courses(
        self, lms_db, course_queries, course_handler, make_course, make_lesson
    ):
        """Test totals and per-course percentages for one learner."""
        python = await make_course(title="Python")
        rust = await make_course(title="Rust")
        await make_course(title="Untouched")

        py_lessons = [await make_lesson(python, order=i) for i in range(2)]
        rust_lesson = await make_lesson(rust)

        await _complete(course_handler, py_lessons[0])
        await _complete(course_handler, py_lessons[0])
        await _complete(course_handler, rust_lesson)

        async with lms_db.session() as session:
            stats = await course_queries.user_stats(session, "user-1")

        assert stats["user_id"] == "user-1"
        assert stats["total_lessons_completed"] == 2
        assert stats["total_courses_enrolled"] == 2
        by_id = {c["course_id"]: c for c in stats["courses"]}
        assert by_id[python]["completion_percentage"] == 50
        assert by_id[python]["title"] == "Python"
        assert by_id[rust]["completion_percentage"] == 100

    @pytest.mark.asyncio
    async def test_stats_for_unknown_user(self, lms_db, course_queries):
        """Test that a learner with no completions gets zeros."""
        async with lms_db.session() as session:
            stats = await course_queries.user_stats(session, "nobody")

        assert stats == {
            "user_id": "nobody",
            "total_lessons_completed": 0,
            "total_courses_enrolled": 0,
            "courses": [],
        }

    @pytest.mark.asyncio
    async def test_deleted_course_not_enrolled(
        self, lms_db, course_queries, course_handler, make_course, make_lesson
    ):
        """Test that a deleted course drops out of courses but its lessons still count."""
        course_id = await make_course()
        lesson_id = await make_lesson(course_id)
        await _complete(course_handler, lesson_id)
        await course_handler.execute(DeleteCourse(aggregate_id=course_id))

        async with lms_db.session() as session:
            stats = await course_queries.user_stats(session, "user-1")

        assert stats["total_courses_enrolled"] == 0
        assert stats["total_lessons_completed"] == 1


# =============================================================================
# Learner History Tests
# =============================================================================

class TestLearnerHistory:
    """Tests for LearnerHistoryProjection and LearnerHistoryQueries."""

    @pytest.mark.asyncio
    async def test_history_most_recent_first(self, reco_db):
        """Test that history is ordered by completion time, newest first."""
        store = EventStore()
        projections = ProjectionManager([LearnerHistoryProjection()])
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)

        async with reco_db.session() as session:
            committed = await store.append(session, "user-1", "learner", 0, [
                LessonCompleted(user_id="user-1", lesson_id="l-1", course_id="c-1", completed_at=base),
                LessonCompleted(
                    user_id="user-1", lesson_id="l-2", course_id="c-2",
                    completed_at=base + timedelta(days=2),
                ),
                LessonCompleted(
                    user_id="user-1", lesson_id="l-3", course_id="c-1",
                    completed_at=base + timedelta(days=1),
                ),
            ])
            await projections.project(session, committed)

        queries = LearnerHistoryQueries()
        async with reco_db.session() as session:
            history = await queries.history_for(session, "user-1")
            latest = await queries.most_recent(session, "user-1")
            assert await queries.history_for(session, "user-2") == []
            assert await queries.most_recent(session, "user-2") is None

        assert [entry.lesson_id for entry in history] == ["l-2", "l-3", "l-1"]
        assert latest.course_id == "c-2"
        assert latest.completed_at == base + timedelta(days=2)
