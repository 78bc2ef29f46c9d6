"""
learnflow - Read Model Queries

Query side of both services. Nothing here writes; rows are maintained by
the projections.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.types import CourseStatsDict, UserStatsDict
from db.events import ensure_utc
from db.models import (
    CourseRecord,
    LearnerHistoryRecord,
    LessonCompletionRecord,
    LessonRecord,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CourseView:
    id: str
    title: str
    description: Optional[str]
    instructor_id: str
    created_at: datetime
    updated_at: datetime
    completion_percentage: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructor_id": self.instructor_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completion_percentage": self.completion_percentage,
        }


@dataclass(frozen=True)
class LessonView:
    id: str
    course_id: str
    title: str
    content: Optional[str]
    order: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "content": self.content,
            "order": self.order,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class HistoryEntry:
    user_id: str
    lesson_id: str
    course_id: str
    completed_at: datetime


def _course_view(record: CourseRecord, percentage: Optional[float] = None) -> CourseView:
    return CourseView(
        id=record.aggregate_id,
        title=record.title,
        description=record.description,
        instructor_id=record.instructor_id,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        completion_percentage=percentage,
    )


def _lesson_view(record: LessonRecord) -> LessonView:
    return LessonView(
        id=record.aggregate_id,
        course_id=record.course_id,
        title=record.title,
        content=record.content,
        order=record.order,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


class CourseQueries:
    """Course, lesson and completion lookups for the lms service."""

    async def list_courses(self, session: AsyncSession) -> List[CourseView]:
        result = await session.execute(
            select(CourseRecord).order_by(CourseRecord.created_at, CourseRecord.aggregate_id)
        )
        return [_course_view(record) for record in result.scalars()]

    async def get_course(
        self,
        session: AsyncSession,
        course_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[CourseView]:
        """A course, with the learner's completion percentage when user_id is given."""
        record = await session.get(CourseRecord, course_id)
        if record is None:
            return None
        percentage = None
        if user_id:
            percentage = await self.completion_percentage(session, course_id, user_id)
        return _course_view(record, percentage)

    async def list_lessons(
        self,
        session: AsyncSession,
        course_id: Optional[str] = None,
    ) -> List[LessonView]:
        query = select(LessonRecord)
        if course_id is not None:
            query = query.where(LessonRecord.course_id == course_id)
        query = query.order_by(LessonRecord.course_id, LessonRecord.order, LessonRecord.created_at)
        result = await session.execute(query)
        return [_lesson_view(record) for record in result.scalars()]

    async def get_lesson(self, session: AsyncSession, lesson_id: str) -> Optional[LessonView]:
        record = await session.get(LessonRecord, lesson_id)
        return _lesson_view(record) if record is not None else None

    async def completion_percentage(
        self,
        session: AsyncSession,
        course_id: str,
        user_id: str,
    ) -> float:
        """
        round(K / N * 100, 2) where K is the distinct lessons of the course
        the learner completed and N the course's current lesson count.

        Returns 0 when the course has no lessons. Completion rows of deleted
        lessons still count towards K.
        """
        lesson_count = await session.scalar(
            select(func.count()).select_from(LessonRecord).where(LessonRecord.course_id == course_id)
        )
        if not lesson_count:
            return 0

        completed = await session.scalar(
            select(func.count(distinct(LessonCompletionRecord.lesson_id))).where(
                LessonCompletionRecord.course_id == course_id,
                LessonCompletionRecord.user_id == user_id,
            )
        )
        return round((completed or 0) / lesson_count * 100, 2)

    async def user_stats(self, session: AsyncSession, user_id: str) -> UserStatsDict:
        """
        Completion summary of one learner.

        courses lists existing courses with at least one completion by the
        learner, oldest course first.
        """
        total_lessons_completed = await session.scalar(
            select(func.count(distinct(LessonCompletionRecord.lesson_id))).where(
                LessonCompletionRecord.user_id == user_id
            )
        )

        enrolled = (
            select(LessonCompletionRecord.course_id)
            .where(LessonCompletionRecord.user_id == user_id)
            .distinct()
        )
        result = await session.execute(
            select(CourseRecord)
            .where(CourseRecord.aggregate_id.in_(enrolled))
            .order_by(CourseRecord.created_at, CourseRecord.aggregate_id)
        )
        courses = list(result.scalars())

        course_stats: List[CourseStatsDict] = []
        for course in courses:
            course_stats.append({
                "course_id": course.aggregate_id,
                "title": course.title,
                "completion_percentage": await self.completion_percentage(
                    session, course.aggregate_id, user_id
                ),
            })

        return {
            "user_id": user_id,
            "total_lessons_completed": total_lessons_completed or 0,
            "total_courses_enrolled": len(courses),
            "courses": course_stats,
        }


class LearnerHistoryQueries:
    """Learner history lookups for the reco service."""

    async def history_for(self, session: AsyncSession, user_id: str) -> List[HistoryEntry]:
        """All completions of a learner, most recent first."""
        result = await session.execute(
            select(LearnerHistoryRecord)
            .where(LearnerHistoryRecord.user_id == user_id)
            .order_by(LearnerHistoryRecord.completed_at.desc(), LearnerHistoryRecord.id.desc())
        )
        return [
            HistoryEntry(
                user_id=record.user_id,
                lesson_id=record.lesson_id,
                course_id=record.course_id,
                completed_at=ensure_utc(record.completed_at),
            )
            for record in result.scalars()
        ]

    async def most_recent(self, session: AsyncSession, user_id: str) -> Optional[HistoryEntry]:
        history = await self.history_for(session, user_id)
        return history[0] if history else None
