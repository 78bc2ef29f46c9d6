"""
learnflow - Next-Course Recommendation

Decision chain of the reco service, evaluated per request:

1. No local history: first course of the lms course list, otherwise the
   configured new-learner fallback.
2. History: first course in the learner's lms stats below 100% completion.
3. Otherwise a course related to the most recently completed one.
4. Otherwise the configured popular-course fallback.

recommend() never raises on upstream trouble; an UpstreamUnavailableError
only moves evaluation to the next tier. None means "no recommendation" and
happens only when the fallback that would apply has no configured course id.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from config import RecommendationConfig
from core.errors import UpstreamUnavailableError
from core.types import CourseStatsDict, LmsQueryClient
from db.database import DatabaseClient
from db.read_models import LearnerHistoryQueries
from observability.tracing import create_span


logger = logging.getLogger(__name__)

NEW_LEARNER_REASON = "Recommended for new learners - first available course from LMS"
RELATED_COURSE_TITLE = "Advanced Course"


@dataclass(frozen=True)
class Recommendation:
    course_id: str
    title: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecommendationEngine:
    """
    Computes a learner's next course from local history plus live lms queries.

    Usage:
        engine = RecommendationEngine(db, LearnerHistoryQueries(), lms_client, config.recommendation)
        recommendation = await engine.recommend("user-1")
    """

    def __init__(
        self,
        db: DatabaseClient,
        history: LearnerHistoryQueries,
        lms_client: LmsQueryClient,
        config: Optional[RecommendationConfig] = None,
    ):
        self.db = db
        self.history = history
        self.lms_client = lms_client
        self.config = config or RecommendationConfig()

    async def recommend(self, user_id: str) -> Optional[Recommendation]:
        with create_span("recommendation.recommend", attributes={"user.id": user_id}) as span:
            async with self.db.session() as session:
                recent = await self.history.most_recent(session, user_id)

            if recent is None:
                recommendation = await self._for_new_learner()
                span.set_attribute("recommendation.tier", "new_learner")
                return recommendation

            recommendation = await self._continue_incomplete(user_id)
            if recommendation is not None:
                span.set_attribute("recommendation.tier", "incomplete")
                return recommendation

            if recent.course_id:
                span.set_attribute("recommendation.tier", "related")
                return Recommendation(
                    course_id=f"related-to-{recent.course_id}",
                    title=RELATED_COURSE_TITLE,
                    reason=f"Based on your completion of course {recent.course_id}",
                )

            span.set_attribute("recommendation.tier", "popular")
            return self._fallback(
                self.config.popular_course_id,
                self.config.popular_course_title,
                self.config.popular_reason,
            )

    async def _for_new_learner(self) -> Optional[Recommendation]:
        try:
            courses = await self.lms_client.get_courses()
        except UpstreamUnavailableError as e:
            logger.error(f"Error fetching courses from lms: {e}")
            courses = []

        for course in courses:
            # entries without an id cannot be linked to
            if course.get("id") in (None, ""):
                continue
            return Recommendation(
                course_id=str(course["id"]),
                title=str(course.get("title") or ""),
                reason=NEW_LEARNER_REASON,
            )

        return self._fallback(
            self.config.new_learner_course_id,
            self.config.new_learner_course_title,
            self.config.new_learner_reason,
        )

    async def _continue_incomplete(self, user_id: str) -> Optional[Recommendation]:
        try:
            stats = await self.lms_client.get_user_stats(user_id)
        except UpstreamUnavailableError as e:
            logger.error(f"Error fetching user stats from lms: {e}")
            return None

        course = first_incomplete(stats.get("courses") or [])
        if course is None:
            return None
        return Recommendation(
            course_id=course["course_id"],
            title=course["title"],
            reason=f"Continue your learning - {course['completion_percentage']}% complete",
        )

    @staticmethod
    def _fallback(course_id: str, title: str, reason: str) -> Optional[Recommendation]:
        if not course_id:
            return None
        return Recommendation(course_id=course_id, title=title, reason=reason)


def first_incomplete(courses: List[CourseStatsDict]) -> Optional[CourseStatsDict]:
    """First course whose completion percentage is known and below 100."""
    for course in courses:
        percentage = course.get("completion_percentage")
        if isinstance(percentage, (int, float)) and percentage < 100:
            return course
    return None
