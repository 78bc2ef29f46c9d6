"""
learnflow - API Schemas

Pydantic request and response models of the lms and reco HTTP APIs.
Business validation (required titles, non-negative order) stays in the
aggregates; these models only fix the JSON shape.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ==================== lms ====================

class CourseCreateRequest(BaseModel):
    """Request to create a course."""
    title: Optional[str] = Field(default=None, description="Course title")
    description: Optional[str] = Field(default=None, description="Free text description")
    instructor_id: Optional[str] = Field(default=None, description="Owning instructor")


class CourseUpdateRequest(BaseModel):
    """Partial course update; null or missing fields are left unchanged."""
    title: Optional[str] = None
    description: Optional[str] = None


class LessonCreateRequest(BaseModel):
    """Request to create a lesson."""
    course_id: Optional[str] = Field(default=None, description="Owning course")
    title: Optional[str] = Field(default=None, description="Lesson title")
    content: Optional[str] = Field(default=None, description="Lesson body")
    order: Optional[int] = Field(default=None, description="Position within the course, 0 when omitted")


class LessonUpdateRequest(BaseModel):
    """Partial lesson update; null or missing fields are left unchanged."""
    title: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = None


class CompleteLessonRequest(BaseModel):
    user_id: Optional[str] = None


class CourseListResponse(BaseModel):
    data: List[Dict[str, Any]]


class CourseStatsResponse(BaseModel):
    course_id: str
    title: str
    completion_percentage: float


class UserStatsResponse(BaseModel):
    user_id: str
    total_lessons_completed: int
    total_courses_enrolled: int
    courses: List[CourseStatsResponse]


class MessageResponse(BaseModel):
    message: str


# ==================== reco ====================

class LessonCompletedPayload(BaseModel):
    """
    A relayed completion.

    Fields are loosely typed here and checked by the ingestor so that a
    missing id and a malformed date both produce the same error shape.
    """
    user_id: Optional[str] = None
    lesson_id: Optional[str] = None
    course_id: Optional[str] = None
    completed_at: Optional[str] = None


class LessonCompletedRequest(BaseModel):
    event: LessonCompletedPayload


class LessonCompletedResponse(BaseModel):
    message: str
    event_id: str
    user_id: str
    lesson_id: str
    course_id: str


class RecommendedCourse(BaseModel):
    course_id: str
    title: str
    reason: str


class NextCourseResponse(BaseModel):
    user_id: str
    recommended_course: RecommendedCourse


# ==================== shared ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    components: Dict[str, str]
    trace_id: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    code: Optional[str] = None
