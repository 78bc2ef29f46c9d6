"""
learnflow - lms HTTP API

Courses, lessons, completions and learner stats. Writes go through the
command handler; reads come straight from the read model, which is already
up to date when a command returns.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Response

from api.app import create_app, error_response, get_services
from api.schemas import (
    CompleteLessonRequest,
    CourseCreateRequest,
    CourseListResponse,
    CourseUpdateRequest,
    ErrorResponse,
    LessonCreateRequest,
    LessonUpdateRequest,
    MessageResponse,
    UserStatsResponse,
)
from core.bootstrap import LmsServices
from core.types import from_optional
from db.commands import (
    CompleteLesson,
    CreateCourse,
    CreateLesson,
    DeleteCourse,
    DeleteLesson,
    UpdateCourse,
    UpdateLesson,
)
from observability import get_logger


logger = get_logger(__name__)

router = APIRouter()

COURSE_NOT_FOUND = "Course not found"
LESSON_NOT_FOUND = "Lesson not found"


async def _course_json(
    services: LmsServices, course_id: str, user_id: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    async with services.db.session() as session:
        course = await services.queries.get_course(session, course_id, user_id=user_id)
    return course.to_dict() if course is not None else None


async def _lesson_json(services: LmsServices, lesson_id: str) -> Optional[Dict[str, Any]]:
    async with services.db.session() as session:
        lesson = await services.queries.get_lesson(session, lesson_id)
    return lesson.to_dict() if lesson is not None else None


# ==================== Courses ====================

@router.get("/courses", response_model=CourseListResponse)
async def list_courses(
    user_id: Optional[str] = None,
    services: LmsServices = Depends(get_services),
):
    """All courses, oldest first; with user_id each carries the learner's completion."""
    async with services.db.session() as session:
        courses = await services.queries.list_courses(session)
        data: List[Dict[str, Any]] = []
        for course in courses:
            item = course.to_dict()
            if user_id:
                item["completion_percentage"] = await services.queries.completion_percentage(
                    session, course.id, user_id
                )
            data.append(item)
    return {"data": data}


@router.get("/courses/{course_id}")
async def get_course(
    course_id: str,
    user_id: Optional[str] = None,
    services: LmsServices = Depends(get_services),
):
    course = await _course_json(services, course_id, user_id)
    if course is None:
        return error_response(404, COURSE_NOT_FOUND)
    return course


@router.post("/courses", status_code=201)
async def create_course(
    body: CourseCreateRequest,
    services: LmsServices = Depends(get_services),
):
    result = await services.command_handler.execute(CreateCourse(
        title=body.title,
        description=body.description,
        instructor_id=body.instructor_id,
    ))
    return await _course_json(services, result.aggregate_id)


@router.api_route("/courses/{course_id}", methods=["PATCH", "PUT"])
async def update_course(
    course_id: str,
    body: CourseUpdateRequest,
    services: LmsServices = Depends(get_services),
):
    await services.command_handler.execute(UpdateCourse(
        aggregate_id=course_id,
        title=from_optional(body.title),
        description=from_optional(body.description),
    ))
    return await _course_json(services, course_id)


@router.delete("/courses/{course_id}", status_code=204)
async def delete_course(
    course_id: str,
    services: LmsServices = Depends(get_services),
):
    await services.command_handler.execute(DeleteCourse(aggregate_id=course_id))
    return Response(status_code=204)


# ==================== Lessons ====================

@router.get("/lessons")
async def list_lessons(
    course_id: Optional[str] = None,
    services: LmsServices = Depends(get_services),
):
    async with services.db.session() as session:
        lessons = await services.queries.list_lessons(session, course_id=course_id)
    return [lesson.to_dict() for lesson in lessons]


@router.get("/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: str,
    services: LmsServices = Depends(get_services),
):
    lesson = await _lesson_json(services, lesson_id)
    if lesson is None:
        return error_response(404, LESSON_NOT_FOUND)
    return lesson


@router.post("/lessons", status_code=201)
async def create_lesson(
    body: LessonCreateRequest,
    services: LmsServices = Depends(get_services),
):
    result = await services.command_handler.execute(CreateLesson(
        course_id=body.course_id,
        title=body.title,
        content=body.content,
        order=body.order if body.order is not None else 0,
    ))
    return await _lesson_json(services, result.aggregate_id)


@router.api_route("/lessons/{lesson_id}", methods=["PATCH", "PUT"])
async def update_lesson(
    lesson_id: str,
    body: LessonUpdateRequest,
    services: LmsServices = Depends(get_services),
):
    await services.command_handler.execute(UpdateLesson(
        aggregate_id=lesson_id,
        title=from_optional(body.title),
        content=from_optional(body.content),
        order=from_optional(body.order),
    ))
    return await _lesson_json(services, lesson_id)


@router.delete("/lessons/{lesson_id}", status_code=204)
async def delete_lesson(
    lesson_id: str,
    services: LmsServices = Depends(get_services),
):
    await services.command_handler.execute(DeleteLesson(aggregate_id=lesson_id))
    return Response(status_code=204)


@router.post(
    "/lessons/{lesson_id}/complete",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def complete_lesson(
    lesson_id: str,
    body: Optional[CompleteLessonRequest] = None,
    user_id: Optional[str] = None,
    x_user_id: Optional[str] = Header(default=None),
    services: LmsServices = Depends(get_services),
):
    """
    Record a completion. The learner comes from the user_id query parameter,
    the JSON body or the X-User-Id header, in that order.
    """
    if await _lesson_json(services, lesson_id) is None:
        return error_response(404, LESSON_NOT_FOUND)

    learner = user_id or (body.user_id if body is not None else None) or x_user_id
    if not learner:
        return error_response(400, "User ID is required")

    await services.command_handler.execute(CompleteLesson(
        aggregate_id=lesson_id,
        user_id=learner,
    ))
    return {"message": "Lesson completed successfully"}


# ==================== Users ====================

@router.get("/users/{user_id}/stats", response_model=UserStatsResponse)
async def user_stats(
    user_id: str,
    services: LmsServices = Depends(get_services),
):
    async with services.db.session() as session:
        return await services.queries.user_stats(session, user_id)


def create_lms_app(services: LmsServices, create_tables: bool = False) -> FastAPI:
    """Create the lms FastAPI application around wired services."""
    return create_app("lms", services, router, create_tables=create_tables)
