"""
learnflow - reco HTTP API

Receives completions relayed by lms and serves next-course recommendations.
"""
from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse

from api.app import create_app, get_services
from api.schemas import (
    ErrorResponse,
    LessonCompletedRequest,
    LessonCompletedResponse,
    NextCourseResponse,
)
from core.bootstrap import RecoServices
from observability import get_logger


logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/events/lesson_completed",
    status_code=201,
    response_model=LessonCompletedResponse,
    responses={422: {"model": ErrorResponse}},
)
async def lesson_completed(
    body: LessonCompletedRequest,
    services: RecoServices = Depends(get_services),
):
    """Store one relayed completion in the learner's history."""
    event = await services.ingestor.ingest(body.event.model_dump())
    return {
        "message": "Event received and processed",
        "event_id": str(event.event_id),
        "user_id": event.user_id,
        "lesson_id": event.lesson_id,
        "course_id": event.course_id,
    }


@router.get(
    "/users/{user_id}/next_course",
    response_model=NextCourseResponse,
)
async def next_course(
    user_id: str,
    services: RecoServices = Depends(get_services),
):
    recommendation = await services.recommendation_engine.recommend(user_id)
    if recommendation is None:
        return JSONResponse(
            status_code=404,
            content={
                "user_id": user_id,
                "message": "No recommendations available at this time",
            },
        )
    return {
        "user_id": user_id,
        "recommended_course": recommendation.to_dict(),
    }


def create_reco_app(services: RecoServices, create_tables: bool = False) -> FastAPI:
    """Create the reco FastAPI application around wired services."""
    return create_app("reco", services, router, create_tables=create_tables)
