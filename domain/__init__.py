"""
learnflow - Domain Layer

Aggregates (Course, Lesson) hold the business rules of the lms service; the
recommendation engine holds the decision chain of the reco service.

Usage:
    from domain import Course, Lesson, RecommendationEngine
"""
from domain.aggregates import AggregateRoot, Course, Lesson
from domain.recommendation import Recommendation, RecommendationEngine

__all__ = [
    "AggregateRoot",
    "Course",
    "Lesson",
    "Recommendation",
    "RecommendationEngine",
]
