"""
learnflow - Centralized Type Definitions

Provides type aliases, TypedDicts, Protocol classes and the UNSET sentinel
used for partial updates.

Usage:
    from core.types import UNSET, Maybe, is_set

    title: Maybe[str] = UNSET
    if is_set(title):
        ...
"""
from __future__ import annotations

from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    TypedDict,
    TypeVar,
    Union,
    runtime_checkable,
)

T = TypeVar("T")

# =============================================================================
# TYPE ALIASES - Simple type shortcuts
# =============================================================================

AggregateId = str
UserId = str
CourseId = str
LessonId = str
StreamVersion = int  # 0 means "stream does not exist"


# =============================================================================
# SENTINEL TYPES - Special marker values
# =============================================================================


class _Unset:
    """Sentinel for a field that was not supplied (distinct from None and "")."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Unset":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Unset":
        return self

    def __reduce__(self) -> str:
        return "UNSET"


UNSET = _Unset()

# A field that is either present with a value or absent.
Maybe = Union[T, _Unset]


def is_set(value: Any) -> bool:
    """Return True when a Maybe field carries a value (an empty string counts)."""
    return value is not UNSET


def from_optional(value: Optional[T]) -> Maybe[T]:
    """Map an optional input (None for "not given") onto the UNSET sentinel."""
    return UNSET if value is None else value


# =============================================================================
# TYPED DICTS - Upstream query payloads
# =============================================================================


class CourseSummaryDict(TypedDict, total=False):
    """One entry of the upstream course list."""

    id: str
    title: str
    description: Optional[str]
    instructor_id: str
    completion_percentage: float


class CourseStatsDict(TypedDict):
    """Per-course completion entry of a learner's stats."""

    course_id: str
    title: str
    completion_percentage: float


class UserStatsDict(TypedDict):
    """Learner stats as served by the upstream service."""

    user_id: str
    total_lessons_completed: int
    total_courses_enrolled: int
    courses: List[CourseStatsDict]


# =============================================================================
# PROTOCOLS - Structural seams between services
# =============================================================================


@runtime_checkable
class LmsQueryClient(Protocol):
    """Read-only view of the upstream service used by the recommender."""

    async def get_courses(self) -> List[CourseSummaryDict]:
        ...

    async def get_course(
        self, course_id: str, user_id: Optional[str] = None
    ) -> CourseSummaryDict:
        ...

    async def get_user_stats(self, user_id: str) -> UserStatsDict:
        ...
