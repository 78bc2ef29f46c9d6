"""
CQRS: Command Definitions

Commands represent intentions to change exactly one aggregate.
They are validated and executed by command handlers.

Update commands default every field to UNSET; only fields given a value
are changed.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional
from uuid import UUID, uuid4

from core.errors import ValidationError
from core.types import UNSET, Maybe, is_set
from db.event_store import CommandAudit


def new_aggregate_id() -> str:
    return str(uuid4())


@dataclass
class BaseCommand:
    """Base class for all commands."""
    aggregate_id: str = field(default_factory=new_aggregate_id)
    command_id: UUID = field(default_factory=uuid4)
    correlation_id: Optional[str] = None

    # Commands that start a new stream are not retried on conflict
    creates_aggregate: ClassVar[bool] = False
    aggregate_type: ClassVar[str] = ""

    @property
    def command_type(self) -> str:
        return type(self).__name__

    def validate(self) -> None:
        """
        Check the command's shape before it touches the store.

        Business rules (required titles, non-negative order) are enforced by
        the aggregate.

        Raises:
            ValidationError: If the command is malformed
        """
        if not isinstance(self.aggregate_id, str) or not self.aggregate_id.strip():
            raise ValidationError(
                f"{self.command_type} requires an aggregate_id",
                field_name="aggregate_id",
                actual_value=self.aggregate_id,
            )

    def to_dict(self) -> Dict[str, Any]:
        """Command fields for the audit record; UNSET fields are omitted."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if not is_set(value):
                continue
            if isinstance(value, UUID):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[f.name] = value
        return data

    def audit_user_id(self) -> Optional[str]:
        return None

    def to_audit(self) -> CommandAudit:
        return CommandAudit(
            command_type=self.command_type,
            payload=self.to_dict(),
            user_id=self.audit_user_id(),
        )


def _check_optional_text(command: BaseCommand, *names: str) -> None:
    for name in names:
        value = getattr(command, name)
        if is_set(value) and value is not None and not isinstance(value, str):
            raise ValidationError(
                f"{name} must be a string",
                field_name=name,
                actual_value=value,
            )


# ==================== Course Commands ====================

@dataclass
class CreateCourse(BaseCommand):
    """
    Create a course.

    Args:
        title: Course title (required)
        description: Optional free text
        instructor_id: Owning instructor (required)
    """
    title: str = ""
    description: Optional[str] = None
    instructor_id: str = ""

    creates_aggregate: ClassVar[bool] = True
    aggregate_type: ClassVar[str] = "course"

    def validate(self) -> None:
        super().validate()
        _check_optional_text(self, "title", "description", "instructor_id")


@dataclass
class UpdateCourse(BaseCommand):
    """
    Change some fields of a course.

    Args:
        title: New title, or UNSET to keep it
        description: New description, or UNSET to keep it
    """
    title: Maybe[str] = UNSET
    description: Maybe[Optional[str]] = UNSET

    aggregate_type: ClassVar[str] = "course"

    def validate(self) -> None:
        super().validate()
        _check_optional_text(self, "title", "description")


@dataclass
class DeleteCourse(BaseCommand):
    """Delete a course. Its completion rows are kept."""

    aggregate_type: ClassVar[str] = "course"


# ==================== Lesson Commands ====================

@dataclass
class CreateLesson(BaseCommand):
    """
    Create a lesson inside a course.

    Args:
        course_id: Owning course (required)
        title: Lesson title (required)
        content: Optional body
        order: Position within the course, 0 when not given
    """
    course_id: str = ""
    title: str = ""
    content: Optional[str] = None
    order: int = 0

    creates_aggregate: ClassVar[bool] = True
    aggregate_type: ClassVar[str] = "lesson"

    def validate(self) -> None:
        super().validate()
        _check_optional_text(self, "course_id", "title", "content")


@dataclass
class UpdateLesson(BaseCommand):
    """
    Change some fields of a lesson.

    Args:
        title: New title, or UNSET
        content: New content, or UNSET
        order: New position, or UNSET
    """
    title: Maybe[str] = UNSET
    content: Maybe[Optional[str]] = UNSET
    order: Maybe[int] = UNSET

    aggregate_type: ClassVar[str] = "lesson"

    def validate(self) -> None:
        super().validate()
        _check_optional_text(self, "title", "content")


@dataclass
class DeleteLesson(BaseCommand):
    """Delete a lesson. Its completion rows are kept."""

    aggregate_type: ClassVar[str] = "lesson"


@dataclass
class CompleteLesson(BaseCommand):
    """
    Record that a learner completed a lesson.

    Args:
        user_id: The learner (required)
        completed_at: When it happened; now when not given
    """
    user_id: str = ""
    completed_at: Optional[datetime] = None

    aggregate_type: ClassVar[str] = "lesson"

    def validate(self) -> None:
        super().validate()
        _check_optional_text(self, "user_id")

    def audit_user_id(self) -> Optional[str]:
        return self.user_id or None
