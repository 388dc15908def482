"""Record types for the CleverCard core.

Remote rows (profiles, classes, students, report_cards) are validated into
frozen pydantic records on the way in. The create payloads (``*Create``)
validate what the UI layer hands to the store before it goes over the wire.

The application state itself is a frozen dataclass: it is replaced as a
whole, never mutated field by field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from clevercard.core.errors import ValidationError

Role = Literal["teacher", "admin"]
Gender = Literal["male", "female"]
InsightType = Literal["strength", "weakness", "recommendation", "improvement"]

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")

MIN_PASSWORD_LENGTH = 6


def validate_email(email: str) -> bool:
    """Validate email format.

    Args:
        email: Email address to validate

    Returns:
        True if the address looks valid, False otherwise
    """
    return bool(email) and bool(EMAIL_PATTERN.match(email))


# =============================================================================
# SESSION
# =============================================================================


@dataclass(frozen=True)
class Session:
    """Proof of authenticated identity issued by the remote backend.

    The core only references the identity; the token is opaque.
    ``access_token`` is None for a fresh sign-up that still awaits
    email confirmation.
    """

    user_id: str
    email: str
    access_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: int | None = None

    @property
    def is_active(self) -> bool:
        """True when the session carries a usable token."""
        return bool(self.access_token)


class SessionEvent:
    """Session-change event names delivered by the backend."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_DELETED = "USER_DELETED"


# =============================================================================
# REMOTE RECORDS
# =============================================================================


class _Record(BaseModel):
    """Base for rows read from the remote tables."""

    model_config = {"frozen": True, "extra": "ignore"}

    @classmethod
    def from_row(cls, row: dict[str, Any]):
        """Validate a remote row, raising the core's ValidationError."""
        try:
            return cls.model_validate(row)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {cls.__name__} record: {e}") from e


class User(_Record):
    """Signed-in user: session identity joined with the profile row."""

    id: str
    email: str
    full_name: str = ""
    role: Role = "teacher"
    school_id: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_session(cls, session: Session, profile: dict[str, Any] | None) -> User:
        """Build the user from a session and its (possibly missing) profile."""
        profile = profile or {}
        return cls(
            id=session.user_id,
            email=session.email,
            full_name=profile.get("full_name") or "",
            role=profile.get("role") or "teacher",
            school_id=profile.get("school_id"),
            avatar_url=profile.get("avatar_url"),
        )


class School(_Record):
    """A school; read-only in the core."""

    id: str
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None


class SchoolClass(_Record):
    """A class owned by a teacher."""

    id: str
    school_id: str
    teacher_id: str
    name: str
    subject: str
    academic_year: str
    created_at: str
    student_count: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_student_count(cls, data: Any) -> Any:
        # Joined aggregate arrives as students: [{"count": n}]
        if isinstance(data, dict) and "student_count" not in data:
            joined = data.get("students")
            if isinstance(joined, list) and joined and isinstance(joined[0], dict):
                data = {**data, "student_count": joined[0].get("count")}
        return data


class Student(_Record):
    """A student; belongs to exactly one class."""

    id: str
    class_id: str
    full_name: str
    registration_number: str
    date_of_birth: str | None = None
    gender: Gender | None = None
    parent_contact: str | None = None
    address: str | None = None
    created_at: str


class AIInsight(_Record):
    """An insight embedded in a report card."""

    type: InsightType
    subject: str | None = None
    message: str
    confidence: float = Field(ge=0.0, le=1.0)


class ReportCard(_Record):
    """A term report for one student.

    ``total_score`` and ``grade`` are carried as delivered; the core does
    not derive them from ``scores``.
    """

    id: str
    student_id: str
    term: str
    academic_year: str
    scores: dict[str, float] = Field(default_factory=dict)
    teacher_remarks: str = ""
    ai_insights: list[AIInsight] | None = None
    total_score: float
    grade: str
    position: int | None = None
    created_at: str
    updated_at: str


# =============================================================================
# CREATE PAYLOADS
# =============================================================================


class _Create(BaseModel):
    """Base for partial records sent on insert."""

    model_config = {"extra": "forbid"}

    @classmethod
    def parse(cls, data: dict[str, Any] | _Create):
        """Validate caller input, raising the core's ValidationError."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {cls.__name__} payload: {e}") from e

    def to_insert(self) -> dict[str, Any]:
        """Dictionary to send to the remote table (unset fields omitted)."""
        return self.model_dump(exclude_none=True)


class ClassCreate(_Create):
    """Partial class; ``teacher_id`` is injected by the store."""

    name: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    academic_year: str = Field(..., min_length=1)
    school_id: str = "default"


class StudentCreate(_Create):
    """Partial student; ``class_id`` is mandatory."""

    class_id: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    registration_number: str = Field(..., min_length=1)
    date_of_birth: str | None = None
    gender: Gender | None = None
    parent_contact: str | None = None
    address: str | None = None


class ReportCardCreate(_Create):
    """Partial report card."""

    student_id: str = Field(..., min_length=1)
    term: str = Field(..., min_length=1)
    academic_year: str = Field(..., min_length=1)
    scores: dict[str, float] = Field(default_factory=dict)
    teacher_remarks: str = ""
    ai_insights: list[AIInsight] | None = None
    total_score: float
    grade: str
    position: int | None = None

    def to_insert(self) -> dict[str, Any]:
        data = super().to_insert()
        if self.ai_insights is not None:
            data["ai_insights"] = [i.model_dump(exclude_none=True) for i in self.ai_insights]
        return data


# =============================================================================
# CAPTURE RESULTS
# =============================================================================


@dataclass(frozen=True)
class RegisterRow:
    """One student line read off a register page."""

    name: str
    scores: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class CaptureResult:
    """Output of a capture run, handed to the caller and then discarded.

    Image runs carry structured ``rows``; audio runs carry the
    transcription in ``text`` only.
    """

    source: Literal["image", "audio"]
    text: str
    rows: tuple[RegisterRow, ...] = ()
    confidence: float | None = None
    duration_seconds: float | None = None


# =============================================================================
# APPLICATION STATE
# =============================================================================


@dataclass(frozen=True)
class AppState:
    """Snapshot of everything the UI reads.

    Replaced as a whole through ``StateContainer.update``.
    """

    user: User | None = None
    classes: tuple[SchoolClass, ...] = ()
    students: tuple[Student, ...] = ()
    reports: tuple[ReportCard, ...] = ()
    is_loading: bool = False
    error: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None
