# tutor_sessions/schemas/session_request.py
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from tutor_sessions.models.session_request import SessionRequest, SessionRequestStatus
from tutor_sessions.models.user import UserRole

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class CamelModel(BaseModel):
    # Accept both camelCase (frontend) and snake_case keys
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------- request bodies ----------


class SessionRequestCreate(CamelModel):
    preferred_date: date
    preferred_time: str
    duration: int = 60
    subject: str
    description: Optional[str] = None

    @field_validator("preferred_time")
    def validate_time(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError("preferred_time must be HH:MM")
        return v

    @field_validator("duration")
    def validate_duration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("duration must be positive")
        return v

    @field_validator("subject")
    def validate_subject(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("subject must not be empty")
        return v.strip()


class AssignPayload(CamelModel):
    tutor_id: str
    admin_notes: Optional[str] = None
    scheduled_date_time: Optional[datetime] = None
    approve: bool = False
    version: Optional[int] = None


class StatusPayload(CamelModel):
    status: SessionRequestStatus
    rejection_reason: Optional[str] = None
    version: Optional[int] = None


class CancelPayload(CamelModel):
    cancellation_reason: Optional[str] = None
    version: Optional[int] = None


class AdminCancelPayload(CamelModel):
    cancellation_reason: Optional[str] = None
    version: Optional[int] = None


# ---------- responses ----------


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: str
    phone: Optional[str] = None


class SessionRequestOut(CamelModel):
    id: str
    student_id: str
    tutor_id: Optional[str] = None
    preferred_date: date
    preferred_time: str
    duration: int
    scheduled_date_time: Optional[datetime] = None
    subject: str
    description: Optional[str] = None
    status: SessionRequestStatus
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    tutor_calendar_event_id: Optional[str] = None
    student_calendar_event_id: Optional[str] = None
    meet_link: Optional[str] = None
    calendar_event_link: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    student: Optional[UserSummary] = None
    tutor: Optional[UserSummary] = None


class CalendarErrorOut(CamelModel):
    side: str
    message: str


class CalendarOutcomeOut(CamelModel):
    action: str
    tutor_event_created: bool
    student_event_created: bool
    tutor_event_deleted: bool
    student_event_deleted: bool
    meet_link: Optional[str] = None
    calendar_link: Optional[str] = None
    degraded: bool
    errors: List[CalendarErrorOut]


# Each side's calendar event id belongs to that person's own calendar
_HIDDEN_FIELDS = {
    UserRole.ADMIN.value: set(),
    UserRole.TUTOR.value: {"student_calendar_event_id"},
    UserRole.STUDENT.value: {"tutor_calendar_event_id"},
}


def serialize_session_request(request: SessionRequest, viewer_role: str) -> Dict[str, Any]:
    """
    Shape a SessionRequest for the given viewer. Admin notes stay visible to
    everyone; each party only sees its own calendar event id.
    """
    hidden = _HIDDEN_FIELDS.get(viewer_role, {"tutor_calendar_event_id", "student_calendar_event_id"})
    return SessionRequestOut.model_validate(request).model_dump(
        mode="json",
        by_alias=True,
        exclude=hidden,
    )


def serialize_calendar_outcome(outcome) -> Optional[Dict[str, Any]]:
    if outcome is None:
        return None
    return CalendarOutcomeOut.model_validate(outcome).model_dump(mode="json", by_alias=True)
