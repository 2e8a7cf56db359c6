# tutor_sessions/services/session_request_service.py
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tutor_sessions.core.exceptions import (
    Forbidden,
    InvalidTransition,
    SessionRequestNotFound,
    StaleVersion,
    ValidationFailed,
)
from tutor_sessions.models.session_request import SessionRequest, SessionRequestStatus
from tutor_sessions.models.user import User
from tutor_sessions.services.calendar_service import (
    CalendarDeleteResult,
    CalendarService,
    CalendarSyncResult,
    SessionEventDetails,
)
from tutor_sessions.services.user_service import get_active_tutor
from tutor_sessions.services.workflow import (
    Actor,
    AdminCancel,
    Approve,
    Assign,
    Cancel,
    Complete,
    Reject,
    TransitionEvent,
    is_allowed,
    target_status,
)

logger = logging.getLogger(__name__)

S = SessionRequestStatus

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass
class CalendarOutcome:
    """What happened to the calendar side effects of one transition."""

    action: str  # "create" | "delete"
    tutor_event_created: bool = False
    student_event_created: bool = False
    tutor_event_deleted: bool = False
    student_event_deleted: bool = False
    meet_link: Optional[str] = None
    calendar_link: Optional[str] = None
    errors: List[dict] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)


@dataclass
class TransitionResult:
    request: SessionRequest
    calendar: Optional[CalendarOutcome] = None


def to_utc_naive(value: datetime) -> datetime:
    """Normalize to naive UTC, which is how timestamps are stored."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ---------- store ----------


def create_session_request(
    db: Session,
    *,
    student_id: str,
    subject: str,
    preferred_date: date,
    preferred_time: str,
    duration: int = 60,
    description: Optional[str] = None,
) -> SessionRequest:
    """
    Create a PENDING request owned by `student_id`.
    """
    if not subject or not subject.strip():
        raise ValidationFailed("Preferred date, time, and subject are required")
    if preferred_date is None or not preferred_time:
        raise ValidationFailed("Preferred date, time, and subject are required")
    if not _TIME_RE.match(preferred_time):
        raise ValidationFailed("preferred_time must be HH:MM")
    if duration is None or duration <= 0:
        raise ValidationFailed("duration must be a positive number of minutes")

    request = SessionRequest(
        student_id=student_id,
        subject=subject.strip(),
        description=description,
        preferred_date=preferred_date,
        preferred_time=preferred_time,
        duration=duration,
        status=S.PENDING.value,
    )
    db.add(request)
    db.commit()
    db.refresh(request)

    logger.info("Session request %s created by student %s", request.id, student_id)
    return request


def get_session_request(db: Session, request_id: str) -> SessionRequest:
    request = db.get(SessionRequest, request_id)
    if request is None:
        raise SessionRequestNotFound(request_id)
    return request


def get_session_request_for_actor(db: Session, request_id: str, actor: Actor) -> SessionRequest:
    """
    Admins see everything; students only their own requests; tutors only
    requests assigned to them. Anything else looks like a missing row.
    """
    request = get_session_request(db, request_id)
    if actor.is_admin or actor.is_system:
        return request
    if actor.is_student and request.student_id == actor.user_id:
        return request
    if actor.is_tutor and request.tutor_id == actor.user_id:
        return request
    raise SessionRequestNotFound(request_id)


def list_for_student(db: Session, student_id: str) -> List[SessionRequest]:
    return list_all(db, student_id=student_id)


def list_for_tutor(db: Session, tutor_id: str) -> List[SessionRequest]:
    return list_all(db, tutor_id=tutor_id)


def list_all(
    db: Session,
    *,
    status: Optional[SessionRequestStatus] = None,
    tutor_id: Optional[str] = None,
    student_id: Optional[str] = None,
) -> List[SessionRequest]:
    query = db.query(SessionRequest)
    if status is not None:
        query = query.filter(SessionRequest.status == S(status).value)
    if tutor_id is not None:
        query = query.filter(SessionRequest.tutor_id == tutor_id)
    if student_id is not None:
        query = query.filter(SessionRequest.student_id == student_id)
    return query.order_by(SessionRequest.created_at.desc()).all()


# ---------- transitions ----------


def apply_transition(
    db: Session,
    request_id: str,
    event: TransitionEvent,
    actor: Actor,
    calendar: CalendarService,
    expected_version: Optional[int] = None,
) -> TransitionResult:
    """
    The only way a session request changes status.

    Guards (authorization, payload, current status, version) run before
    anything is written. The status change is committed first; calendar side
    effects run afterwards and never undo it. Calendar refs are committed
    once the side effects have resolved, whatever they returned.
    """
    request = get_session_request(db, request_id)

    _authorize(request, event, actor)
    _validate_payload(event)

    current = request.status_enum
    if not is_allowed(current, event):
        if isinstance(event, Cancel) and current == S.APPROVED:
            raise Forbidden(
                "This session has been approved; only an administrator can cancel it"
            )
        raise InvalidTransition(current.value, event.name)

    if expected_version is not None and expected_version != request.version:
        raise StaleVersion(request.id, expected_version, request.version)

    if isinstance(event, Assign):
        return _assign(db, request, event, calendar)
    if isinstance(event, Approve):
        return _approve(db, request, calendar)
    if isinstance(event, Reject):
        return _reject(db, request, event, calendar)
    if isinstance(event, (Cancel, AdminCancel)):
        return _cancel(db, request, event, actor, calendar)
    if isinstance(event, Complete):
        return _complete(db, request, event, actor)
    raise TypeError(f"Unknown transition event: {event!r}")


def _authorize(request: SessionRequest, event: TransitionEvent, actor: Actor) -> None:
    is_assigned_tutor = (
        actor.is_tutor and request.tutor_id is not None and request.tutor_id == actor.user_id
    )

    if isinstance(event, (Assign, AdminCancel)):
        allowed = actor.is_admin
    elif isinstance(event, (Approve, Reject)):
        allowed = actor.is_admin or is_assigned_tutor
    elif isinstance(event, Cancel):
        if actor.is_student and request.student_id != actor.user_id:
            # Other students' requests are invisible
            raise SessionRequestNotFound(request.id)
        allowed = actor.is_student
    elif isinstance(event, Complete):
        allowed = actor.is_admin or actor.is_system or is_assigned_tutor
    else:
        raise TypeError(f"Unknown transition event: {event!r}")

    if not allowed:
        raise Forbidden(f"Not allowed to {event.name} this session request")


def _validate_payload(event: TransitionEvent) -> None:
    if isinstance(event, Assign) and not (event.tutor_id or "").strip():
        raise ValidationFailed("Tutor ID is required")
    if isinstance(event, Reject) and not (event.reason or "").strip():
        raise ValidationFailed("A rejection reason is required")
    if isinstance(event, AdminCancel) and not (event.reason or "").strip():
        raise ValidationFailed("A cancellation reason is required")


def _commit(db: Session, request: SessionRequest) -> None:
    held_version = request.version
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        db.refresh(request)
        logger.warning("Concurrent update detected on session request %s", request.id)
        raise StaleVersion(request.id, held_version, request.version)
    db.refresh(request)


def _save_calendar_refs(db: Session, request: SessionRequest, outcome: CalendarOutcome) -> None:
    """
    Persist event ids after the status change has already committed. Losing a
    race here must not turn a completed transition into an error.
    """
    tutor_event_id = request.tutor_calendar_event_id
    student_event_id = request.student_calendar_event_id
    try:
        _commit(db, request)
    except StaleVersion:
        logger.warning(
            "Calendar references for session request %s not saved (tutor=%s, student=%s)",
            request.id,
            tutor_event_id,
            student_event_id,
        )
        outcome.errors.append(
            {
                "side": "record",
                "message": "Calendar references not saved; the session request was modified concurrently",
            }
        )


def _log_transition(request: SessionRequest, previous: SessionRequestStatus) -> None:
    logger.info(
        "Session request %s: %s -> %s", request.id, previous.value, request.status
    )


def _assign(
    db: Session,
    request: SessionRequest,
    event: Assign,
    calendar: CalendarService,
) -> TransitionResult:
    tutor = get_active_tutor(db, event.tutor_id)
    if tutor is None:
        raise ValidationFailed("Invalid tutor selected")

    previous = request.status_enum
    request.tutor_id = tutor.id
    if event.admin_notes is not None:
        request.admin_notes = event.admin_notes
    if event.scheduled_date_time is not None:
        request.scheduled_date_time = to_utc_naive(event.scheduled_date_time)
    request.status = target_status(event).value
    _commit(db, request)
    _log_transition(request, previous)

    outcome = None
    if request.scheduled_date_time is not None:
        outcome = _create_calendar_events(db, request, calendar)
    return TransitionResult(request=request, calendar=outcome)


def _approve(db: Session, request: SessionRequest, calendar: CalendarService) -> TransitionResult:
    previous = request.status_enum
    request.status = S.APPROVED.value
    _commit(db, request)
    _log_transition(request, previous)

    outcome = None
    if request.scheduled_date_time is not None and not request.has_calendar_events:
        outcome = _create_calendar_events(db, request, calendar)
    return TransitionResult(request=request, calendar=outcome)


def _reject(
    db: Session,
    request: SessionRequest,
    event: Reject,
    calendar: CalendarService,
) -> TransitionResult:
    previous = request.status_enum
    request.status = S.REJECTED.value
    request.rejection_reason = event.reason.strip()
    _commit(db, request)
    _log_transition(request, previous)

    outcome = None
    if request.has_calendar_events:
        # Ids stay on the row after a rejection; only cancellation clears them
        outcome, _ = _delete_calendar_events(request, calendar)
    return TransitionResult(request=request, calendar=outcome)


def _cancel(
    db: Session,
    request: SessionRequest,
    event: TransitionEvent,
    actor: Actor,
    calendar: CalendarService,
) -> TransitionResult:
    previous = request.status_enum
    request.status = S.CANCELLED.value
    reason = (event.reason or "").strip() or None
    request.cancellation_reason = reason
    _commit(db, request)
    logger.info(
        "Session request %s cancelled by %s (reason: %s)",
        request.id,
        actor.role,
        reason or "none given",
    )
    _log_transition(request, previous)

    if not request.has_calendar_events:
        return TransitionResult(request=request)

    outcome, deleted = _delete_calendar_events(request, calendar)
    if deleted.tutor_deleted:
        request.tutor_calendar_event_id = None
    if deleted.student_deleted:
        request.student_calendar_event_id = None
    if not request.has_calendar_events:
        request.meet_link = None
        request.calendar_event_link = None
    _save_calendar_refs(db, request, outcome)
    return TransitionResult(request=request, calendar=outcome)


def _complete(
    db: Session,
    request: SessionRequest,
    event: Complete,
    actor: Actor,
) -> TransitionResult:
    if not actor.is_admin:
        end = request.scheduled_end
        if end is None:
            raise ValidationFailed("Session has no scheduled time; only an administrator can complete it")
        if end > (event.as_of or datetime.utcnow()):
            raise ValidationFailed("Session has not taken place yet")

    previous = request.status_enum
    request.status = S.COMPLETED.value
    _commit(db, request)
    _log_transition(request, previous)
    return TransitionResult(request=request)


# ---------- calendar side effects ----------


def _event_details(request: SessionRequest) -> SessionEventDetails:
    start = request.scheduled_date_time.replace(tzinfo=timezone.utc)
    end = request.scheduled_end.replace(tzinfo=timezone.utc)
    return SessionEventDetails(
        subject=request.subject,
        description=request.description,
        start_time=start,
        end_time=end,
    )


def _create_calendar_events(
    db: Session,
    request: SessionRequest,
    calendar: CalendarService,
    *,
    create_tutor: bool = True,
    create_student: bool = True,
) -> CalendarOutcome:
    tutor: User = request.tutor
    student: User = request.student

    result: CalendarSyncResult = calendar.create_session_events(
        tutor,
        student,
        _event_details(request),
        create_tutor=create_tutor,
        create_student=create_student,
    )

    if result.tutor_event:
        request.tutor_calendar_event_id = result.tutor_event.event_id
    if result.student_event:
        request.student_calendar_event_id = result.student_event.event_id
    if result.meet_link and not request.meet_link:
        request.meet_link = result.meet_link
    if result.calendar_event_link and not request.calendar_event_link:
        request.calendar_event_link = result.calendar_event_link

    if result.errors:
        logger.warning(
            "Session request %s scheduled with incomplete calendar linkage: %s",
            request.id,
            [e.side for e in result.errors],
        )

    outcome = CalendarOutcome(
        action="create",
        tutor_event_created=result.tutor_event is not None,
        student_event_created=result.student_event is not None,
        meet_link=request.meet_link,
        calendar_link=request.calendar_event_link,
        errors=[{"side": e.side, "message": e.message} for e in result.errors],
    )
    _save_calendar_refs(db, request, outcome)
    return outcome


def _delete_calendar_events(
    request: SessionRequest,
    calendar: CalendarService,
) -> tuple[CalendarOutcome, CalendarDeleteResult]:
    result = calendar.delete_session_events(
        request.tutor,
        request.student,
        request.tutor_calendar_event_id,
        request.student_calendar_event_id,
    )
    if result.errors:
        logger.warning(
            "Calendar events for session request %s not fully deleted: %s",
            request.id,
            [e.side for e in result.errors],
        )

    outcome = CalendarOutcome(
        action="delete",
        tutor_event_deleted=result.tutor_deleted,
        student_event_deleted=result.student_deleted,
        errors=[{"side": e.side, "message": e.message} for e in result.errors],
    )
    return outcome, result


def sync_calendar(
    db: Session,
    request_id: str,
    actor: Actor,
    calendar: CalendarService,
) -> TransitionResult:
    """
    Retry creation of whichever calendar events are missing for a scheduled,
    non-terminal request. Status is left untouched.
    """
    if not actor.is_admin:
        raise Forbidden("Only administrators can re-sync calendar events")

    request = get_session_request(db, request_id)
    if request.is_terminal or request.status_enum == S.PENDING:
        raise InvalidTransition(request.status, "sync calendar for")
    if request.scheduled_date_time is None:
        raise ValidationFailed("Session request has no scheduled date and time")

    create_tutor = not request.tutor_calendar_event_id
    create_student = not request.student_calendar_event_id
    if not (create_tutor or create_student):
        return TransitionResult(request=request)

    logger.info(
        "Re-syncing calendar for session request %s (tutor=%s, student=%s)",
        request.id,
        create_tutor,
        create_student,
    )
    outcome = _create_calendar_events(
        db,
        request,
        calendar,
        create_tutor=create_tutor,
        create_student=create_student,
    )
    return TransitionResult(request=request, calendar=outcome)


def complete_elapsed_sessions(
    db: Session,
    calendar: CalendarService,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Mark ASSIGNED / APPROVED requests whose scheduled end has passed as
    COMPLETED. Returns the ids that were completed.
    """
    now = now or datetime.utcnow()
    candidates = (
        db.query(SessionRequest)
        .filter(
            SessionRequest.status.in_([S.ASSIGNED.value, S.APPROVED.value]),
            SessionRequest.scheduled_date_time.isnot(None),
            SessionRequest.scheduled_date_time <= now,
        )
        .all()
    )

    completed: List[str] = []
    for request in candidates:
        if request.scheduled_end > now:
            continue
        try:
            apply_transition(db, request.id, Complete(as_of=now), Actor.system(), calendar)
        except (StaleVersion, InvalidTransition, ValidationFailed) as e:
            logger.warning("Could not complete session request %s: %s", request.id, e)
            continue
        completed.append(request.id)

    return completed
