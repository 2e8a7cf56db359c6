# tutor_sessions/routers/session_requests.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from tutor_sessions.core.exceptions import LMSError
from tutor_sessions.db.session import get_db
from tutor_sessions.dependencies.auth import get_current_user, require_roles
from tutor_sessions.models.session_request import SessionRequestStatus
from tutor_sessions.models.user import User, UserRole
from tutor_sessions.schemas.session_request import (
    AdminCancelPayload,
    AssignPayload,
    CancelPayload,
    SessionRequestCreate,
    StatusPayload,
    serialize_calendar_outcome,
    serialize_session_request,
)
from tutor_sessions.services.calendar_service import CalendarService, get_calendar_service
from tutor_sessions.services import session_request_service as service
from tutor_sessions.services.workflow import (
    Actor,
    AdminCancel,
    Approve,
    Assign,
    Cancel,
    Complete,
    Reject,
)

router = APIRouter()

_STATUS_EVENTS = {
    SessionRequestStatus.APPROVED: lambda payload: Approve(),
    SessionRequestStatus.REJECTED: lambda payload: Reject(reason=payload.rejection_reason),
    SessionRequestStatus.COMPLETED: lambda payload: Complete(),
}


def _transition_response(result: service.TransitionResult, user: User, message: str) -> Dict[str, Any]:
    calendar = serialize_calendar_outcome(result.calendar)
    if calendar and calendar["degraded"]:
        message += " (calendar events could not be fully updated)"
    return {
        "success": True,
        "message": message,
        "request": serialize_session_request(result.request, user.role),
        "calendar": calendar,
    }


@router.get("")
def list_session_requests(
        status_filter: Optional[SessionRequestStatus] = Query(None, alias="status"),
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TUTOR)),
) -> Dict[str, Any]:
    """
    Admins get every request; tutors only the ones assigned to them.

    Optional `?status=PENDING` narrows the list.
    """
    tutor_id = user.id if user.role == UserRole.TUTOR.value else None
    requests = service.list_all(db, status=status_filter, tutor_id=tutor_id)
    return {
        "success": True,
        "requests": [serialize_session_request(r, user.role) for r in requests],
    }


@router.get("/my-requests")
def list_my_requests(
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.STUDENT)),
) -> Dict[str, Any]:
    requests = service.list_for_student(db, user.id)
    return {
        "success": True,
        "requests": [serialize_session_request(r, user.role) for r in requests],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_session_request(
        payload: SessionRequestCreate,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.STUDENT)),
) -> Dict[str, Any]:
    try:
        request = service.create_session_request(
            db,
            student_id=user.id,
            subject=payload.subject,
            preferred_date=payload.preferred_date,
            preferred_time=payload.preferred_time,
            duration=payload.duration,
            description=payload.description,
        )
    except LMSError as e:
        raise e.to_http_exception()

    return {
        "success": True,
        "message": "Session request created successfully",
        "request": serialize_session_request(request, user.role),
    }


@router.get("/{request_id}")
def get_session_request(
        request_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        request = service.get_session_request_for_actor(db, request_id, Actor.from_user(user))
    except LMSError as e:
        raise e.to_http_exception()
    return {"success": True, "request": serialize_session_request(request, user.role)}


@router.put("/{request_id}/assign")
def assign_tutor(
        request_id: str,
        payload: AssignPayload,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.ADMIN)),
        calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    """
    Bind a tutor to a PENDING request.

    With `scheduledDateTime`, calendar events are created for tutor and
    student independently; failures there do not undo the assignment.
    """
    event = Assign(
        tutor_id=payload.tutor_id,
        admin_notes=payload.admin_notes,
        scheduled_date_time=payload.scheduled_date_time,
        approve=payload.approve,
    )
    try:
        result = service.apply_transition(
            db, request_id, event, Actor.from_user(user), calendar, payload.version
        )
    except LMSError as e:
        raise e.to_http_exception()

    message = "Tutor assigned successfully"
    if result.calendar and result.calendar.meet_link:
        message = "Tutor assigned and calendar events created successfully"
    return _transition_response(result, user, message)


@router.put("/{request_id}/status")
def update_status(
        request_id: str,
        payload: StatusPayload,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.ADMIN, UserRole.TUTOR)),
        calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    build_event = _STATUS_EVENTS.get(payload.status)
    if build_event is None:
        raise HTTPException(
            status_code=400,
            detail=f"Status cannot be set to {payload.status.value} through this endpoint",
        )

    try:
        result = service.apply_transition(
            db, request_id, build_event(payload), Actor.from_user(user), calendar, payload.version
        )
    except LMSError as e:
        raise e.to_http_exception()

    return _transition_response(result, user, "Status updated successfully")


@router.put("/{request_id}/cancel")
def cancel_request(
        request_id: str,
        payload: Optional[CancelPayload] = None,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.STUDENT)),
        calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    payload = payload or CancelPayload()
    try:
        result = service.apply_transition(
            db,
            request_id,
            Cancel(reason=payload.cancellation_reason),
            Actor.from_user(user),
            calendar,
            payload.version,
        )
    except LMSError as e:
        raise e.to_http_exception()

    return _transition_response(result, user, "Session request cancelled successfully")


@router.put("/{request_id}/admin-cancel")
def admin_cancel_request(
        request_id: str,
        payload: AdminCancelPayload,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.ADMIN)),
        calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    try:
        result = service.apply_transition(
            db,
            request_id,
            AdminCancel(reason=payload.cancellation_reason),
            Actor.from_user(user),
            calendar,
            payload.version,
        )
    except LMSError as e:
        raise e.to_http_exception()

    return _transition_response(result, user, "Session cancelled successfully")


@router.post("/{request_id}/calendar-sync")
def sync_calendar(
        request_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(require_roles(UserRole.ADMIN)),
        calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    """
    Retry creating whichever calendar events are missing for a scheduled request.
    """
    try:
        result = service.sync_calendar(db, request_id, Actor.from_user(user), calendar)
    except LMSError as e:
        raise e.to_http_exception()

    message = "Calendar already in sync" if result.calendar is None else "Calendar sync attempted"
    return _transition_response(result, user, message)
