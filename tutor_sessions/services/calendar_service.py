# tutor_sessions/services/calendar_service.py
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from tutor_sessions.config import get_settings
from tutor_sessions.core.exceptions import CalendarError, CalendarProviderError
from tutor_sessions.db.session import get_db
from tutor_sessions.models.user import User
from tutor_sessions.services.google_calendar_client import (
    CalendarEventRef,
    GoogleCalendarClient,
    get_google_calendar_client,
)
from tutor_sessions.services.token_store import CalendarTokenStore

logger = logging.getLogger(__name__)

TUTOR = "tutor"
STUDENT = "student"


@dataclass
class SessionEventDetails:
    subject: str
    description: Optional[str]
    start_time: datetime
    end_time: datetime


@dataclass
class CalendarSideError:
    side: str  # "tutor" | "student"
    message: str


@dataclass
class CalendarSyncResult:
    """Outcome of creating the tutor-side and student-side events for one session."""

    tutor_event: Optional[CalendarEventRef] = None
    student_event: Optional[CalendarEventRef] = None
    meet_link: Optional[str] = None
    calendar_event_link: Optional[str] = None
    errors: List[CalendarSideError] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class CalendarDeleteResult:
    tutor_deleted: bool = False
    student_deleted: bool = False
    errors: List[CalendarSideError] = field(default_factory=list)


def event_title(subject: str) -> str:
    return f"1-on-1 Session: {subject}"


def event_description(details: SessionEventDetails, tutor: User, student: User) -> str:
    return (
        "One-to-one tutoring session\n\n"
        f"Subject: {details.subject}\n"
        f"Student: {student.name or student.email}\n"
        f"Tutor: {tutor.name or tutor.email}\n\n"
        f"{details.description or 'No additional description provided'}\n\n"
        "This event was automatically scheduled through the LMS platform."
    )


class CalendarService:
    """
    Calendar side effects for session requests.

    Subclasses implement `create_event` / `delete_event` for one owner's
    calendar. The per-session helpers below call them once per side and
    never raise: each side's failure is logged and reported in the result.
    """

    def create_event(
        self,
        owner: User,
        *,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        attendee_email: Optional[str],
    ) -> CalendarEventRef:
        raise NotImplementedError

    def delete_event(self, owner: User, event_id: str) -> None:
        raise NotImplementedError

    def create_session_events(
        self,
        tutor: User,
        student: User,
        details: SessionEventDetails,
        *,
        create_tutor: bool = True,
        create_student: bool = True,
    ) -> CalendarSyncResult:
        """
        Create the tutor-side event first; its Meet link is the primary one and
        is copied into the student-side description.
        """
        result = CalendarSyncResult()
        title = event_title(details.subject)
        description = event_description(details, tutor, student)

        if create_tutor:
            if tutor.google_calendar_connected:
                try:
                    ref = self.create_event(
                        tutor,
                        title=title,
                        description=description,
                        start_time=details.start_time,
                        end_time=details.end_time,
                        attendee_email=student.calendar_email,
                    )
                    result.tutor_event = ref
                    result.meet_link = ref.meet_link
                    result.calendar_event_link = ref.html_link
                    logger.info("Tutor calendar event created: %s", ref.event_id)
                except CalendarError as e:
                    logger.error("Failed to create tutor calendar event: %s", e)
                    result.errors.append(CalendarSideError(side=TUTOR, message=str(e)))
                except Exception as e:
                    logger.exception("Unexpected error creating tutor calendar event")
                    result.errors.append(CalendarSideError(side=TUTOR, message=f"Unexpected calendar error: {e}"))
            else:
                logger.info("Tutor %s does not have calendar connected", tutor.id)
                result.skipped.append(TUTOR)

        if create_student:
            if student.google_calendar_connected:
                student_description = description
                if result.meet_link:
                    student_description += f"\n\nGoogle Meet Link: {result.meet_link}"
                try:
                    ref = self.create_event(
                        student,
                        title=title,
                        description=student_description,
                        start_time=details.start_time,
                        end_time=details.end_time,
                        attendee_email=tutor.calendar_email,
                    )
                    result.student_event = ref
                    if not result.meet_link:
                        result.meet_link = ref.meet_link
                    if not result.calendar_event_link:
                        result.calendar_event_link = ref.html_link
                    logger.info("Student calendar event created: %s", ref.event_id)
                except CalendarError as e:
                    logger.error("Failed to create student calendar event: %s", e)
                    result.errors.append(CalendarSideError(side=STUDENT, message=str(e)))
                except Exception as e:
                    logger.exception("Unexpected error creating student calendar event")
                    result.errors.append(CalendarSideError(side=STUDENT, message=f"Unexpected calendar error: {e}"))
            else:
                logger.info("Student %s does not have calendar connected", student.id)
                result.skipped.append(STUDENT)

        return result

    def delete_session_events(
        self,
        tutor: Optional[User],
        student: Optional[User],
        tutor_event_id: Optional[str],
        student_event_id: Optional[str],
    ) -> CalendarDeleteResult:
        result = CalendarDeleteResult()

        for side, owner, event_id in (
            (TUTOR, tutor, tutor_event_id),
            (STUDENT, student, student_event_id),
        ):
            if not event_id:
                continue
            if owner is None:
                result.errors.append(CalendarSideError(side=side, message="No calendar owner"))
                continue
            try:
                self.delete_event(owner, event_id)
            except CalendarError as e:
                logger.error("Failed to delete %s calendar event %s: %s", side, event_id, e)
                result.errors.append(CalendarSideError(side=side, message=str(e)))
                continue
            except Exception as e:
                logger.exception("Unexpected error deleting %s calendar event %s", side, event_id)
                result.errors.append(CalendarSideError(side=side, message=f"Unexpected calendar error: {e}"))
                continue

            if side == TUTOR:
                result.tutor_deleted = True
            else:
                result.student_deleted = True

        return result


class GoogleCalendarService(CalendarService):
    def __init__(
        self,
        client: GoogleCalendarClient,
        token_store: CalendarTokenStore,
        timezone: str = "UTC",
    ):
        self._client = client
        self._token_store = token_store
        self._timezone = timezone

    def create_event(
        self,
        owner: User,
        *,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        attendee_email: Optional[str],
    ) -> CalendarEventRef:
        tokens = self._token_store.get_valid_tokens(owner)
        return self._client.create_event(
            tokens,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            attendee_email=attendee_email,
            timezone=self._timezone,
        )

    def delete_event(self, owner: User, event_id: str) -> None:
        tokens = self._token_store.get_valid_tokens(owner)
        self._client.delete_event(tokens, event_id)


class DisabledCalendarService(CalendarService):
    """Used when Google Calendar is switched off; every call degrades."""

    def create_event(self, owner: User, **kwargs) -> CalendarEventRef:
        raise CalendarProviderError("Google Calendar integration is disabled")

    def delete_event(self, owner: User, event_id: str) -> None:
        raise CalendarProviderError("Google Calendar integration is disabled")


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarService:
    """
    FastAPI dependency returning the calendar gateway for this request.
    """
    settings = get_settings()
    if not settings.enable_google_calendar:
        return DisabledCalendarService()

    client = get_google_calendar_client()
    return GoogleCalendarService(
        client=client,
        token_store=CalendarTokenStore(db, client),
        timezone=settings.GOOGLE_CALENDAR_TIMEZONE,
    )
