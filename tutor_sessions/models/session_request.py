# tutor_sessions/models/session_request.py
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from tutor_sessions.models.base import Base


class SessionRequestStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset(
    {
        SessionRequestStatus.REJECTED,
        SessionRequestStatus.COMPLETED,
        SessionRequestStatus.CANCELLED,
    }
)


class SessionRequest(Base):
    """
    A student's ask for a one-to-one session, its tutor assignment and
    the scheduling outcome.

    Rows are never deleted: REJECTED / COMPLETED / CANCELLED are terminal
    statuses. `version` is bumped by SQLAlchemy on every UPDATE so two
    writers holding the same row cannot both commit.
    """

    __tablename__ = "session_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    student_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    tutor_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )

    preferred_date = Column(Date, nullable=False)
    preferred_time = Column(String(5), nullable=False)  # "HH:MM"
    duration = Column(Integer, nullable=False, default=60)  # minutes
    scheduled_date_time = Column(DateTime, nullable=True)  # naive UTC

    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Store status as a simple string; SessionRequestStatus is still used in Python
    status = Column(
        String(32),
        nullable=False,
        default=SessionRequestStatus.PENDING.value,
        index=True,
    )
    admin_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # One event per side: tutor and student calendars are independent
    tutor_calendar_event_id = Column(String(255), nullable=True)
    student_calendar_event_id = Column(String(255), nullable=True)
    meet_link = Column(String(512), nullable=True)
    calendar_event_link = Column(String(512), nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("User", foreign_keys=[tutor_id])

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> SessionRequestStatus:
        return SessionRequestStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    @property
    def scheduled_end(self) -> Optional[datetime]:
        if self.scheduled_date_time is None:
            return None
        return self.scheduled_date_time + timedelta(minutes=self.duration)

    @property
    def has_calendar_events(self) -> bool:
        return bool(self.tutor_calendar_event_id or self.student_calendar_event_id)
