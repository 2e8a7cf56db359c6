# tutor_sessions/services/workflow.py
r"""
Session-request lifecycle: events, actors and the transition table.

    PENDING --assign--> ASSIGNED --approve--> APPROVED --complete--> COMPLETED
       |                  |  \                   |
       |                  |   +--complete--------+---> COMPLETED
       +--reject/cancel---+--reject--> REJECTED
       +-------admin_cancel (any non-terminal)-------> CANCELLED

REJECTED, COMPLETED and CANCELLED are terminal.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Type, Union

from tutor_sessions.models.session_request import SessionRequestStatus
from tutor_sessions.models.user import User, UserRole

SYSTEM_ROLE = "SYSTEM"

S = SessionRequestStatus


@dataclass(frozen=True)
class Actor:
    """Who is triggering a transition."""

    user_id: Optional[str]
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=SYSTEM_ROLE)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_tutor(self) -> bool:
        return self.role == UserRole.TUTOR.value

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT.value

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE


@dataclass(frozen=True)
class Assign:
    tutor_id: str
    admin_notes: Optional[str] = None
    scheduled_date_time: Optional[datetime] = None
    approve: bool = False

    name = "assign"


@dataclass(frozen=True)
class Approve:
    """Needs an assigned tutor. `Assign(approve=True)` assigns and approves in one step."""

    name = "approve"


@dataclass(frozen=True)
class Reject:
    reason: Optional[str]

    name = "reject"


@dataclass(frozen=True)
class Cancel:
    """Self-service cancellation by the owning student."""

    reason: Optional[str] = None

    name = "cancel"


@dataclass(frozen=True)
class AdminCancel:
    reason: Optional[str]

    name = "admin-cancel"


@dataclass(frozen=True)
class Complete:
    # Reference time for the "session has ended" check; defaults to now
    as_of: Optional[datetime] = None

    name = "complete"


TransitionEvent = Union[Assign, Approve, Reject, Cancel, AdminCancel, Complete]


# Statuses each event may leave from. Approve is not allowed from PENDING:
# a tutor has to be assigned first (use Assign(approve=True) to do both).
ALLOWED_FROM: Dict[Type, FrozenSet[SessionRequestStatus]] = {
    Assign: frozenset({S.PENDING}),
    Approve: frozenset({S.ASSIGNED}),
    Reject: frozenset({S.PENDING, S.ASSIGNED}),
    Cancel: frozenset({S.PENDING, S.ASSIGNED}),
    AdminCancel: frozenset({S.PENDING, S.ASSIGNED, S.APPROVED}),
    Complete: frozenset({S.ASSIGNED, S.APPROVED}),
}


def target_status(event: TransitionEvent) -> SessionRequestStatus:
    if isinstance(event, Assign):
        return S.APPROVED if event.approve else S.ASSIGNED
    if isinstance(event, Approve):
        return S.APPROVED
    if isinstance(event, Reject):
        return S.REJECTED
    if isinstance(event, (Cancel, AdminCancel)):
        return S.CANCELLED
    if isinstance(event, Complete):
        return S.COMPLETED
    raise TypeError(f"Unknown transition event: {event!r}")


def is_allowed(current: SessionRequestStatus, event: TransitionEvent) -> bool:
    return current in ALLOWED_FROM[type(event)]
