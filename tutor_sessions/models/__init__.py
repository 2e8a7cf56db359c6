from tutor_sessions.models.base import Base  # noqa: F401

from tutor_sessions.models.user import User  # noqa: F401
from tutor_sessions.models.session_request import SessionRequest  # noqa: F401
