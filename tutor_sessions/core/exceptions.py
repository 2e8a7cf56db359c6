"""Exception hierarchy shared by services and routers."""
from fastapi import HTTPException, status


class LMSError(Exception):
    """Base exception for all application errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=str(self))


class ValidationFailed(LMSError):
    """Missing or invalid input, rejected before any mutation."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTransition(LMSError):
    """The requested event is not allowed from the current status."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, current_status: str, event: str):
        self.current_status = current_status
        self.event = event
        super().__init__(f"Cannot {event} a session request with status {current_status}")


class Forbidden(LMSError):
    status_code = status.HTTP_403_FORBIDDEN


class SessionRequestNotFound(LMSError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__("Session request not found")


class StaleVersion(LMSError):
    """Raised when the caller's version no longer matches the stored row."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, request_id: str, expected: int, actual: int):
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Session request {request_id} was modified (version {actual}, expected {expected})"
        )


class AuthenticationFailed(LMSError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail=str(self),
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountDeactivated(LMSError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self):
        super().__init__("Your account has been deactivated. Please contact an administrator.")


class CalendarError(LMSError):
    """Calendar provider failure. Caught at the call site by the workflow."""

    status_code = status.HTTP_502_BAD_GATEWAY


class CalendarAuthError(CalendarError):
    """Token missing, invalid, expired or not refreshable."""


class CalendarProviderError(CalendarError):
    """Any other (usually transient) provider failure."""
