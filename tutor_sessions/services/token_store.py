# tutor_sessions/services/token_store.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from tutor_sessions.core.exceptions import CalendarAuthError
from tutor_sessions.models.user import User
from tutor_sessions.services.google_calendar_client import GoogleCalendarClient, OAuthTokens

logger = logging.getLogger(__name__)

# Refresh slightly early so a token does not expire mid-request
EXPIRY_SKEW = timedelta(seconds=60)


class CalendarTokenStore:
    """
    Reads and writes a user's Google OAuth tokens on the users table.

    `get_valid_tokens` refreshes expired access tokens through the client and
    persists the new token, so callers never read credentials from anywhere else.
    """

    def __init__(self, db: Session, client: Optional[GoogleCalendarClient] = None):
        self._db = db
        self._client = client

    def get_valid_tokens(self, user: User) -> OAuthTokens:
        if not user.google_calendar_connected:
            raise CalendarAuthError(f"User {user.id} has not connected a calendar")

        tokens = OAuthTokens(
            access_token=user.google_access_token,
            refresh_token=user.google_refresh_token,
            expiry=user.google_token_expiry,
        )

        expired = (
            user.google_token_expiry is not None
            and datetime.utcnow() + EXPIRY_SKEW >= user.google_token_expiry
        )
        if not expired and tokens.access_token:
            return tokens

        if not user.google_refresh_token or self._client is None:
            raise CalendarAuthError(f"User {user.id} has no refresh token")

        logger.info("Refreshing Google access token for user %s", user.id)
        refreshed = self._client.refresh_credentials(user.google_refresh_token)
        user.google_access_token = refreshed.access_token
        user.google_token_expiry = refreshed.expiry
        if refreshed.refresh_token:
            user.google_refresh_token = refreshed.refresh_token
        self._db.commit()
        return refreshed

    def save_tokens(self, user: User, tokens: OAuthTokens, email: Optional[str]) -> None:
        user.google_access_token = tokens.access_token
        if tokens.refresh_token:
            user.google_refresh_token = tokens.refresh_token
        user.google_token_expiry = tokens.expiry
        user.google_calendar_connected = True
        user.google_email = email
        self._db.commit()

    def clear_tokens(self, user: User) -> None:
        user.google_access_token = None
        user.google_refresh_token = None
        user.google_token_expiry = None
        user.google_calendar_connected = False
        user.google_email = None
        self._db.commit()
