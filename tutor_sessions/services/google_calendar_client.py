# tutor_sessions/services/google_calendar_client.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httplib2
from google.auth.exceptions import GoogleAuthError, RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from tutor_sessions.config import get_settings
from tutor_sessions.core.exceptions import CalendarAuthError, CalendarProviderError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

# Network-level failures from build() / execute(); HttpError covers HTTP status errors
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, GoogleAuthError)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
]


@dataclass
class OAuthTokens:
    access_token: Optional[str]
    refresh_token: Optional[str]
    expiry: Optional[datetime]  # naive UTC, as google-auth reports it


@dataclass
class CalendarEventRef:
    event_id: str
    meet_link: Optional[str]
    html_link: Optional[str]


class GoogleCalendarClient:
    """
    Thin wrapper around the Google API client for Calendar + OAuth.

    This makes it easy to:
    - centralize config (client id, secret, redirect URI)
    - mock in tests by replacing CalendarService with a fake.

    Credentials are passed per call; the client holds no user state.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri

    # ---------- OAuth ----------

    def _flow(self, state: Optional[str] = None) -> Flow:
        client_config = {
            "web": {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [self._redirect_uri],
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            state=state,
            redirect_uri=self._redirect_uri,
        )

    def get_authorization_url(self, state: str) -> str:
        url, _ = self._flow(state=state).authorization_url(
            access_type="offline",
            prompt="consent",
        )
        return url

    def exchange_code(self, code: str) -> OAuthTokens:
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            raise CalendarAuthError(f"Failed to exchange authorization code: {e}") from e
        creds = flow.credentials
        return OAuthTokens(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=creds.expiry,
        )

    def get_account_email(self, tokens: OAuthTokens) -> Optional[str]:
        try:
            service = build(
                "oauth2", "v2", credentials=self._credentials(tokens), cache_discovery=False
            )
            profile = service.userinfo().get().execute()
        except HttpError as e:
            raise self._translate(e, "fetch user profile") from e
        except RefreshError as e:
            raise CalendarAuthError(f"Google rejected the stored credentials: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise CalendarProviderError(f"Failed to fetch user profile: {e}") from e
        return profile.get("email")

    def refresh_credentials(self, refresh_token: str) -> OAuthTokens:
        """
        Exchange a refresh token for a fresh access token.
        Raises CalendarAuthError if Google refuses the refresh token.
        """
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=SCOPES,
        )
        try:
            creds.refresh(Request())
        except TransportError as e:
            raise CalendarProviderError(f"Token endpoint unreachable: {e}") from e
        except (RefreshError, GoogleAuthError) as e:
            raise CalendarAuthError(f"Failed to refresh access token: {e}") from e

        return OAuthTokens(
            access_token=creds.token,
            refresh_token=creds.refresh_token or refresh_token,
            expiry=creds.expiry,
        )

    # ---------- Calendar events ----------

    def create_event(
        self,
        tokens: OAuthTokens,
        *,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        attendee_email: Optional[str],
        timezone: str = "UTC",
    ) -> CalendarEventRef:
        """
        Insert an event with a Meet conference into the owner's primary calendar
        and return its id, Meet link and web link.
        """
        event = {
            "summary": title,
            "description": description,
            "start": {"dateTime": start_time.isoformat(), "timeZone": timezone},
            "end": {"dateTime": end_time.isoformat(), "timeZone": timezone},
            "conferenceData": {
                "createRequest": {
                    "requestId": f"lms-{uuid.uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "attendees": [{"email": attendee_email}] if attendee_email else [],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }

        try:
            created = (
                self._calendar(tokens)
                .events()
                .insert(
                    calendarId="primary",
                    body=event,
                    conferenceDataVersion=1,
                    sendUpdates="all",
                )
                .execute()
            )
        except HttpError as e:
            raise self._translate(e, "create calendar event") from e
        except RefreshError as e:
            raise CalendarAuthError(f"Google rejected the stored credentials: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise CalendarProviderError(f"Failed to create calendar event: {e}") from e

        return CalendarEventRef(
            event_id=created["id"],
            meet_link=created.get("hangoutLink"),
            html_link=created.get("htmlLink"),
        )

    def delete_event(self, tokens: OAuthTokens, event_id: str) -> None:
        """Delete an event. An event that is already gone counts as deleted."""
        try:
            (
                self._calendar(tokens)
                .events()
                .delete(calendarId="primary", eventId=event_id, sendUpdates="all")
                .execute()
            )
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.info("Calendar event %s already deleted", event_id)
                return
            raise self._translate(e, "delete calendar event") from e
        except RefreshError as e:
            raise CalendarAuthError(f"Google rejected the stored credentials: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise CalendarProviderError(f"Failed to delete calendar event: {e}") from e

    # ---------- helpers ----------

    def _credentials(self, tokens: OAuthTokens) -> Credentials:
        return Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=SCOPES,
        )

    def _calendar(self, tokens: OAuthTokens):
        return build(
            "calendar", "v3", credentials=self._credentials(tokens), cache_discovery=False
        )

    @staticmethod
    def _translate(error: HttpError, action: str) -> Exception:
        if error.resp.status in (401, 403):
            return CalendarAuthError(f"Failed to {action}: {error.reason}")
        return CalendarProviderError(f"Failed to {action}: {error.reason}")


def get_google_calendar_client() -> GoogleCalendarClient:
    """
    Build a configured GoogleCalendarClient.
    Raises RuntimeError if configuration is incomplete.
    """
    settings = get_settings()

    missing: list[str] = []
    if not settings.GOOGLE_CLIENT_ID:
        missing.append("GOOGLE_CLIENT_ID")
    if not settings.GOOGLE_CLIENT_SECRET:
        missing.append("GOOGLE_CLIENT_SECRET")
    if not settings.GOOGLE_REDIRECT_URI:
        missing.append("GOOGLE_REDIRECT_URI")

    if missing:
        raise RuntimeError(f"Google Calendar not configured, missing: {', '.join(missing)}")

    return GoogleCalendarClient(
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        redirect_uri=settings.GOOGLE_REDIRECT_URI,
    )
