"""
Microsoft identity platform OAuth 2.0 authorization code flow.

Tokens live in the browser session (Starlette SessionMiddleware):
- access_token / refresh_token
- token_expires: ISO-8601 UTC expiry of the access token
"""

import logging
from collections.abc import MutableMapping
from datetime import UTC, datetime, timedelta
from typing import NamedTuple
from urllib.parse import urlencode

import httpx

from onenote_flashcards.exceptions import AuthenticationRequiredError

logger = logging.getLogger(__name__)

AUTHORITY = "https://login.microsoftonline.com"
SCOPES = ["offline_access", "Notes.Read", "User.Read"]
DEFAULT_EXPIRES_IN = 3600


class TokenSet(NamedTuple):
    """Tokens returned by the token endpoint."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime


class MicrosoftAuth:
    """Client for the Microsoft identity platform v2.0 endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str = "common",
        redirect_uri: str = "http://localhost:8000/auth/callback",
        client: httpx.Client | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant_id = tenant_id
        self.redirect_uri = redirect_uri
        self._client = client or httpx.Client(timeout=30.0)

    @property
    def authorize_url(self) -> str:
        return f"{AUTHORITY}/{self.tenant_id}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"{AUTHORITY}/{self.tenant_id}/oauth2/v2.0/token"

    def build_auth_url(self, state: str) -> str:
        """URL the browser is redirected to for sign-in."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code: str, now: datetime | None = None) -> TokenSet:
        """Exchange an authorization code for tokens."""
        return self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            now,
        )

    def refresh(self, refresh_token: str, now: datetime | None = None) -> TokenSet:
        """Redeem a refresh token for a new access token."""
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}, now
        )

    def _token_request(self, data: dict, now: datetime | None) -> TokenSet:
        if now is None:
            now = datetime.now(UTC)
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": " ".join(SCOPES),
            **data,
        }
        try:
            response = self._client.post(self.token_url, data=form)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AuthenticationRequiredError(f"Token request failed: {e}", e) from e

        if "access_token" not in body:
            raise AuthenticationRequiredError("Token response has no access token")

        expires_in = int(body.get("expires_in", DEFAULT_EXPIRES_IN))
        return TokenSet(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=now + timedelta(seconds=expires_in),
        )


def store_tokens(session: MutableMapping, tokens: TokenSet) -> None:
    """Save tokens in the session, keeping the old refresh token if none was issued."""
    session["access_token"] = tokens.access_token
    if tokens.refresh_token:
        session["refresh_token"] = tokens.refresh_token
    session["token_expires"] = tokens.expires_at.isoformat()


def get_access_token(
    session: MutableMapping, auth: MicrosoftAuth, now: datetime | None = None
) -> str:
    """
    Get a valid access token for the session, refreshing it if expired.

    Raises:
        AuthenticationRequiredError: If there is no token or it cannot be refreshed
    """
    access_token = session.get("access_token")
    if not access_token:
        raise AuthenticationRequiredError("No access token available. User needs to authenticate.")

    if now is None:
        now = datetime.now(UTC)
    expires = session.get("token_expires")
    if expires and now > datetime.fromisoformat(expires):
        logger.info("Access token expired, attempting to refresh")
        refresh_token = session.get("refresh_token")
        if not refresh_token:
            raise AuthenticationRequiredError(
                "No refresh token available. User needs to reauthenticate."
            )
        store_tokens(session, auth.refresh(refresh_token, now))
        logger.info("Token refreshed successfully")

    return session["access_token"]
