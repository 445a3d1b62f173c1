"""Google OAuth 2.0 web-server flow.

Login redirects to Google's consent screen, the callback exchanges the code
for tokens and reads the user's profile. Offline access with forced consent
guarantees a refresh token on every login, which background sync needs.
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from cmms.config import get_settings
from cmms.errors import ApiError, ApiErrorCode
from cmms.google.client import ProviderError

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPES = (
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
    "https://www.googleapis.com/auth/documents",
    "openid",
    "email",
    "profile",
)


@dataclass(frozen=True)
class OAuthTokens:
    """Tokens returned by the token endpoint."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass(frozen=True)
class GoogleProfile:
    """Subset of the userinfo response we persist."""

    google_id: str
    email: str
    name: str | None = None
    picture: str | None = None


class GoogleOAuthClient:
    """Thin httpx wrapper around Google's OAuth endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 30.0,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout = timeout

    def authorization_url(self, state: str | None = None) -> str:
        """Build the consent-screen URL the login route redirects to."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{AUTH_URL}?{urlencode(params)}"

    def _post_token(self, form: dict[str, str]) -> OAuthTokens:
        data = self._send("POST", TOKEN_URL, data=form)
        if "access_token" not in data:
            raise ProviderError("Token response missing access_token", status_code=502)
        return OAuthTokens(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
        )

    def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Raises:
            ProviderError: If Google rejects the code.
        """
        return self._post_token(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    def refresh(self, refresh_token: str) -> OAuthTokens:
        """Obtain a fresh access token.

        Raises:
            ProviderError: If the refresh token was revoked or is invalid.
        """
        return self._post_token(
            {
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            }
        )

    def fetch_profile(self, access_token: str) -> GoogleProfile:
        """Read the signed-in user's Google profile."""
        data = self._send(
            "GET", USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        if not data.get("id") or not data.get("email"):
            raise ProviderError("Google profile is missing id or email", status_code=502)
        return GoogleProfile(
            google_id=str(data["id"]),
            email=data["email"],
            name=data.get("name"),
            picture=data.get("picture"),
        )

    def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError("Google OAuth timed out", status_code=504) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Google OAuth request failed: {e}", status_code=502) from e

        if response.status_code >= 400:
            # 400/401 from the token endpoint means a bad code or revoked grant
            raise ProviderError(
                f"Google OAuth error: {response.status_code}",
                status_code=401 if response.status_code in (400, 401) else 502,
            )
        return response.json()


def get_oauth_client() -> GoogleOAuthClient:
    """Build the OAuth client from settings.

    Raises:
        ApiError: E_INTERNAL if Google OAuth is not configured.
    """
    settings = get_settings()
    if not (
        settings.google_client_id
        and settings.google_client_secret
        and settings.google_redirect_uri
    ):
        raise ApiError(ApiErrorCode.E_INTERNAL, "Google OAuth is not configured")
    return GoogleOAuthClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        timeout=settings.provider_timeout_s,
    )
