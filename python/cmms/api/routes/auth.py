"""Authentication routes.

Sign-in is Google OAuth only. The callback returns an HS256 session token
that the client sends as a bearer token on every other request. Sessions
are stateless, so logout is a client-side token drop.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.google.oauth import GoogleOAuthClient, get_oauth_client
from cmms.responses import message_response, success_response
from cmms.schemas.users import UpdateMeRequest
from cmms.services import users as users_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/google")
def google_login(
    oauth: Annotated[GoogleOAuthClient, Depends(get_oauth_client)],
) -> RedirectResponse:
    """Redirect to Google's consent screen."""
    return RedirectResponse(oauth.authorization_url(), status_code=302)


@router.get("/google/callback")
def google_callback(
    code: Annotated[str, Query(min_length=1, description="Authorization code from Google")],
    oauth: Annotated[GoogleOAuthClient, Depends(get_oauth_client)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Complete sign-in and issue a session token.

    Errors:
        E_UNAUTHENTICATED (401): Google rejected the code.
        E_PROVIDER_ERROR (502): Google was unreachable.
    """
    result = users_service.complete_google_login(db, oauth, code)
    return {
        "status": "success",
        "token": result.token,
        "data": {"user": result.user.model_dump(mode="json")},
    }


@router.get("/me")
def get_me(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Return the signed-in user's profile."""
    result = users_service.get_me(db, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.patch("/me")
def update_me(
    request: UpdateMeRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Update display name or watch folder. An empty watched_folder_id clears it."""
    result = users_service.update_me(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))


@router.post("/logout")
def logout() -> dict:
    return message_response("Logged out successfully")
