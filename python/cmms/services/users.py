"""User accounts, Google sign-in and preferences."""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from cmms.auth.middleware import Viewer, ViewerLoader
from cmms.auth.tokens import mint_session_token
from cmms.config import get_settings
from cmms.db.models import DEFAULT_PALETTE, User, UserPreferences
from cmms.db.session import transaction
from cmms.google.oauth import GoogleOAuthClient, GoogleProfile, OAuthTokens
from cmms.logging import get_logger
from cmms.schemas.users import (
    LoginOut,
    PreferencesOut,
    UpdateMeRequest,
    UpdatePreferencesRequest,
    UserOut,
)
from cmms.services.bootstrap import ensure_user_defaults
from cmms.services.credentials import store_google_tokens
from cmms.services.ownership import get_user_or_404

logger = get_logger(__name__)


# =============================================================================
# Sign-in
# =============================================================================


def _upsert_google_user(db: Session, profile: GoogleProfile, tokens: OAuthTokens) -> User:
    with transaction(db):
        user = db.scalar(select(User).where(User.google_id == profile.google_id))
        if user is None:
            user = User(
                google_id=profile.google_id,
                email=profile.email,
                display_name=profile.name,
                profile_image_url=profile.picture,
            )
            db.add(user)
        else:
            user.email = profile.email
            user.display_name = user.display_name or profile.name
            user.profile_image_url = profile.picture
        store_google_tokens(user, tokens)
        db.flush()
        ensure_user_defaults(db, user.id)
    return user


def complete_google_login(db: Session, oauth: GoogleOAuthClient, code: str) -> LoginOut:
    """Finish the OAuth callback: exchange code, upsert user, issue session token.

    Raises:
        ProviderError: If Google rejects the code or the profile fetch fails.
    """
    tokens = oauth.exchange_code(code)
    profile = oauth.fetch_profile(tokens.access_token)

    try:
        user = _upsert_google_user(db, profile, tokens)
    except IntegrityError:
        # Lost a race with a concurrent first login; the row exists now
        logger.info("google_login_race_retry")
        user = _upsert_google_user(db, profile, tokens)

    settings = get_settings()
    token = mint_session_token(
        user.id, user.email, settings.jwt_secret, settings.jwt_expires_in_s
    )
    logger.info("user_signed_in", user_id=str(user.id))
    return LoginOut(token=token, user=UserOut.model_validate(user))


def load_viewer(db: Session, user_id: UUID) -> Viewer | None:
    """Viewer for a token subject, or None if the user was deleted."""
    row = db.execute(select(User.id, User.email).where(User.id == user_id)).first()
    if row is None:
        return None
    return Viewer(user_id=row.id, email=row.email)


def create_viewer_loader(session_factory: sessionmaker[Session]) -> ViewerLoader:
    """Bind load_viewer to a session factory for the auth middleware."""

    def loader(user_id: UUID) -> Viewer | None:
        db = session_factory()
        try:
            return load_viewer(db, user_id)
        finally:
            db.close()

    return loader


# =============================================================================
# Profile
# =============================================================================


def get_me(db: Session, user_id: UUID) -> UserOut:
    return UserOut.model_validate(get_user_or_404(db, user_id))


def update_me(db: Session, user_id: UUID, req: UpdateMeRequest) -> UserOut:
    """Update display name and/or watch folder. An empty folder id clears it."""
    user = get_user_or_404(db, user_id)
    fields = req.model_dump(exclude_unset=True)
    if "watched_folder_id" in fields:
        fields["watched_folder_id"] = (fields["watched_folder_id"] or "").strip() or None
    if fields:
        db.execute(
            update(User).where(User.id == user_id).values(**fields, updated_at=func.now())
        )
        db.commit()
        db.refresh(user)
        logger.info("profile_updated", fields=sorted(fields))
    return UserOut.model_validate(user)


# =============================================================================
# Preferences
# =============================================================================


def _get_or_create_preferences(db: Session, user_id: UUID) -> UserPreferences:
    prefs = db.get(UserPreferences, user_id)
    if prefs is None:
        get_user_or_404(db, user_id)
        with transaction(db):
            ensure_user_defaults(db, user_id)
        prefs = db.get(UserPreferences, user_id)
    return prefs


def get_preferences(db: Session, user_id: UUID) -> PreferencesOut:
    return PreferencesOut.model_validate(_get_or_create_preferences(db, user_id))


def update_preferences(
    db: Session, user_id: UUID, req: UpdatePreferencesRequest
) -> PreferencesOut:
    prefs = _get_or_create_preferences(db, user_id)
    fields = req.model_dump(exclude_unset=True, exclude_none=True)
    if fields:
        db.execute(
            update(UserPreferences)
            .where(UserPreferences.user_id == user_id)
            .values(**fields, updated_at=func.now())
        )
        db.commit()
        db.refresh(prefs)
    return PreferencesOut(
        color_palette=prefs.color_palette or list(DEFAULT_PALETTE),
        auto_assign_colors=prefs.auto_assign_colors,
        theme=prefs.theme,
    )
