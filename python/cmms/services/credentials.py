"""Per-user Google credentials.

Each request (or Celery task) that talks to Google resolves the acting
user's stored tokens into an explicit provider object. Access tokens are
refreshed shortly before they expire and the new token is persisted,
encrypted, before the provider is handed out.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from cmms.config import get_settings
from cmms.db.models import User
from cmms.errors import ApiError, ApiErrorCode, InvalidRequestError
from cmms.google.client import DocumentProviderBase, GoogleWorkspaceClient, ProviderError
from cmms.google.oauth import GoogleOAuthClient, OAuthTokens, get_oauth_client
from cmms.logging import get_logger
from cmms.services.crypto import decrypt_token, encrypt_token
from cmms.services.ownership import get_user_or_404

logger = get_logger(__name__)

# Refresh when the access token has less than this left
REFRESH_MARGIN = timedelta(seconds=60)


def store_google_tokens(user: User, tokens: OAuthTokens, now: datetime | None = None) -> None:
    """Encrypt tokens onto the user row. Does not flush or commit.

    A missing refresh token (Google omits it on refresh) keeps the stored one.
    """
    now = now or datetime.now(UTC)
    ciphertext, nonce = encrypt_token(tokens.access_token)
    user.google_access_token_ciphertext = ciphertext
    user.google_access_token_nonce = nonce
    user.google_token_expires_at = now + timedelta(seconds=tokens.expires_in)
    if tokens.refresh_token:
        ciphertext, nonce = encrypt_token(tokens.refresh_token)
        user.google_refresh_token_ciphertext = ciphertext
        user.google_refresh_token_nonce = nonce


def get_google_access_token(
    db: Session,
    user_id: UUID,
    oauth_factory: Callable[[], GoogleOAuthClient] = get_oauth_client,
    now: datetime | None = None,
) -> str:
    """Return a usable access token for the user, refreshing if needed.

    Raises:
        InvalidRequestError(E_GOOGLE_NOT_LINKED): No stored Google tokens.
        ApiError(E_UNAUTHENTICATED): Google revoked the grant.
    """
    now = now or datetime.now(UTC)
    user = get_user_or_404(db, user_id)

    if user.google_access_token_ciphertext is None or user.google_access_token_nonce is None:
        raise InvalidRequestError(
            ApiErrorCode.E_GOOGLE_NOT_LINKED, "Google account is not linked; sign in again"
        )

    expires_at = user.google_token_expires_at
    if expires_at is not None and expires_at - REFRESH_MARGIN > now:
        return decrypt_token(user.google_access_token_ciphertext, user.google_access_token_nonce)

    if user.google_refresh_token_ciphertext is None or user.google_refresh_token_nonce is None:
        raise InvalidRequestError(
            ApiErrorCode.E_GOOGLE_NOT_LINKED, "Google session expired; sign in again"
        )

    refresh_token = decrypt_token(
        user.google_refresh_token_ciphertext, user.google_refresh_token_nonce
    )
    try:
        tokens = oauth_factory().refresh(refresh_token)
    except ProviderError as e:
        if e.status_code == 401:
            logger.warning("google_refresh_rejected", user_id=str(user_id))
            raise ApiError(
                ApiErrorCode.E_UNAUTHENTICATED, "Google authorization expired; sign in again"
            ) from e
        raise

    store_google_tokens(user, tokens, now=now)
    db.commit()
    logger.info("google_token_refreshed", user_id=str(user_id))
    return tokens.access_token


def build_document_provider(db: Session, user_id: UUID) -> DocumentProviderBase:
    """Resolve the user's credentials into a provider client."""
    access_token = get_google_access_token(db, user_id)
    return GoogleWorkspaceClient(access_token, timeout=get_settings().provider_timeout_s)
