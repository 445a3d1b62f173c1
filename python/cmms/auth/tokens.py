"""Session token issuance and verification.

After Google sign-in the API issues its own HS256 JWT signed with
JWT_SECRET. Claims: sub (user UUID), email, iat, exp.

Provides:
- TokenVerifier: Protocol for token verification
- SessionTokenVerifier: HS256 verifier used in all environments
- mint_session_token: issue a token for a user
"""

import logging
import time
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidSignatureError,
    InvalidTokenError,
)

from cmms.errors import ApiError, ApiErrorCode

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60


class TokenVerifier(Protocol):
    """Protocol for token verification."""

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
        """
        ...


class SessionTokenVerifier:
    """Verifies session tokens issued by mint_session_token().

    Validates:
    - HS256 signature with the shared secret
    - exp with a 60s clock skew allowance
    - sub present and a valid UUID
    """

    def __init__(self, secret: str):
        self._secret = secret

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "expired_token"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Token expired") from e
        except InvalidSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_signature"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token signature") from e
        except DecodeError as e:
            logger.warning("auth_failure", extra={"reason": "decode_error"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token format") from e
        except InvalidTokenError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_token", "error": str(e)})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token") from e

        try:
            UUID(str(payload["sub"]))
        except (ValueError, TypeError) as e:
            logger.warning("auth_failure", extra={"reason": "invalid_sub"})
            raise ApiError(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: sub is not a valid UUID"
            ) from e

        return payload


def mint_session_token(
    user_id: UUID,
    email: str,
    secret: str,
    expires_in_s: int,
    now: int | None = None,
) -> str:
    """Issue a session token for a user.

    Args:
        user_id: Subject of the token.
        email: Informational email claim.
        secret: HMAC secret (JWT_SECRET).
        expires_in_s: Lifetime in seconds.
        now: Override for the issue time (epoch seconds).

    Returns:
        Encoded JWT string.
    """
    issued_at = int(time.time()) if now is None else now
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": issued_at,
        "exp": issued_at + expires_in_s,
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)
