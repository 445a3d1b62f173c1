"""Test helpers for authentication.

Provides:
- Session token minting with the test secret
- Header generation for test requests
"""

from uuid import UUID

from cmms.auth.tokens import mint_session_token

TEST_JWT_SECRET = "cmms-test-secret-0123456789abcdef"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: UUID | str,
    email: str = "comic@test.local",
    expires_in: int = DEFAULT_EXPIRES_IN,
    secret: str = TEST_JWT_SECRET,
) -> str:
    """Mint a valid session token for user_id."""
    return mint_session_token(UUID(str(user_id)), email, secret, expires_in)


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    return {"Authorization": f"Bearer {mint_test_token(user_id, **token_kwargs)}"}
