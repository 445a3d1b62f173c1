"""Authentication module.

This module provides:
- Session token issuance and verification (HS256 JWTs)
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from cmms.auth.middleware import AuthMiddleware, Viewer, get_viewer
from cmms.auth.tokens import SessionTokenVerifier, TokenVerifier, mint_session_token

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "SessionTokenVerifier",
    "TokenVerifier",
    "mint_session_token",
]
