"""Identity resolution for recordkit.

Auth tokens are HS256 JWTs naming an auth record. The middleware resolves
them to the record, which becomes ``@request.auth`` in rules.
"""

from recordkit.auth.jwt_service import (
    InvalidTokenError,
    JWTError,
    JWTService,
    TokenExpiredError,
)
from recordkit.auth.middleware import AuthMiddleware, get_auth
from recordkit.auth.types import TokenClaims

__all__ = [
    "AuthMiddleware",
    "InvalidTokenError",
    "JWTError",
    "JWTService",
    "TokenClaims",
    "TokenExpiredError",
    "get_auth",
]
