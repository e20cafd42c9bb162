"""JWT token generation and validation service."""

import time

import jwt

from recordkit.auth.types import TokenClaims
from recordkit.core.record import Record


class JWTError(Exception):
    """Base exception for JWT-related errors."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid or malformed."""

    pass


class JWTService:
    """Service for generating and validating JWT tokens.

    Uses HS256 algorithm with a shared secret key. Tokens identify an auth
    record by id and collection; they are minted programmatically.
    """

    AUTH_TOKEN_TTL = 14 * 24 * 60 * 60  # 14 days

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """Initialize the JWT service.

        Args:
            secret_key: Secret key for signing tokens (should be at least 32 chars)
            algorithm: JWT algorithm (default HS256)
        """
        self._secret_key = secret_key
        self._algorithm = algorithm

    def generate_token(self, record: Record, ttl: int | None = None) -> str:
        """Generate an auth token for a record of an auth collection.

        Args:
            record: The auth record
            ttl: Lifetime in seconds (default AUTH_TOKEN_TTL)

        Raises:
            ValueError: If the record is not an auth record
        """
        if not record.collection.is_auth:
            raise ValueError(f"Collection '{record.collection.name}' is not an auth collection")

        now = int(time.time())
        claims = {
            "sub": record.id,
            "collection": record.collection.name,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self.AUTH_TOKEN_TTL),
            "type": "auth",
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenClaims:
        """Decode and validate a JWT token.

        Args:
            token: The JWT token string

        Returns:
            TokenClaims with the decoded claims

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        return TokenClaims(
            id=payload.get("sub", ""),
            collection=payload.get("collection", ""),
            type=payload.get("type", "auth"),
            exp=payload.get("exp", 0),
            iat=payload.get("iat", 0),
        )
