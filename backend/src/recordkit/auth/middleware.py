"""Authentication middleware for FastAPI."""

import logging
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from recordkit.auth.jwt_service import JWTError, JWTService
from recordkit.core.record import Record

logger = logging.getLogger(__name__)

# Resolves (collection, id) to an auth record
AuthResolver = Callable[[str, str], Record | None]


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves a Bearer token to the authenticated record.

    The middleware:
    1. Extracts Bearer token from Authorization header
    2. Decodes and validates the JWT
    3. Loads the auth record the token names
    4. Sets request.state.auth with the record

    If no token is present, the token is invalid or expired, or the record
    no longer exists, request.state.auth is None (anonymous). The middleware
    never rejects a request.
    """

    def __init__(self, app, jwt_service: JWTService, resolver: AuthResolver):
        """Initialize middleware.

        Args:
            app: The ASGI application
            jwt_service: JWT service for token validation
            resolver: Loads an auth record by collection and id
        """
        super().__init__(app)
        self._jwt_service = jwt_service
        self._resolver = resolver

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process the request and extract authentication info."""
        request.state.auth = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:]  # Remove "Bearer " prefix
            request.state.auth = self._resolve(token)

        return await call_next(request)

    def _resolve(self, token: str) -> Record | None:
        try:
            claims = self._jwt_service.decode_token(token)
        except JWTError as e:
            logger.debug("Ignoring bearer token: %s", e)
            return None

        if claims.type != "auth" or not claims.id or not claims.collection:
            return None

        record = self._resolver(claims.collection, claims.id)
        if record is None or not record.collection.is_auth:
            return None
        return record


def get_auth(request: Request) -> Record | None:
    """Get the authenticated record from the request state.

    Args:
        request: The FastAPI/Starlette request

    Returns:
        The auth Record if authenticated, None otherwise
    """
    return getattr(request.state, "auth", None)
