"""Type definitions for authentication."""

from dataclasses import dataclass


@dataclass
class TokenClaims:
    """Claims embedded in a JWT token.

    Attributes:
        id: Id of the authenticated record
        collection: Name of the auth collection the record belongs to
        type: Token type ("auth")
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
    """

    id: str
    collection: str
    type: str = "auth"
    exp: int = 0
    iat: int = 0
