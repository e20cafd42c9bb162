"""Per-operation request context used by rules and request hooks."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from recordkit.core.record import Record


class RequestContextTag(Enum):
    """How the operation was initiated (exposed as @request.context)."""

    DEFAULT = "default"
    OAUTH2 = "oauth2"
    OTP = "otp"
    PASSWORD = "password"
    REALTIME = "realtime"
    PROTECTED_FILE = "protectedFile"


def _freeze(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class RequestInfo:
    """Immutable request context.

    Attributes:
        auth: The authenticated record, or None for anonymous requests
        body: Submitted body fields
        context: The context tag of the operation
        query: Resolved query parameters
        headers: Request headers (lowercase names, "-" replaced with "_")
        method: HTTP method, or "" for non-HTTP operations
    """

    auth: "Record | None" = None
    body: Mapping[str, Any] = field(default_factory=dict)
    context: RequestContextTag = RequestContextTag.DEFAULT
    query: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, Any] = field(default_factory=dict)
    method: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _freeze(self.body))
        object.__setattr__(self, "query", _freeze(self.query))
        headers = {
            str(k).lower().replace("-", "_"): v for k, v in (self.headers or {}).items()
        }
        object.__setattr__(self, "headers", MappingProxyType(headers))

    @property
    def is_superuser(self) -> bool:
        return self.auth is not None and self.auth.collection.is_superusers

    @property
    def auth_id(self) -> str:
        return self.auth.id if self.auth is not None else ""
