"""HTTP surface and request-level orchestration."""

from recordkit.api.app import create_app
from recordkit.api.requests import DEFAULT_PER_PAGE, MAX_PER_PAGE, RecordsApi, parse_sort

__all__ = ["DEFAULT_PER_PAGE", "MAX_PER_PAGE", "RecordsApi", "create_app", "parse_sort"]
