"""
Label Lookup Exceptions

Error taxonomy shared by the search client, the resolver and the orchestrator.
"""

from typing import Optional


class LabelLookupError(Exception):
    """Base class for all label lookup failures."""
    pass


class LabelSearchError(LabelLookupError):
    """Raised by the label search client for any failed search request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(LabelSearchError):
    """Network or HTTP-layer failure (non-2xx, connection error, malformed body)."""
    pass


class ApiError(LabelSearchError):
    """Response carried a body-level error field."""
    pass


class NoMatchesError(ApiError):
    """The query executed but matched no label."""
    pass


class ResolutionError(LabelLookupError):
    """No resolution path produced a single label for a name."""
    pass


class QueryCancelledError(LabelLookupError):
    """A resolution was abandoned because its run was superseded."""
    pass


NO_MATCHES_MARKER = "no matches found"


def is_no_matches_message(message: Optional[str]) -> bool:
    """Check whether an API error message means the search matched nothing."""
    return bool(message) and NO_MATCHES_MARKER in message.lower()
