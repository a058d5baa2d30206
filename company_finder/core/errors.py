"""Error taxonomy for Company Finder.

Three kinds of failure travel through the fetch and cache layers:

- ``ClientRequestError``: the server rejected the request (HTTP 4xx).  These
  are surfaced immediately and never retried.
- ``TransientError``: network failure, HTTP 5xx or a malformed body.  These
  are retried with exponential backoff and surfaced once the attempt budget
  is spent.
- ``RequestCancelled``: a request superseded by a newer one.  Not an error
  from the user's point of view; callers discard it silently and never cache
  anything produced by a cancelled request.
"""

from __future__ import annotations

from typing import Optional


class CompanyFinderError(Exception):
    """Base class for all Company Finder errors."""


class ApiError(CompanyFinderError):
    """An HTTP request completed with an error status."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


class ClientRequestError(ApiError):
    """HTTP 4xx: bad or missing parameters, unknown identifier."""

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class TransientError(ApiError):
    """Network failure, HTTP 5xx or an unreadable response body."""


class RequestCancelled(CompanyFinderError):
    """Raised when a request is abandoned because a newer one replaced it."""

    def __init__(self, reason: str = "superseded") -> None:
        super().__init__(f"Request cancelled: {reason}")
        self.reason = reason


class RegistryError(CompanyFinderError):
    """The registry store could not answer a query."""


def is_client_error(error: BaseException) -> bool:
    """Return True for errors that must not be retried."""
    return isinstance(error, ApiError) and error.is_client_error
