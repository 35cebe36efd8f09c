"""
Retention Sweeper — error kinds.

Every cleanup task catches its own failure and reports one of these kinds,
so a dashboard can tell "will self-heal next sweep" apart from "needs an
operator".
"""

import asyncio
from enum import Enum

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions


class ErrorKind(str, Enum):
    TRANSIENT = "transient"        # network, timeout, quota: retried by the next sweep
    UNAVAILABLE = "unavailable"    # credentials, permissions, store not configured
    INTERNAL = "internal"          # anything else, most likely a bug


class CleanupError(Exception):
    """Base class for failures raised at the document-store boundary."""

    kind: ErrorKind = ErrorKind.INTERNAL

    @property
    def self_healing(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class TransientStoreError(CleanupError):
    kind = ErrorKind.TRANSIENT


class DocumentGoneError(TransientStoreError):
    """A write targeted a document that another writer has since deleted."""


class StoreUnavailableError(CleanupError):
    kind = ErrorKind.UNAVAILABLE


# Google API errors that clear up on their own. NotFound / Conflict come from
# documents changed by another writer between read and commit.
TRANSIENT_GOOGLE_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
    google_exceptions.Aborted,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    google_exceptions.NotFound,
    google_exceptions.Conflict,
)

UNAVAILABLE_GOOGLE_ERRORS = (
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
    google_exceptions.FailedPrecondition,
    auth_exceptions.GoogleAuthError,
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception caught at a task boundary to an ErrorKind."""
    if isinstance(exc, CleanupError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError) + TRANSIENT_GOOGLE_ERRORS):
        return ErrorKind.TRANSIENT
    if isinstance(exc, UNAVAILABLE_GOOGLE_ERRORS):
        return ErrorKind.UNAVAILABLE
    # InvalidArgument and the rest of GoogleAPICallError mean a malformed request
    return ErrorKind.INTERNAL
