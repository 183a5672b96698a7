"""
Error taxonomy for the QuickBooks Online request layer.

Every public operation raises a subclass of QBOAPIError. The ``kind`` attribute
discriminates between failure categories so callers can branch on a single
value (for example, sleep and retry only on ``ErrorKind.THROTTLED``) while the
subclasses keep ordinary ``except`` clauses working.
"""

from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from qbkit.models.results import Fault


class ErrorKind(str, Enum):
    """Failure categories surfaced by the client."""

    CONFIG = "config"
    TRANSPORT = "transport"
    AUTH = "auth"
    THROTTLED = "throttled"
    VALIDATION = "validation"
    BAD_REQUEST = "bad_request"
    BATCH_LIMIT_EXCEEDED = "batch_limit_exceeded"
    BATCH = "batch"


class QBOAPIError(Exception):
    """
    Base class for every error raised by qbkit.

    Attributes:
        kind: Discriminating error category
        message: Human readable description
        status_code: HTTP status of the response that caused the error, if any
    """

    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.value}] HTTP {self.status_code}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


class QBOConfigError(QBOAPIError):
    """Raised when required setup values are missing or invalid."""

    kind = ErrorKind.CONFIG


class QBOTransportError(QBOAPIError):
    """Raised on connection, timeout or DNS failures, and on remote 5xx responses."""

    kind = ErrorKind.TRANSPORT
    retryable = True


class QBOAuthError(QBOAPIError):
    """Raised when the access token is rejected after one refresh, or the refresh itself fails."""

    kind = ErrorKind.AUTH


class QBOThrottleError(QBOAPIError):
    """
    Raised when a local rate budget is exhausted or the remote answers 429.

    Attributes:
        retry_after: Seconds the caller should wait before trying again
        budget: Name of the exhausted local budget, None for remote throttling
    """

    kind = ErrorKind.THROTTLED
    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        budget: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after
        self.budget = budget


class QBOValidationError(QBOAPIError):
    """Raised for malformed operations; nothing is sent over the wire."""

    kind = ErrorKind.VALIDATION


class QBOBadRequest(QBOAPIError):
    """
    Raised when the remote rejects the business content of a call.

    Attributes:
        fault: Structured fault returned by the API
    """

    kind = ErrorKind.BAD_REQUEST

    def __init__(self, fault: "Fault", status_code: Optional[int] = None):
        super().__init__(fault.summary(), status_code=status_code)
        self.fault = fault


class QBOBatchLimitExceeded(QBOAPIError):
    """Raised when a batch would grow beyond its item ceiling."""

    kind = ErrorKind.BATCH_LIMIT_EXCEEDED

    def __init__(self, limit: int):
        super().__init__(f"Batch request cannot hold more than {limit} operations")
        self.limit = limit


class QBOBatchError(QBOAPIError):
    """
    Raised when a batch response does not correlate 1:1 with the request.

    Attributes:
        missing: Correlation ids submitted but absent from the response
        unexpected: Correlation ids present in the response but never submitted
    """

    kind = ErrorKind.BATCH

    def __init__(
        self,
        message: str,
        missing: Optional[list[str]] = None,
        unexpected: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.missing = missing or []
        self.unexpected = unexpected or []
