"""
qbkit - typed async client for the QuickBooks Online REST API.

Authenticated context, rolling-window rate limiting, request execution with
token refresh, and batch requests with per-item results.
"""

from qbkit.client import QuickBooksClient
from qbkit.config import Settings, get_settings
from qbkit.connectors import (
    BatchEngine,
    BatchRequest,
    BatchResponseItem,
    QBContext,
    RateLimiter,
    RequestExecutor,
    failed_operations,
)
from qbkit.errors import (
    ErrorKind,
    QBOAPIError,
    QBOAuthError,
    QBOBadRequest,
    QBOBatchError,
    QBOBatchLimitExceeded,
    QBOConfigError,
    QBOThrottleError,
    QBOTransportError,
    QBOValidationError,
)
from qbkit.models import (
    CreateOperation,
    DeleteOperation,
    Environment,
    Fault,
    PdfOperation,
    QueryOperation,
    QueryResultSet,
    RateBudget,
    ReadOperation,
    ReportOperation,
    SendOperation,
    UpdateOperation,
    UploadOperation,
)

__version__ = "0.1.0"

__all__ = [
    "QuickBooksClient",
    "Settings",
    "get_settings",
    "BatchEngine",
    "BatchRequest",
    "BatchResponseItem",
    "QBContext",
    "RateLimiter",
    "RequestExecutor",
    "failed_operations",
    "ErrorKind",
    "QBOAPIError",
    "QBOAuthError",
    "QBOBadRequest",
    "QBOBatchError",
    "QBOBatchLimitExceeded",
    "QBOConfigError",
    "QBOThrottleError",
    "QBOTransportError",
    "QBOValidationError",
    "CreateOperation",
    "DeleteOperation",
    "Environment",
    "Fault",
    "PdfOperation",
    "QueryOperation",
    "QueryResultSet",
    "RateBudget",
    "ReadOperation",
    "ReportOperation",
    "SendOperation",
    "UpdateOperation",
    "UploadOperation",
]
