"""Context, rate limiting, request execution and batching against the QuickBooks Online API."""

from qbkit.connectors.batch import BatchEngine, BatchRequest, BatchResponseItem, failed_operations
from qbkit.connectors.context import QBContext
from qbkit.connectors.executor import RequestExecutor
from qbkit.connectors.rate_limiter import Permit, RateLimiter

__all__ = [
    "BatchEngine",
    "BatchRequest",
    "BatchResponseItem",
    "failed_operations",
    "Permit",
    "QBContext",
    "RateLimiter",
    "RequestExecutor",
]
