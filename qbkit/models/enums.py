"""
Enumeration types for the QuickBooks request layer.

All enums inherit from str to keep them JSON and log friendly.
"""

from enum import Enum


class Environment(str, Enum):
    """QuickBooks Online API environment."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @property
    def api_host(self) -> str:
        if self is Environment.PRODUCTION:
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"


class RateBudget(str, Enum):
    """
    Independent rate-limit budgets enforced by the remote service.

    STANDARD covers every single-entity call. BATCH counts composite batch
    calls, regardless of how many operations each carries.
    """

    STANDARD = "standard"
    BATCH = "batch"


class BatchOperationType(str, Enum):
    """Wire value of the ``operation`` field on a batch item."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
