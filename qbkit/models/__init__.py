"""Operation, result and enum models for the QuickBooks request layer."""

from qbkit.models.enums import BatchOperationType, Environment, RateBudget
from qbkit.models.operations import (
    BatchableOperation,
    CreateOperation,
    DeleteOperation,
    Operation,
    PdfOperation,
    QueryOperation,
    ReadOperation,
    ReportOperation,
    SendOperation,
    UpdateOperation,
    UploadOperation,
    WireRequest,
)
from qbkit.models.results import Fault, FaultError, QueryResultSet

__all__ = [
    "BatchOperationType",
    "Environment",
    "RateBudget",
    "Operation",
    "BatchableOperation",
    "CreateOperation",
    "UpdateOperation",
    "DeleteOperation",
    "QueryOperation",
    "ReadOperation",
    "ReportOperation",
    "SendOperation",
    "PdfOperation",
    "UploadOperation",
    "WireRequest",
    "Fault",
    "FaultError",
    "QueryResultSet",
]
