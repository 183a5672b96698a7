"""
Batch engine: many operations, one composite HTTP call.

A BatchRequest collects up to ``qb_batch_max_items`` create, update, delete
and query operations and assigns each a correlation id (``bId``). The engine
sends them as a single ``POST /batch`` under the batch rate budget and
demultiplexes the ``BatchItemResponse`` array back into one BatchResponseItem
per submitted operation, in submission order.

Wire format::

    {"BatchItemRequest": [
        {"bId": "bid1", "operation": "create", "Invoice": {...}},
        {"bId": "bid2", "Query": "SELECT * FROM Customer"}
    ]}

    {"BatchItemResponse": [
        {"bId": "bid2", "QueryResponse": {...}},
        {"bId": "bid1", "Fault": {"type": "ValidationFault", "Error": [...]}}
    ]}

Items fail independently. The engine never resubmits failed items; use
``failed_operations`` to build a fresh batch from them.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from qbkit.connectors.executor import RequestExecutor
from qbkit.errors import (
    QBOBadRequest,
    QBOBatchError,
    QBOBatchLimitExceeded,
    QBOValidationError,
)
from qbkit.models.enums import RateBudget
from qbkit.models.operations import BatchableOperation, Operation, WireRequest
from qbkit.models.results import Fault

logger = structlog.get_logger()

DEFAULT_BATCH_MAX_ITEMS = 30


class BatchRequest:
    """
    Ordered collection of batchable operations keyed by correlation id.

    Correlation ids are assigned sequentially on insertion (``bid1``, ``bid2``,
    ...) and are unique within the request.
    """

    def __init__(self, max_items: int = DEFAULT_BATCH_MAX_ITEMS):
        self.max_items = max_items
        self._items: list[tuple[str, BatchableOperation]] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    @property
    def items(self) -> list[tuple[str, BatchableOperation]]:
        """Snapshot of (correlation_id, operation) pairs in submission order."""
        return list(self._items)

    @property
    def correlation_ids(self) -> list[str]:
        return [bid for bid, _ in self._items]

    def add(self, operation: Operation) -> str:
        """
        Append an operation to the batch.

        Args:
            operation: Create, Update, Delete or Query operation

        Returns:
            Correlation id assigned to the operation

        Raises:
            QBOValidationError: If the operation kind cannot be batched
            QBOBatchLimitExceeded: If the batch is already full; the batch is left unchanged
        """
        if not isinstance(operation, BatchableOperation):
            raise QBOValidationError(f"{type(operation).__name__} cannot be part of a batch request")
        if len(self._items) >= self.max_items:
            raise QBOBatchLimitExceeded(self.max_items)

        correlation_id = f"bid{len(self._items) + 1}"
        self._items.append((correlation_id, operation))
        return correlation_id

    def extend(self, operations: list[Operation]) -> list[str]:
        """Add several operations; stops at the first one that is rejected."""
        return [self.add(op) for op in operations]

    def to_payload(self) -> dict[str, Any]:
        return {
            "BatchItemRequest": [
                {"bId": correlation_id, **operation.to_batch_item()}
                for correlation_id, operation in self._items
            ]
        }


class BatchResponseItem(BaseModel):
    """
    Outcome of one operation within a batch.

    Exactly one of ``value`` and ``fault`` is meaningful: ``fault`` is set when
    the operation failed, otherwise ``value`` holds the entity payload (dict)
    or QueryResultSet.
    """

    model_config = ConfigDict(frozen=True)

    correlation_id: str = Field(description="bId the operation was submitted under")
    operation: BatchableOperation = Field(description="The submitted operation")
    value: Optional[Any] = Field(default=None, description="Decoded success value")
    fault: Optional[Fault] = Field(default=None, description="Per-item business fault")

    @property
    def ok(self) -> bool:
        return self.fault is None

    def unwrap(self) -> Any:
        """
        Return the success value.

        Raises:
            QBOBadRequest: If the item faulted
        """
        if self.fault is not None:
            raise QBOBadRequest(self.fault)
        return self.value


def failed_operations(results: list[BatchResponseItem]) -> list[BatchableOperation]:
    """Operations whose items faulted, in submission order."""
    return [item.operation for item in results if not item.ok]


class BatchEngine:
    """Sends BatchRequests through a RequestExecutor and demultiplexes the results."""

    def __init__(self, executor: RequestExecutor):
        self.executor = executor

    def new_batch(self) -> BatchRequest:
        return BatchRequest(max_items=self.executor.context.settings.qb_batch_max_items)

    async def execute(self, batch: BatchRequest) -> list[BatchResponseItem]:
        """
        Execute a batch as one composite call.

        Args:
            batch: Request to send (not modified)

        Returns:
            One BatchResponseItem per submitted operation, in submission order

        Raises:
            QBOBatchError: If response ids do not match the submitted ids 1:1
            QBOAPIError: Any executor error for the composite call itself
        """
        if len(batch) == 0:
            return []

        wire = WireRequest(method="POST", path="batch", json_body=batch.to_payload())
        response = await self.executor.dispatch(wire, budget=RateBudget.BATCH)
        body = self.executor.read_json(response)

        envelopes = self._index_envelopes(body, batch)

        results = []
        for correlation_id, operation in batch:
            envelope = envelopes[correlation_id]
            fault = Fault.from_body(envelope)
            value = None
            if fault is None:
                try:
                    value = operation.decode_batch(envelope)
                except QBOBadRequest as e:
                    logger.warning("batch_item_malformed", correlation_id=correlation_id, error=e.message)
                    fault = e.fault
            if fault is not None:
                results.append(
                    BatchResponseItem(correlation_id=correlation_id, operation=operation, fault=fault)
                )
            else:
                results.append(
                    BatchResponseItem(
                        correlation_id=correlation_id,
                        operation=operation,
                        value=value,
                    )
                )

        failed = sum(1 for item in results if not item.ok)
        logger.info(
            "batch_executed",
            items=len(results),
            succeeded=len(results) - failed,
            failed=failed,
        )
        return results

    def _index_envelopes(self, body: Any, batch: BatchRequest) -> dict[str, dict[str, Any]]:
        raw_items = body.get("BatchItemResponse") if isinstance(body, dict) else None
        if not isinstance(raw_items, list):
            logger.error("batch_response_malformed", items=len(batch))
            raise QBOBatchError(
                "Batch response has no BatchItemResponse array",
                missing=batch.correlation_ids,
            )

        envelopes: dict[str, dict[str, Any]] = {}
        unexpected: list[str] = []
        submitted = set(batch.correlation_ids)

        for envelope in raw_items:
            correlation_id = envelope.get("bId") if isinstance(envelope, dict) else None
            if correlation_id not in submitted or correlation_id in envelopes:
                unexpected.append(str(correlation_id))
                continue
            envelopes[correlation_id] = envelope

        missing = [bid for bid in batch.correlation_ids if bid not in envelopes]
        if missing or unexpected:
            logger.error(
                "batch_correlation_mismatch",
                missing=missing,
                unexpected=unexpected,
            )
            raise QBOBatchError(
                f"Batch response does not match request: missing={missing} unexpected={unexpected}",
                missing=missing,
                unexpected=unexpected,
            )
        return envelopes
