"""
High-level async client for one QuickBooks Online company.

Thin convenience layer over RequestExecutor and BatchEngine: each method builds
the matching Operation (validation happens there) and executes it.

Example:
    >>> async with QuickBooksClient(QBContext.from_env()) as qb:
    ...     invoice = await qb.create("Invoice", {"Line": [...], "CustomerRef": {"value": "1"}})
    ...     batch = qb.batch()
    ...     batch.add(QueryOperation(entity="Customer", query_string="WHERE Active = true"))
    ...     results = await qb.execute_batch(batch)
"""

from typing import Any, Optional

import httpx
import structlog

from qbkit.connectors.batch import BatchEngine, BatchRequest, BatchResponseItem
from qbkit.connectors.context import QBContext
from qbkit.connectors.executor import RequestExecutor
from qbkit.models.operations import (
    MAX_QUERY_RESULTS,
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
)
from qbkit.models.results import QueryResultSet

logger = structlog.get_logger()


class QuickBooksClient:
    """
    Async client bound to a QBContext.

    Attributes:
        context: Shared credential and rate-limit state
        executor: Single-request executor
        batch_engine: Composite request engine
    """

    def __init__(self, context: QBContext, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the client.

        Args:
            context: Authenticated context (see QBContext.from_env)
            http_client: Optional httpx client; one is created and owned otherwise
        """
        self.context = context
        self.executor = RequestExecutor(context, http_client=http_client)
        self.batch_engine = BatchEngine(self.executor)

    async def __aenter__(self):
        """Async context manager entry."""
        await self.executor.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.executor.aclose()

    async def aclose(self) -> None:
        await self.executor.aclose()

    async def execute(self, operation: Operation) -> Any:
        return await self.executor.execute(operation)

    async def create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create an entity and return the stored payload (with Id and SyncToken)."""
        return await self.execute(CreateOperation(entity=entity, payload=payload))

    async def update(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Update an entity; the payload must carry Id and SyncToken."""
        return await self.execute(UpdateOperation(entity=entity, payload=payload))

    async def delete(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Delete the entity identified by the Id and SyncToken in ``payload``."""
        return await self.execute(DeleteOperation.of(entity, payload))

    async def read(self, entity: str, entity_id: str) -> dict[str, Any]:
        return await self.execute(ReadOperation(entity=entity, id=entity_id))

    async def query(
        self,
        entity: str,
        query_string: str = "",
        max_results: Optional[int] = None,
        start_position: Optional[int] = None,
    ) -> QueryResultSet:
        """
        Run a query against one entity.

        Args:
            entity: Entity to select from
            query_string: Statement tail, e.g. ``"WHERE TotalAmt > '100.00'"``
            max_results: Optional MAXRESULTS (1-1000)
            start_position: Optional 1-based STARTPOSITION

        Returns:
            QueryResultSet (empty when nothing matches)
        """
        return await self.execute(
            QueryOperation(
                entity=entity,
                query_string=query_string,
                max_results=max_results,
                start_position=start_position,
            )
        )

    async def query_all(
        self,
        entity: str,
        query_string: str = "",
        page_size: int = MAX_QUERY_RESULTS,
    ) -> list[dict[str, Any]]:
        """
        Retrieve every matching entity, paging with STARTPOSITION.

        Each page is a separate standard-budget request. Paging stops at the
        first page shorter than ``page_size``.

        Args:
            entity: Entity to select from
            query_string: Statement tail (WHERE / ORDER BY)
            page_size: Entities per page (max 1000)

        Returns:
            Complete list of matching entity payloads
        """
        all_items: list[dict[str, Any]] = []
        start_position = 1

        while True:
            page = await self.query(
                entity,
                query_string=query_string,
                max_results=page_size,
                start_position=start_position,
            )
            all_items.extend(page.items)

            logger.debug(
                "query_page_retrieved",
                entity=entity,
                page_items=len(page),
                total=len(all_items),
                start_position=start_position,
            )

            if len(page) < page_size:
                break
            start_position += page_size

        logger.info("query_all_completed", entity=entity, total_count=len(all_items))
        return all_items

    async def report(self, report_name: str, params: Optional[dict[str, str]] = None) -> dict[str, Any]:
        return await self.execute(ReportOperation(report_name=report_name, params=params or {}))

    async def send(self, entity: str, entity_id: str, email: Optional[str] = None) -> dict[str, Any]:
        """Email a transaction (Invoice, Estimate, ...) to ``email`` or the address on file."""
        return await self.execute(SendOperation(entity=entity, id=entity_id, email=email))

    async def pdf(self, entity: str, entity_id: str) -> bytes:
        return await self.execute(PdfOperation(entity=entity, id=entity_id))

    async def upload(
        self,
        file_name: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Upload a file and return the created Attachable.

        Args:
            file_name: Name reported to QuickBooks
            content: Raw file bytes
            content_type: MIME type, guessed from the file name when omitted
            metadata: Attachable body, e.g. ``{"AttachableRef": [{"EntityRef": {...}}]}``
        """
        return await self.execute(
            UploadOperation(
                file_name=file_name,
                content=content,
                content_type=content_type,
                metadata=metadata or {},
            )
        )

    def batch(self) -> BatchRequest:
        """New empty batch sized by the configured item ceiling."""
        return self.batch_engine.new_batch()

    async def execute_batch(self, batch: BatchRequest) -> list[BatchResponseItem]:
        return await self.batch_engine.execute(batch)

    def connection_status(self) -> dict[str, Any]:
        return self.context.connection_status()
