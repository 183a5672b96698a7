"""
Logical operations and their wire serialization.

An Operation is an immutable description of one API call. It knows how to
render itself as a WireRequest (method, path relative to the company base URL,
query parameters, body) and how to decode the matching response. Entity
payloads are opaque dicts: field-level schema is the caller's concern.

Only Create, Update, Delete and Query operations may be placed in a batch.
"""

import json
import mimetypes
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from qbkit.errors import QBOBadRequest, QBOValidationError
from qbkit.models.enums import BatchOperationType
from qbkit.models.reports import unknown_report_params
from qbkit.models.results import Fault, FaultError, QueryResultSet

# QBO rejects MAXRESULTS above this value
MAX_QUERY_RESULTS = 1000


class WireRequest(BaseModel):
    """
    A serialized request, independent of any HTTP client.

    Attributes:
        method: HTTP method
        path: Path relative to ``/v3/company/{company_id}/``
        params: Query string parameters (URL-encoded by the transport)
        json_body: JSON body, if any
        files: Multipart parts as ``{name: (filename, content, content_type)}``
        content_type: Content-Type header for non-multipart requests
        accept: Accept header
    """

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    params: dict[str, str] = Field(default_factory=dict)
    json_body: Optional[Any] = None
    files: Optional[dict[str, tuple[Optional[str], bytes, str]]] = None
    content_type: str = "application/json"
    accept: str = "application/json"


def _require_text(value: Optional[str], what: str) -> str:
    if value is None or not str(value).strip():
        raise QBOValidationError(f"{what} is required")
    return str(value).strip()


def _extract_entity(body: Any, entity: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        return {}
    found = body.get(entity)
    if found is None:
        for key, value in body.items():
            if key.lower() == entity.lower():
                found = value
                break
    return found if isinstance(found, dict) else {}


class Operation(BaseModel):
    """Base class for every logical operation."""

    model_config = ConfigDict(frozen=True)

    batchable: ClassVar[bool] = False
    expects_binary: ClassVar[bool] = False

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
                for error in e.errors()
            )
            raise QBOValidationError(f"Invalid {type(self).__name__}: {problems}") from e

    def to_wire(self) -> WireRequest:
        raise NotImplementedError

    def decode(self, body: Any) -> Any:
        """Decode a successful response body into the typed result."""
        return body

    def describe(self) -> dict[str, Any]:
        """Loggable summary without payload contents."""
        return {"operation": type(self).__name__}


class EntityOperation(Operation):
    """Operation addressed to one entity kind (Invoice, Customer, ...)."""

    entity: str = Field(description="Entity name in PascalCase, e.g. 'Invoice'")

    @field_validator("entity", mode="before")
    @classmethod
    def validate_entity(cls, v: Any) -> str:
        name = _require_text(v, "Entity name")
        if not name.isalnum():
            raise QBOValidationError(f"Invalid entity name: {name!r}")
        return name

    @field_validator("id", "sync_token", mode="before", check_fields=False)
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        # Ids and SyncTokens are numeric strings on the wire
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def entity_path(self) -> str:
        return self.entity.lower()

    def describe(self) -> dict[str, Any]:
        return {"operation": type(self).__name__, "entity": self.entity}


class BatchableOperation(EntityOperation):
    """Operation that can also travel inside a batch request."""

    batchable: ClassVar[bool] = True

    def to_batch_item(self) -> dict[str, Any]:
        """Render the batch item body, without its correlation id."""
        raise NotImplementedError

    def decode_batch(self, envelope: dict[str, Any]) -> Any:
        """Decode the success envelope of this operation's batch item."""
        raise NotImplementedError


class _WriteOperation(BatchableOperation):
    batch_operation: ClassVar[BatchOperationType]

    payload: dict[str, Any] = Field(default_factory=dict, description="Serialized entity")

    def to_wire(self) -> WireRequest:
        return WireRequest(method="POST", path=self.entity_path, json_body=self.payload)

    def decode(self, body: Any) -> dict[str, Any]:
        return _extract_entity(body, self.entity)

    def to_batch_item(self) -> dict[str, Any]:
        return {"operation": self.batch_operation.value, self.entity: self.payload}

    def decode_batch(self, envelope: dict[str, Any]) -> dict[str, Any]:
        return _extract_entity(envelope, self.entity)


class CreateOperation(_WriteOperation):
    """Create a new entity: ``POST /{entity}`` with the entity body."""

    batch_operation: ClassVar[BatchOperationType] = BatchOperationType.CREATE


class UpdateOperation(_WriteOperation):
    """
    Update an existing entity: ``POST /{entity}``.

    The payload must carry ``Id`` and ``SyncToken``; set ``"sparse": True`` in
    the payload for a sparse update.
    """

    batch_operation: ClassVar[BatchOperationType] = BatchOperationType.UPDATE

    @model_validator(mode="after")
    def require_identity(self) -> "UpdateOperation":
        _require_text(self.payload.get("Id"), f"Id for {self.entity} update")
        _require_text(self.payload.get("SyncToken"), f"SyncToken for {self.entity} update")
        return self


class DeleteOperation(BatchableOperation):
    """Delete an entity: ``POST /{entity}?operation=delete`` with Id and SyncToken."""

    id: Optional[str] = Field(default=None, description="Entity Id")
    sync_token: Optional[str] = Field(default=None, description="Entity SyncToken")

    @model_validator(mode="after")
    def require_identity(self) -> "DeleteOperation":
        _require_text(self.id, f"Id for {self.entity} delete")
        _require_text(self.sync_token, f"SyncToken for {self.entity} delete")
        return self

    @classmethod
    def of(cls, entity: str, payload: dict[str, Any]) -> "DeleteOperation":
        """Build a delete for an entity payload previously read from the API."""
        return cls(entity=entity, id=payload.get("Id"), sync_token=payload.get("SyncToken"))

    @property
    def payload(self) -> dict[str, str]:
        return {"Id": str(self.id), "SyncToken": str(self.sync_token)}

    def to_wire(self) -> WireRequest:
        return WireRequest(
            method="POST",
            path=self.entity_path,
            params={"operation": "delete"},
            json_body=self.payload,
        )

    def decode(self, body: Any) -> dict[str, Any]:
        return _extract_entity(body, self.entity)

    def to_batch_item(self) -> dict[str, Any]:
        return {"operation": BatchOperationType.DELETE.value, self.entity: self.payload}

    def decode_batch(self, envelope: dict[str, Any]) -> dict[str, Any]:
        return _extract_entity(envelope, self.entity)


class QueryOperation(BatchableOperation):
    """
    Run a query statement: ``GET /query?query=...``.

    The query string (typically a ``WHERE ...`` / ``ORDER BY ...`` tail) is
    passed through verbatim after ``SELECT * FROM {entity}``.

    Example:
        >>> QueryOperation(entity="Invoice", query_string="WHERE TotalAmt > '100.00'",
        ...                max_results=10).statement
        "SELECT * FROM Invoice WHERE TotalAmt > '100.00' MAXRESULTS 10"
    """

    query_string: str = Field(default="", description="Statement tail after the FROM clause")
    max_results: Optional[int] = Field(default=None, description="MAXRESULTS value")
    start_position: Optional[int] = Field(default=None, description="STARTPOSITION value (1-based)")

    @model_validator(mode="after")
    def validate_paging(self) -> "QueryOperation":
        if self.max_results is not None and not 1 <= self.max_results <= MAX_QUERY_RESULTS:
            raise QBOValidationError(
                f"max_results must be between 1 and {MAX_QUERY_RESULTS}, got {self.max_results}"
            )
        if self.start_position is not None and self.start_position < 1:
            raise QBOValidationError(f"start_position must be >= 1, got {self.start_position}")
        return self

    @property
    def statement(self) -> str:
        parts = [f"SELECT * FROM {self.entity}"]
        if self.query_string.strip():
            parts.append(self.query_string.strip())
        if self.start_position is not None:
            parts.append(f"STARTPOSITION {self.start_position}")
        if self.max_results is not None:
            parts.append(f"MAXRESULTS {self.max_results}")
        return " ".join(parts)

    def to_wire(self) -> WireRequest:
        return WireRequest(method="GET", path="query", params={"query": self.statement})

    def decode(self, body: Any) -> QueryResultSet:
        query_response = body.get("QueryResponse") if isinstance(body, dict) else None
        return QueryResultSet.from_query_response(self.entity, query_response)

    def to_batch_item(self) -> dict[str, Any]:
        return {"Query": self.statement}

    def decode_batch(self, envelope: dict[str, Any]) -> QueryResultSet:
        return QueryResultSet.from_query_response(self.entity, envelope.get("QueryResponse"))

    def describe(self) -> dict[str, Any]:
        return {"operation": "QueryOperation", "entity": self.entity, "query": self.statement}


class ReadOperation(EntityOperation):
    """Read one entity by Id: ``GET /{entity}/{id}``."""

    id: Optional[str] = Field(default=None, description="Entity Id")

    @model_validator(mode="after")
    def require_id(self) -> "ReadOperation":
        _require_text(self.id, f"Id for {self.entity} read")
        return self

    def to_wire(self) -> WireRequest:
        return WireRequest(method="GET", path=f"{self.entity_path}/{self.id}")

    def decode(self, body: Any) -> dict[str, Any]:
        return _extract_entity(body, self.entity)


class ReportOperation(Operation):
    """Fetch a report: ``GET /reports/{report_name}``; returns the raw report document."""

    report_name: str = Field(description="Report endpoint name, e.g. 'BalanceSheet'")
    params: dict[str, str] = Field(default_factory=dict, description="Report query parameters")

    @model_validator(mode="after")
    def validate_params(self) -> "ReportOperation":
        _require_text(self.report_name, "Report name")
        unknown = unknown_report_params(self.report_name, self.params)
        if unknown:
            raise QBOValidationError(
                f"Report {self.report_name} does not accept parameters: {', '.join(unknown)}"
            )
        return self

    def to_wire(self) -> WireRequest:
        return WireRequest(method="GET", path=f"reports/{self.report_name}", params=dict(self.params))

    def describe(self) -> dict[str, Any]:
        return {"operation": "ReportOperation", "report": self.report_name}


class SendOperation(EntityOperation):
    """Email a transaction through QuickBooks: ``POST /{entity}/{id}/send``."""

    id: Optional[str] = Field(default=None, description="Entity Id")
    email: Optional[str] = Field(default=None, description="Recipient; defaults to the address on file")

    @model_validator(mode="after")
    def require_id(self) -> "SendOperation":
        _require_text(self.id, f"Id for {self.entity} send")
        return self

    def to_wire(self) -> WireRequest:
        params = {"sendTo": self.email} if self.email else {}
        return WireRequest(
            method="POST",
            path=f"{self.entity_path}/{self.id}/send",
            params=params,
            content_type="application/octet-stream",
        )

    def decode(self, body: Any) -> dict[str, Any]:
        return _extract_entity(body, self.entity)


class PdfOperation(EntityOperation):
    """Download a transaction as PDF: ``GET /{entity}/{id}/pdf``; returns bytes."""

    expects_binary: ClassVar[bool] = True

    id: Optional[str] = Field(default=None, description="Entity Id")

    @model_validator(mode="after")
    def require_id(self) -> "PdfOperation":
        _require_text(self.id, f"Id for {self.entity} pdf")
        return self

    def to_wire(self) -> WireRequest:
        return WireRequest(
            method="GET",
            path=f"{self.entity_path}/{self.id}/pdf",
            accept="application/pdf",
        )


class UploadOperation(Operation):
    """
    Upload a file as an Attachable: multipart ``POST /upload``.

    ``metadata`` is the Attachable body (for example an ``AttachableRef`` linking
    the file to an invoice); ``FileName`` and ``ContentType`` are filled in.
    """

    file_name: str = Field(description="File name reported to QuickBooks")
    content: bytes = Field(description="Raw file content")
    content_type: Optional[str] = Field(default=None, description="MIME type; guessed from file_name")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Attachable body")

    @model_validator(mode="after")
    def require_file(self) -> "UploadOperation":
        _require_text(self.file_name, "Attachment file name")
        if not self.content:
            raise QBOValidationError(f"Attachment {self.file_name} has no content")
        return self

    @property
    def resolved_content_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.file_name)
        return guessed or "application/octet-stream"

    def to_wire(self) -> WireRequest:
        content_type = self.resolved_content_type
        metadata = {**self.metadata, "FileName": self.file_name, "ContentType": content_type}
        return WireRequest(
            method="POST",
            path="upload",
            files={
                "file_metadata_01": (None, json.dumps(metadata).encode("utf-8"), "application/json"),
                "file_content_01": (self.file_name, self.content, content_type),
            },
            content_type="multipart/form-data",
        )

    def decode(self, body: Any) -> dict[str, Any]:
        responses = body.get("AttachableResponse") if isinstance(body, dict) else None
        if not isinstance(responses, list) or not responses or not isinstance(responses[0], dict):
            raise QBOBadRequest(
                Fault(
                    type="UploadFault",
                    errors=[FaultError(message="No attachable returned for upload", element=self.file_name)],
                )
            )
        first = responses[0]
        fault = Fault.from_body(first)
        if fault is not None:
            raise QBOBadRequest(fault)
        return first.get("Attachable", {})

    def describe(self) -> dict[str, Any]:
        return {"operation": "UploadOperation", "file_name": self.file_name, "size": len(self.content)}
