"""
Result and fault models decoded from QuickBooks Online responses.

The API is inconsistent about key casing between endpoints (business faults
use ``Fault``/``Error``/``Message``, authentication faults use
``fault``/``error``/``message``), so faults are parsed from a key-normalised
copy of the body.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from qbkit.errors import QBOBadRequest

# QBO error codes that indicate throttling rather than a business fault
THROTTLE_FAULT_CODES = frozenset({"003001", "3001"})


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


class FaultError(BaseModel):
    """A single error entry inside a Fault."""

    code: str = Field(default="", description="QBO error code")
    message: str = Field(default="", description="Short error message")
    detail: str = Field(default="", description="Long form error detail")
    element: str = Field(default="", description="Offending element, if reported")

    @field_validator("code", "message", "detail", "element", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> str:
        """QBO occasionally returns numeric codes or nulls."""
        if v is None:
            return ""
        return str(v)


class Fault(BaseModel):
    """
    Structured business error returned by the API.

    Attributes:
        type: Fault category (ValidationFault, SystemFault, AUTHENTICATION, ...)
        errors: Individual error entries, first one is the primary cause
    """

    type: str = Field(default="", description="Fault category")
    errors: list[FaultError] = Field(default_factory=list, description="Error entries")

    @property
    def code(self) -> str:
        return self.errors[0].code if self.errors else ""

    @property
    def message(self) -> str:
        return self.errors[0].message if self.errors else ""

    @property
    def detail(self) -> str:
        return self.errors[0].detail if self.errors else ""

    @property
    def element(self) -> str:
        return self.errors[0].element if self.errors else ""

    def summary(self) -> str:
        """One-line description used as the exception message."""
        parts = [p for p in (self.type, self.code, self.message, self.detail) if p]
        return " | ".join(parts) or "Unknown fault"

    def is_throttle(self) -> bool:
        """Whether this fault reports remote throttling."""
        if self.type.lower() == "throttleexceeded":
            return True
        for error in self.errors:
            if error.code in THROTTLE_FAULT_CODES or "throttle" in error.message.lower():
                return True
        return False

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["Fault"]:
        """
        Build a Fault from the value of a ``Fault`` key.

        Args:
            raw: The fault object itself (not the enclosing body)

        Returns:
            Parsed Fault, or None if raw is not a fault object
        """
        if not isinstance(raw, dict):
            return None
        normalised = _lower_keys(raw)
        errors = normalised.get("error") or []
        if isinstance(errors, dict):
            errors = [errors]
        return cls(
            type=str(normalised.get("type") or ""),
            errors=[FaultError(**e) for e in errors if isinstance(e, dict)],
        )

    @classmethod
    def from_body(cls, body: Any) -> Optional["Fault"]:
        """
        Extract a Fault from a full response body, if one is present.

        Args:
            body: Decoded JSON response body

        Returns:
            Parsed Fault, or None when the body carries no fault
        """
        if not isinstance(body, dict):
            return None
        for key, value in body.items():
            if str(key).lower() == "fault":
                return cls.from_payload(value)
        return None


class QueryResultSet(BaseModel):
    """
    Entities returned by a query.

    An empty result is represented by an empty ``items`` list, never an error.
    """

    entity: str = Field(description="Queried entity name")
    items: list[dict[str, Any]] = Field(default_factory=list, description="Entity payloads")
    start_position: Optional[int] = Field(default=None, description="1-based offset of the page")
    max_results: Optional[int] = Field(default=None, description="Number of items in the page")
    total_count: Optional[int] = Field(default=None, description="Count for COUNT(*) queries")

    def __len__(self) -> int:
        return len(self.items)

    @classmethod
    def from_query_response(cls, entity: str, query_response: Optional[dict[str, Any]]) -> "QueryResultSet":
        """
        Decode the value of a ``QueryResponse`` key.

        Args:
            entity: Entity name the query selected from
            query_response: The ``QueryResponse`` object (may be None or empty)

        Raises:
            QBOBadRequest: If the object or its entries have the wrong shape
        """
        query_response = query_response or {}
        if not isinstance(query_response, dict):
            raise _malformed_query(entity, "QueryResponse is not an object")
        items = query_response.get(entity)
        if items is None:
            # Entity keys are PascalCase on the wire; tolerate casing drift.
            for key, value in query_response.items():
                if key.lower() == entity.lower() and isinstance(value, (list, dict)):
                    items = value
                    break
        if isinstance(items, dict):
            items = [items]
        if items is not None and (
            not isinstance(items, list) or not all(isinstance(item, dict) for item in items)
        ):
            raise _malformed_query(entity, f"{entity} entries are not objects")
        try:
            return cls(
                entity=entity,
                items=items or [],
                start_position=query_response.get("startPosition"),
                max_results=query_response.get("maxResults"),
                total_count=query_response.get("totalCount"),
            )
        except ValidationError as e:
            raise _malformed_query(entity, str(e)) from e


def _malformed_query(entity: str, detail: str) -> QBOBadRequest:
    return QBOBadRequest(
        Fault(
            type="QueryFault",
            errors=[FaultError(message="Malformed query response", detail=detail, element=entity)],
        )
    )
