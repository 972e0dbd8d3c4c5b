"""Standard response envelope shared by every endpoint."""

from datetime import datetime, timezone
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorAction(BaseModel):
    """Suggested client action attached to an error."""
    type: Literal["retry", "login", "contact_support"]
    label: str


class ErrorDetail(BaseModel):
    """One offending field of a validation failure."""
    field: str
    message: str
    value: Optional[str] = None


class ErrorBody(BaseModel):
    code: str
    message: str
    user_message: str
    retryable: bool = False
    actions: Optional[List[ErrorAction]] = None
    details: Optional[List[ErrorDetail]] = None


class OffsetPagination(BaseModel):
    offset: int = Field(ge=0)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    has_more: bool


class Envelope(BaseModel, Generic[T]):
    """``{success, data, message?, error?, timestamp, pagination?}``"""
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[ErrorBody] = None
    timestamp: datetime = Field(default_factory=utcnow)
    pagination: Optional[OffsetPagination] = None

    def to_wire(self) -> dict:
        """Serialize with optional envelope keys omitted when unset.

        ``data`` is always present (``null`` on failure); fields inside
        ``data`` keep their explicit nulls.
        """
        body: dict[str, Any] = {
            "success": self.success,
            "data": self.model_dump(mode="json", include={"data"})["data"],
            "timestamp": self.timestamp.isoformat(),
        }
        if self.message is not None:
            body["message"] = self.message
        if self.error is not None:
            body["error"] = self.error.model_dump(mode="json", exclude_none=True)
        if self.pagination is not None:
            body["pagination"] = self.pagination.model_dump(mode="json")
        return body


class MessageData(BaseModel):
    """Simple message payload."""
    message: str
