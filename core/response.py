"""
Unified response envelope: {code, message, data, error}.

Payment routes put their shopper-facing body in `data`
({success, ...} or {success: false, error}); `error` carries the
merchant/debug detail.
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def _utc_iso(ts: datetime) -> str:
    ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def _serialize_timestamp(self, timestamp: datetime) -> str:
        return _utc_iso(timestamp)


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    data: Any = None,
) -> Response:
    """Error envelope; `data` is the shopper-facing {success: false, error} body."""
    return Response(
        code=code,
        message=message,
        data=data,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
