"""Envelope builders used by the routers."""

from typing import Any, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from contracts.schemas.envelope import Envelope, OffsetPagination


def ok(
    data: Any = None,
    message: Optional[str] = None,
    pagination: Optional[OffsetPagination] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    envelope = Envelope(success=True, data=data, message=message, pagination=pagination)
    return JSONResponse(status_code=status_code, content=envelope.to_wire())


def created(data: Any = None, message: Optional[str] = None) -> JSONResponse:
    return ok(data, message=message, status_code=status.HTTP_201_CREATED)
