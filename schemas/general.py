from typing import Any, Optional

from pydantic import BaseModel


class ApiResponse(BaseModel):
    """Envelope shared by every endpoint: callers branch on `success` alone."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body = ApiResponse(success=True, data=data, message=message).model_dump()
    if body["message"] is None:
        body.pop("message")
    body.pop("error")
    return body


def fail(error: str, message: Optional[str] = None) -> dict:
    body = ApiResponse(success=False, error=error, message=message or error).model_dump()
    body.pop("data")
    return body
