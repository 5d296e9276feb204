"""
Uniform success/error envelope returned by every public provider operation.
"""

from typing import Any, Literal

from pydantic import BaseModel


class ReturnValue(BaseModel):
    """Discriminated result: either status 'success' with a result, or 'error' with a message."""

    status: Literal["success", "error"]
    result: Any = None
    message: str | None = None
    detail: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_response(self) -> dict:
        """Serialize for the engine, dropping fields that don't belong to the variant."""
        if self.ok:
            return {"status": self.status, "result": self.result}
        body = {"status": self.status, "message": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


def success_value(result: Any = None) -> ReturnValue:
    return ReturnValue(status="success", result=result)


def error_value(message: str, detail: Any = None) -> ReturnValue:
    return ReturnValue(status="error", message=message, detail=detail)


def timeout_detail(**extra: Any) -> dict:
    """Detail payload marking an error as a timeout."""
    return {"kind": "timeout", **extra}
