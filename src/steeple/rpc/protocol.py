"""JSON-RPC 2.0 envelopes and error codes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from steeple.directory.errors import (
    ConflictError,
    DirectoryError,
    ReadForbiddenError,
    ReadNotFoundError,
    ValidationError,
    WriteForbiddenError,
    WriteNotFoundError,
)

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
FORBIDDEN = -32003
NOT_FOUND = -32004
CONFLICT = -32009

CONFLICT_STATUS = 409

_CODES: dict[type[DirectoryError], int] = {
    ValidationError: INVALID_PARAMS,
    ReadForbiddenError: FORBIDDEN,
    ReadNotFoundError: NOT_FOUND,
    WriteForbiddenError: FORBIDDEN,
    WriteNotFoundError: NOT_FOUND,
    ConflictError: CONFLICT,
}

_MISSING = object()


class RpcError(Exception):
    """An error that maps directly onto a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_directory_error(cls, error: DirectoryError) -> RpcError:
        code = INVALID_PARAMS
        for error_type in type(error).__mro__:
            if error_type in _CODES:
                code = _CODES[error_type]
                break
        data = {"statusCode": CONFLICT_STATUS} if code == CONFLICT else None
        return cls(code, str(error), data)


@dataclass(frozen=True)
class RpcRequest:
    method: str
    params: Any = None
    id: Any = None
    is_notification: bool = False

    @classmethod
    def parse(cls, value: Any) -> RpcRequest | None:
        """Return a request, or None when the envelope is malformed."""
        if not isinstance(value, dict):
            return None
        if value.get("jsonrpc") != JSONRPC_VERSION:
            return None
        method = value.get("method")
        if not isinstance(method, str):
            return None
        request_id = value.get("id", _MISSING)
        if request_id is not _MISSING and request_id is not None:
            if isinstance(request_id, bool) or not isinstance(request_id, (str, int, float)):
                return None
        return cls(
            method=method,
            params=value.get("params"),
            id=None if request_id is _MISSING else request_id,
            is_notification=request_id is _MISSING,
        )


def success(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        body["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": body}


def is_conflict(response: dict[str, Any]) -> bool:
    data = (response.get("error") or {}).get("data")
    return isinstance(data, dict) and data.get("statusCode") == CONFLICT_STATUS
