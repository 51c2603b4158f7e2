"""Error taxonomy mapped onto fixed JSON-RPC error codes."""

from typing import Any

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND

UPSTREAM_ERROR = -32003
INSTANCE_NOT_FOUND = -32004


class GatewayError(Exception):
    """Base class for failures that surface as JSON-RPC error envelopes."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            error["data"] = self.data
        return error


class ProtocolError(GatewayError):
    code = INVALID_REQUEST


class MethodNotFoundError(GatewayError):
    code = METHOD_NOT_FOUND


class ValidationError(GatewayError):
    code = INVALID_PARAMS


class InternalError(GatewayError):
    code = INTERNAL_ERROR


class InstanceNotFoundError(GatewayError):
    code = INSTANCE_NOT_FOUND

    def __init__(self, repo_key: str) -> None:
        super().__init__(f"Repository not found: {repo_key}", data={"repo": repo_key})
        self.repo_key = repo_key


class UpstreamError(GatewayError):
    """Non-2xx, unparsable or failed response from the Gitee API."""

    code = UPSTREAM_ERROR

    def __init__(self, status_code: int, message: str, response: Any = None) -> None:
        super().__init__(message, data={"statusCode": status_code})
        self.status_code = status_code
        self.response = response

    def describe(self) -> str:
        if self.status_code:
            return f"{self.message} (Status: {self.status_code})"
        return self.message
