"""Operation-log tools for the Gitee PR gateway."""

import logging
from typing import Any

from gitee_pr.core.errors import ValidationError
from gitee_pr.core.types import Instance
from gitee_pr.logger.operation_log import OperationLog
from gitee_pr.mcp_gateway.tools.helpers import (
    int_argument,
    tool_descriptor,
    tool_result,
    with_project,
)

_log_tools_log = logging.getLogger("gitee_pr.mcp_gateway.tools")

DEFAULT_LOGS_LIMIT = 50
MAX_LOGS_LIMIT = 1000


class LogTools:
    """Read the operation log and attach its file sink."""

    def __init__(self, operation_log: OperationLog, project_name: str | None = None) -> None:
        self.operation_log = operation_log
        self.project_name = project_name

    def logs_descriptor(self, public_name: str) -> dict[str, Any]:
        return tool_descriptor(
            public_name,
            with_project("Get operation logs (newest first)", self.project_name),
            {
                "limit": {
                    "type": "integer",
                    "description": f"Limit count, 1-{MAX_LOGS_LIMIT}, default {DEFAULT_LOGS_LIMIT}",
                    "minimum": 1,
                    "maximum": MAX_LOGS_LIMIT,
                },
                "offset": {
                    "type": "integer",
                    "description": "Offset, default 0",
                    "minimum": 0,
                },
            },
        )

    def set_log_dir_descriptor(self, public_name: str) -> dict[str, Any]:
        return tool_descriptor(
            public_name,
            with_project(
                "Set the log directory path for storing operation logs.\n\n"
                "Required when LOG_DIR is not set.\n\n"
                'Example: {"log_dir": "./logs"}',
                self.project_name,
            ),
            {
                "log_dir": {
                    "type": "string",
                    "description": 'Path to the log directory (e.g. "/var/log/gitee-pr")',
                }
            },
            required=["log_dir"],
        )

    async def logs(self, instance: Instance | None, arguments: dict[str, Any]) -> dict[str, Any]:
        _ = instance
        limit = int_argument(arguments, "limit", DEFAULT_LOGS_LIMIT, 1, MAX_LOGS_LIMIT)
        offset = int_argument(arguments, "offset", 0, 0)
        entries = self.operation_log.entries(limit=limit, offset=offset)
        return tool_result(
            {
                "total": self.operation_log.total,
                "limit": limit,
                "offset": offset,
                "logs": [entry.to_dict() for entry in entries],
            }
        )

    async def set_log_dir(
        self, instance: Instance | None, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        _ = instance
        log_dir = arguments.get("log_dir")
        if not isinstance(log_dir, str) or not log_dir.strip():
            raise ValidationError("log_dir parameter must be a non-empty string")
        try:
            resolved = self.operation_log.set_log_dir(log_dir.strip())
        except OSError as e:
            raise ValidationError(f"Cannot use log directory {log_dir!r}: {e}") from e
        _log_tools_log.info("log_dir_set path=%s", resolved, extra={"log_dir": resolved})
        return tool_result(
            {
                "success": True,
                "log_dir": resolved,
                "message": f"Log directory set to: {resolved}",
            }
        )
