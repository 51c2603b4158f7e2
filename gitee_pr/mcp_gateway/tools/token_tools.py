"""Access-token tool for the Gitee PR gateway."""

from datetime import datetime, timezone
from typing import Any

from gitee_pr.core.types import Instance
from gitee_pr.mcp_gateway.instances import InstanceRegistry
from gitee_pr.mcp_gateway.token_cache import TokenCache
from gitee_pr.mcp_gateway.tools.helpers import (
    repo_property,
    tool_descriptor,
    tool_result,
    with_project,
)


class TokenTools:
    def __init__(
        self,
        registry: InstanceRegistry,
        token_cache: TokenCache,
        project_name: str | None = None,
    ) -> None:
        self.registry = registry
        self.token_cache = token_cache
        self.project_name = project_name

    def descriptor(self, public_name: str) -> dict[str, Any]:
        repos = "\n".join(f"  - {i.key}: {i.full_name}" for i in self.registry)
        description = (
            "Get a Gitee access token for a specific repository.\n\n"
            f"Available repositories:\n{repos}"
        )
        repo_schema, repo_required = repo_property(self.registry)
        return tool_descriptor(
            public_name,
            with_project(description, self.project_name),
            repo_schema,
            required=repo_required,
        )

    async def token(self, instance: Instance | None, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return the cached bearer token, refreshing it when close to expiry."""
        assert instance is not None
        _ = arguments
        access_token = await self.token_cache.get_token(instance)
        expires_at = self.token_cache.expires_at(instance.key)
        payload = {
            "success": True,
            "repo": instance.key,
            "access_token": access_token,
            "expires_at": (
                datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()
                if expires_at is not None
                else None
            ),
            "message": "Access token retrieved successfully",
        }
        return tool_result(payload)
