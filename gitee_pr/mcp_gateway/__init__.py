"""Gitee PR MCP Gateway - stdio JSON-RPC server for pull-request workflows."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gitee_pr.mcp_gateway.server import GiteePRGateway


def __getattr__(name: str) -> Any:
    if name == "GiteePRGateway":
        from gitee_pr.mcp_gateway.server import GiteePRGateway

        return GiteePRGateway
    raise AttributeError(f"module 'gitee_pr.mcp_gateway' has no attribute '{name}'")


__all__ = ["GiteePRGateway"]
