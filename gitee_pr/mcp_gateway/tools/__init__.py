"""Gitee PR gateway tool modules."""

from gitee_pr.mcp_gateway.tools.log_tools import LogTools
from gitee_pr.mcp_gateway.tools.pr_tools import PRTools
from gitee_pr.mcp_gateway.tools.registry import ToolRegistry, ToolSpec, prefixed_name
from gitee_pr.mcp_gateway.tools.token_tools import TokenTools

__all__ = [
    "PRTools",
    "TokenTools",
    "LogTools",
    "ToolRegistry",
    "ToolSpec",
    "prefixed_name",
]
