"""Gitee pull-request MCP server: stdio JSON-RPC tools for PR workflows."""

__version__ = "1.0.0"

__all__ = ["__version__"]
