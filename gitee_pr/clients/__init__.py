"""Upstream API clients."""

from gitee_pr.clients.base import UpstreamClient
from gitee_pr.clients.gitee import GiteeClient

__all__ = ["GiteeClient", "UpstreamClient"]
