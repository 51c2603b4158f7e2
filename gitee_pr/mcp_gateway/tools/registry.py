"""Explicit tool registry: tool ids mapped to handlers and advertised descriptors."""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from gitee_pr.core.errors import MethodNotFoundError
from gitee_pr.core.types import Instance

ToolHandler = Callable[[Instance | None, dict[str, Any]], Awaitable[dict[str, Any]]]


def prefixed_name(prefix: str | None, tool_id: str) -> str:
    return f"{prefix}_{tool_id}" if prefix else tool_id


@dataclass(frozen=True)
class ToolSpec:
    """One callable tool.

    ``name`` is the unprefixed tool id; ``descriptor`` is the advertised
    ``tools/list`` entry, already carrying the prefixed name.
    """

    name: str
    handler: ToolHandler
    descriptor: dict[str, Any]
    needs_instance: bool = False


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec], prefix: str | None = None) -> None:
        self.prefix = prefix or None
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool id: {spec.name}")
            advertised = spec.descriptor.get("name")
            if advertised != self.public_name(spec.name):
                raise ValueError(
                    f"Tool {spec.name!r} is advertised as {advertised!r}, "
                    f"expected {self.public_name(spec.name)!r}"
                )
            if "inputSchema" not in spec.descriptor:
                raise ValueError(f"Tool {spec.name!r} has no inputSchema")
            self._specs[spec.name] = spec

    def public_name(self, tool_id: str) -> str:
        return prefixed_name(self.prefix, tool_id)

    def descriptors(self) -> list[dict[str, Any]]:
        return [spec.descriptor for spec in self._specs.values()]

    def lookup(self, called_name: str) -> ToolSpec:
        """Find the tool for a called name, with or without the active prefix."""
        tool_id = called_name
        if self.prefix and called_name.startswith(f"{self.prefix}_"):
            tool_id = called_name[len(self.prefix) + 1 :]
        spec = self._specs.get(tool_id)
        if spec is None:
            raise MethodNotFoundError(f"Unknown tool: {called_name}")
        return spec
