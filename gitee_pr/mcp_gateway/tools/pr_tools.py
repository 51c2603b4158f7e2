"""Pull-request tool for the Gitee PR gateway."""

from typing import Any

from gitee_pr.core.types import Instance
from gitee_pr.mcp_gateway.instances import InstanceRegistry
from gitee_pr.mcp_gateway.tools.helpers import (
    repo_property,
    tool_descriptor,
    tool_result,
    with_project,
)
from gitee_pr.mcp_gateway.workflow import WorkflowOrchestrator


class PRTools:
    """Create a pull request and run the configured review/test/merge steps."""

    def __init__(
        self,
        registry: InstanceRegistry,
        orchestrator: WorkflowOrchestrator,
        project_name: str | None = None,
    ) -> None:
        self.registry = registry
        self.orchestrator = orchestrator
        self.project_name = project_name

    def descriptor(self, public_name: str) -> dict[str, Any]:
        repos = "\n".join(
            f"  - {instance.key}: {instance.full_name} "
            f"({instance.head_display} -> {instance.base_display})"
            for instance in self.registry
        )
        description = (
            "Create a Pull Request on Gitee.\n\n"
            f"Available repositories:\n{repos}\n\n"
            "Review, test and merge run automatically when enabled for the repository."
        )
        repo_schema, repo_required = repo_property(self.registry)
        return tool_descriptor(
            public_name,
            with_project(description, self.project_name),
            {
                "title": {"type": "string", "description": "Pull Request title (required)"},
                "body": {
                    "type": "string",
                    "description": "Pull Request description/body (optional)",
                },
                "draft": {
                    "type": "boolean",
                    "description": "Whether this is a draft PR (optional, default: false)",
                },
                **repo_schema,
            },
            required=["title", *repo_required],
        )

    async def pr(self, instance: Instance | None, arguments: dict[str, Any]) -> dict[str, Any]:
        assert instance is not None
        result = await self.orchestrator.run_pr(
            instance,
            arguments.get("title"),
            body=arguments.get("body"),
            draft=arguments.get("draft", False),
        )
        payload = result.to_dict()
        if result.success:
            return tool_result(payload, text=result.message())
        return tool_result(payload, is_error=True)
