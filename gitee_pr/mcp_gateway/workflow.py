"""Create → review → test → merge pull-request workflow.

Only the create step can fail the workflow. Review, test and merge run
independently: a failure is logged and recorded as a FAILED step outcome
without stopping the steps after it. Merge is additionally gated on the test
step when auto-test is enabled (see ``should_merge``).
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from gitee_pr.clients.base import UpstreamClient
from gitee_pr.core.errors import GatewayError, UpstreamError, ValidationError
from gitee_pr.core.types import Instance, UpstreamResponse
from gitee_pr.mcp_gateway.token_cache import TokenCache

_workflow_log = logging.getLogger("gitee_pr.mcp_gateway.workflow")

LABEL_MIN_LENGTH = 2
LABEL_MAX_LENGTH = 20
_LABEL_CHARS = re.compile(r"[a-zA-Z0-9_一-龥]+")


class StepStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepOutcome:
    status: StepStatus
    payload: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: Any) -> StepOutcome:
        return cls(StepStatus.OK, payload=payload)

    @classmethod
    def skipped(cls) -> StepOutcome:
        return cls(StepStatus.SKIPPED)

    @classmethod
    def failed(cls, error: str) -> StepOutcome:
        return cls(StepStatus.FAILED, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.OK


SKIPPED = StepOutcome.skipped()


def should_merge(auto_test: bool, test: StepOutcome) -> bool:
    """Merge gate: without auto-test always merge, otherwise only after a test outcome.

    An OK test step with an empty body still counts as a test outcome.
    """
    return (not auto_test) or test.succeeded


@dataclass
class WorkflowResult:
    success: bool
    title: str
    pull_request: Any = None
    review: StepOutcome = SKIPPED
    test: StepOutcome = SKIPPED
    merge: StepOutcome = SKIPPED
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    status_code: int | None = None
    response: Any = None

    @property
    def number(self) -> Any:
        if isinstance(self.pull_request, dict):
            return self.pull_request.get("number") or None
        return None

    @property
    def url(self) -> str | None:
        if isinstance(self.pull_request, dict):
            return self.pull_request.get("html_url") or self.pull_request.get("url") or None
        return None

    def message(self) -> str:
        if not self.success:
            return f"Failed to create Pull Request. Error: {self.error}"
        pr_title = self.title
        if isinstance(self.pull_request, dict) and self.pull_request.get("title"):
            pr_title = str(self.pull_request["title"])
        lines = [
            "Pull Request created successfully!",
            "",
            "PR Details:",
            f"- Number: #{self.number or 'N/A'}",
            f"- Title: {pr_title}",
            f"- URL: {self.url or 'N/A'}",
        ]
        for step_name, outcome in self._steps():
            if outcome.status is not StepStatus.SKIPPED:
                lines.append(f"- Auto {step_name}: {outcome.status.value}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            payload: dict[str, Any] = {
                "success": False,
                "error": f"Gitee Pull Request creation failed: {self.error}"
                + (f" (Status: {self.status_code})" if self.status_code else ""),
                "statusCode": self.status_code,
                "message": self.message(),
            }
            if self.response is not None:
                payload["response"] = self.response
            if self.warnings:
                payload["warnings"] = list(self.warnings)
            return payload

        return {
            "success": True,
            "pull_request": self.pull_request,
            "url": self.url,
            "number": self.number,
            "review": self.review.payload if self.review.succeeded else None,
            "test": self.test.payload if self.test.succeeded else None,
            "merge": self.merge.payload if self.merge.succeeded else None,
            "steps": {name: outcome.status.value for name, outcome in self._steps()},
            "step_errors": {
                name: outcome.error for name, outcome in self._steps() if outcome.error
            },
            "warnings": list(self.warnings),
            "message": self.message(),
        }

    def _steps(self) -> list[tuple[str, StepOutcome]]:
        return [("review", self.review), ("test", self.test), ("merge", self.merge)]


def split_names(raw: str | None) -> list[str]:
    """Comma-split, trim and drop empty entries."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def filter_labels(raw: str | None) -> tuple[list[str], list[str]]:
    """Return (valid labels, warnings for dropped labels)."""
    valid: list[str] = []
    warnings: list[str] = []
    for label in split_names(raw):
        if not LABEL_MIN_LENGTH <= len(label) <= LABEL_MAX_LENGTH:
            warnings.append(
                f'Invalid label "{label}" (length must be between '
                f"{LABEL_MIN_LENGTH} and {LABEL_MAX_LENGTH} characters)"
            )
            continue
        if not _LABEL_CHARS.fullmatch(label):
            warnings.append(
                f'Invalid label "{label}" (only letters, digits, underscore '
                "and Chinese characters are allowed)"
            )
            continue
        valid.append(label)
    return valid, warnings


def coerce_draft(value: Any) -> bool:
    return value is True or value == "true"


def build_create_payload(
    instance: Instance, title: str, body: Any, draft: Any
) -> tuple[dict[str, Any], list[str]]:
    """Request body for the create-PR call plus label warnings.

    Uses the raw branch names; the ``branch (...)`` display form is never sent.
    """
    payload: dict[str, Any] = {
        "title": title.strip(),
        "head": instance.head,
        "base": instance.base,
        "body": body if isinstance(body, str) else "",
        "draft": coerce_draft(draft),
    }
    assignees = split_names(instance.assignees)
    if assignees:
        payload["assignees"] = assignees
    testers = split_names(instance.testers)
    if testers:
        payload["testers"] = testers

    labels, warnings = filter_labels(instance.labels)
    if labels:
        payload["labels"] = labels
    elif warnings:
        warnings.append("No valid labels found after validation, skipping labels parameter")
    return payload, warnings


class WorkflowOrchestrator:
    """Runs the PR workflow for one instance against the upstream client."""

    def __init__(self, client: UpstreamClient, token_cache: TokenCache) -> None:
        self.client = client
        self.token_cache = token_cache

    async def run_pr(
        self,
        instance: Instance,
        title: Any,
        body: Any = None,
        draft: Any = False,
    ) -> WorkflowResult:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Missing or invalid title parameter")

        payload, warnings = build_create_payload(instance, title, body, draft)
        for warning in warnings:
            _workflow_log.warning("label_dropped repo=%s %s", instance.key, warning)

        pulls_path = f"/repos/{instance.owner}/{instance.repo}/pulls"
        try:
            created = await self._call(instance, "POST", pulls_path, payload)
        except UpstreamError as e:
            _workflow_log.warning(
                "pr_create_failed repo=%s status=%s error=%s",
                instance.key,
                e.status_code,
                e.message,
                extra={"repo": instance.key, "status_code": e.status_code},
            )
            return WorkflowResult(
                success=False,
                title=payload["title"],
                warnings=warnings,
                error=e.message,
                status_code=e.status_code or None,
                response=e.response,
            )

        result = WorkflowResult(
            success=True,
            title=payload["title"],
            pull_request=created.data,
            warnings=warnings,
        )
        number = result.number
        _workflow_log.info(
            "pr_created repo=%s number=%s", instance.key, number, extra={"repo": instance.key}
        )
        if number is None:
            return result

        if instance.auto_review:
            result.review = await self._step(
                instance, "review", "POST", f"{pulls_path}/{number}/review", {"force": False}
            )
        if instance.auto_test:
            result.test = await self._step(
                instance, "test", "POST", f"{pulls_path}/{number}/test", {"force": False}
            )
        if instance.auto_merge:
            if should_merge(instance.auto_test, result.test):
                result.merge = await self._step(
                    instance, "merge", "PUT", f"{pulls_path}/{number}/merge", None
                )
            else:
                _workflow_log.info(
                    "pr_merge_skipped repo=%s number=%s reason=test_step_failed",
                    instance.key,
                    number,
                )
        return result

    async def _step(
        self,
        instance: Instance,
        name: str,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
    ) -> StepOutcome:
        try:
            response = await self._call(instance, method, path, payload)
        except GatewayError as e:
            message = e.describe() if isinstance(e, UpstreamError) else e.message
            _workflow_log.warning(
                "auto_%s_failed repo=%s error=%s",
                name,
                instance.key,
                message,
                extra={"repo": instance.key, "step": name},
            )
            return StepOutcome.failed(message)
        return StepOutcome.ok(response.data)

    async def _call(
        self,
        instance: Instance,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
    ) -> UpstreamResponse:
        token = await self.token_cache.get_token(instance)
        return await asyncio.to_thread(self.client.request, method, path, token, payload)
