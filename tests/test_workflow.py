"""Tests for the create → review → test → merge workflow."""

import asyncio
from typing import Any

import pytest
from fake_gitee import FakeGiteeClient, make_instance, upstream_failure

from gitee_pr.core.errors import ValidationError
from gitee_pr.core.types import Instance, UpstreamResponse
from gitee_pr.mcp_gateway.token_cache import TokenCache
from gitee_pr.mcp_gateway.workflow import (
    SKIPPED,
    StepOutcome,
    StepStatus,
    WorkflowOrchestrator,
    WorkflowResult,
    coerce_draft,
    filter_labels,
    should_merge,
    split_names,
)

PULLS = "/repos/acme/widgets/pulls"


def _run(
    instance: Instance, client: FakeGiteeClient, title: Any = "Add feature", **kwargs: Any
) -> WorkflowResult:
    orchestrator = WorkflowOrchestrator(client, TokenCache(client))
    return asyncio.run(orchestrator.run_pr(instance, title, **kwargs))


class TestPreprocessing:
    def test_label_filter_example(self) -> None:
        labels, warnings = filter_labels("bug,performance,x,ab,toolongtoolongtoolongtoolong")

        assert labels == ["bug", "performance", "ab"]
        assert len(warnings) == 2
        assert '"x"' in warnings[0]

    def test_label_filter_character_set(self) -> None:
        labels, warnings = filter_labels("缺陷, needs-review ,ok_1")

        assert labels == ["缺陷", "ok_1"]
        assert len(warnings) == 1

    def test_split_names_drops_empties(self) -> None:
        assert split_names(" alice, ,bob ,") == ["alice", "bob"]
        assert split_names("") == []
        assert split_names(None) == []

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(True, True), ("true", True), (False, False), ("True", False), ("yes", False), (1, False)],
    )
    def test_draft_coercion(self, value: Any, expected: bool) -> None:
        assert coerce_draft(value) is expected


class TestMergeGate:
    def test_merges_without_auto_test(self) -> None:
        assert should_merge(False, SKIPPED) is True

    def test_merges_after_test_outcome_even_without_body(self) -> None:
        assert should_merge(True, StepOutcome.ok(None)) is True

    def test_blocks_when_test_failed(self) -> None:
        assert should_merge(True, StepOutcome.failed("boom")) is False


class TestWorkflowOrchestrator:
    def test_blank_title_makes_no_upstream_call(self) -> None:
        client = FakeGiteeClient()

        for title in ("", "   ", None, 5):
            with pytest.raises(ValidationError, match="title"):
                _run(make_instance(), client, title=title)

        assert client.requests == []
        assert client.token_calls == 0

    def test_create_payload(self) -> None:
        client = FakeGiteeClient()
        instance = make_instance(
            assignees="alice, bob", testers="carol", labels="bug,x", head="dev", base="main"
        )

        result = _run(instance, client, title="  Fix it  ", body="details", draft="true")

        method, path, token, payload = client.requests[0]
        assert (method, path, token) == ("POST", PULLS, "tok-1")
        assert payload == {
            "title": "Fix it",
            "head": "dev",
            "base": "main",
            "body": "details",
            "draft": True,
            "assignees": ["alice", "bob"],
            "testers": ["carol"],
            "labels": ["bug"],
        }
        assert result.success is True
        assert len(result.warnings) == 1

    def test_optional_fields_omitted_when_empty(self) -> None:
        client = FakeGiteeClient()

        _run(make_instance(labels="x"), client)

        payload = client.requests[0][3]
        assert payload is not None
        assert "assignees" not in payload
        assert "testers" not in payload
        assert "labels" not in payload
        assert payload["body"] == ""
        assert payload["draft"] is False

    def test_all_steps_run_in_order(self) -> None:
        client = FakeGiteeClient()
        instance = make_instance(auto_review=True, auto_test=True, auto_merge=True)

        result = _run(instance, client)

        assert client.paths() == [
            PULLS,
            f"{PULLS}/7/review",
            f"{PULLS}/7/test",
            f"{PULLS}/7/merge",
        ]
        assert [m for m, _, _, _ in client.requests] == ["POST", "POST", "POST", "PUT"]
        assert client.requests[1][3] == {"force": False}
        assert client.requests[3][3] is None
        assert client.token_calls == 1

        data = result.to_dict()
        assert data["success"] is True
        assert data["number"] == 7
        assert data["url"] == "https://gitee.com/acme/widgets/pulls/7"
        assert data["steps"] == {"review": "ok", "test": "ok", "merge": "ok"}
        assert data["merge"] == {"ok": True}

    def test_flags_off_only_create(self) -> None:
        client = FakeGiteeClient()

        result = _run(make_instance(), client)

        assert client.paths() == [PULLS]
        assert result.to_dict()["review"] is None
        assert result.to_dict()["steps"] == {
            "review": "skipped",
            "test": "skipped",
            "merge": "skipped",
        }

    def test_failed_test_blocks_merge(self) -> None:
        client = FakeGiteeClient(
            responses={("POST", f"{PULLS}/7/test"): upstream_failure(400, "No test pipeline")}
        )
        instance = make_instance(auto_test=True, auto_merge=True)

        result = _run(instance, client)

        assert f"{PULLS}/7/merge" not in client.paths()
        assert result.success is True
        assert result.test.status is StepStatus.FAILED
        assert result.merge.status is StepStatus.SKIPPED
        assert result.to_dict()["step_errors"] == {"test": "No test pipeline (Status: 400)"}

    def test_merge_without_auto_test(self) -> None:
        client = FakeGiteeClient()

        result = _run(make_instance(auto_merge=True), client)

        assert client.paths() == [PULLS, f"{PULLS}/7/merge"]
        assert result.merge.succeeded

    def test_empty_test_body_still_allows_merge(self) -> None:
        client = FakeGiteeClient(
            responses={("POST", f"{PULLS}/7/test"): UpstreamResponse(status_code=204, data=None)}
        )

        result = _run(make_instance(auto_test=True, auto_merge=True), client)

        assert f"{PULLS}/7/merge" in client.paths()
        assert result.to_dict()["test"] is None
        assert result.test.status is StepStatus.OK

    def test_review_failure_does_not_stop_later_steps(self) -> None:
        client = FakeGiteeClient(
            responses={("POST", f"{PULLS}/7/review"): upstream_failure(403, "Forbidden")}
        )
        instance = make_instance(auto_review=True, auto_test=True, auto_merge=True)

        result = _run(instance, client)

        assert client.paths()[-1] == f"{PULLS}/7/merge"
        assert result.review.status is StepStatus.FAILED
        assert result.merge.succeeded

    def test_create_failure_is_structured(self) -> None:
        client = FakeGiteeClient(
            responses={("POST", PULLS): upstream_failure(422, "Head branch does not exist")}
        )

        result = _run(make_instance(auto_review=True, auto_merge=True), client)

        assert client.paths() == [PULLS]
        data = result.to_dict()
        assert data["success"] is False
        assert data["statusCode"] == 422
        assert data["error"].endswith("Head branch does not exist (Status: 422)")
        assert data["response"] == {"message": "Head branch does not exist"}

    def test_missing_number_skips_follow_up_steps(self) -> None:
        client = FakeGiteeClient(
            responses={("POST", PULLS): UpstreamResponse(status_code=201, data={"title": "t"})}
        )

        result = _run(make_instance(auto_review=True, auto_merge=True), client)

        assert client.paths() == [PULLS]
        assert result.success is True
        assert result.number is None

    def test_summary_message(self) -> None:
        result = _run(make_instance(auto_review=True), FakeGiteeClient())

        message = result.message()
        assert "Pull Request created successfully!" in message
        assert "#7" in message
        assert "Auto review: ok" in message
