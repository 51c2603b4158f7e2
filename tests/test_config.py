"""Tests for environment configuration loading."""

import json

import pytest

from gitee_pr.config import ConfigError, load_settings, parse_flag

CREDENTIAL_ENV = {
    "scope_username": "octo@example.com",
    "scope_password": "hunter2",
    "scope_client_id": "cid",
    "scope_client_secret": "secret",
}


def _single_env(**overrides: str) -> dict[str, str]:
    env = {
        "owner": "acme",
        "repo": "my.repo",
        "head": "dev",
        "base": "master",
        **CREDENTIAL_ENV,
    }
    env.update(overrides)
    return env


class TestSingleInstance:
    def test_loads_instance(self) -> None:
        settings = load_settings(
            _single_env(assignees="alice", labels="bug", AUTO_REVIEW="true", AUTO_MERGE="0")
        )

        (instance,) = settings.instances
        assert instance.key == "my-repo"
        assert instance.full_name == "acme/my.repo"
        assert instance.head == "dev"
        assert instance.head_display == "branch (dev)"
        assert instance.assignees == "alice"
        assert instance.labels == "bug"
        assert instance.auto_review is True
        assert instance.auto_merge is False
        assert instance.credentials.password == "hunter2"
        assert len(settings.instances) == 1

    def test_lists_every_missing_name(self) -> None:
        env = _single_env()
        del env["head"]
        del env["scope_password"]

        with pytest.raises(ConfigError) as info:
            load_settings(env)

        assert info.value.missing == ["head", "scope_password"]

    def test_globals(self) -> None:
        settings = load_settings(
            _single_env(
                TOOL_PREFIX="acme",
                PROJECT_NAME="Widgets",
                MCP_LOG_DIR="/tmp/gitee-logs",
                GITEE_BASE_URL="https://gitee.example",
                GITEE_TIMEOUT="12.5",
            )
        )

        assert settings.tool_prefix == "acme"
        assert settings.project_name == "Widgets"
        assert settings.log_dir == "/tmp/gitee-logs"
        assert settings.base_url == "https://gitee.example"
        assert settings.timeout == 12.5

    def test_log_dir_wins_over_alias(self) -> None:
        settings = load_settings(_single_env(LOG_DIR="/a", MCP_LOG_DIR="/b"))

        assert settings.log_dir == "/a"

    @pytest.mark.parametrize("timeout", ["soon", "0", "-1"])
    def test_invalid_timeout(self, timeout: str) -> None:
        with pytest.raises(ConfigError, match="GITEE_TIMEOUT"):
            load_settings(_single_env(GITEE_TIMEOUT=timeout))


class TestMultiInstance:
    def test_loads_entries_with_credential_fallback(self) -> None:
        entries = [
            {
                "OWNER": "acme",
                "REPO": "widgets",
                "HEAD": "dev",
                "BASE": "master",
                "LABELS": ["bug", "perf"],
                "AUTO_TEST": "yes",
                "AUTO_MERGE": True,
            },
            {
                "REPO_NAME": "gadgets.main",
                "OWNER": "acme",
                "REPO": "gadgets",
                "HEAD": "branch (dev)",
                "BASE": "main",
                "USERNAME": "other@example.com",
                "PASSWORD": "pw",
                "CLIENT_ID": "cid2",
                "CLIENT_SECRET": "secret2",
            },
        ]

        settings = load_settings({"MULTI_INSTANCE": json.dumps(entries), **CREDENTIAL_ENV})

        first, second = settings.instances
        assert first.key == "widgets"
        assert first.labels == "bug,perf"
        assert first.auto_test is True
        assert first.auto_merge is True
        assert first.credentials.username == "octo@example.com"
        assert second.key == "gadgets-main"
        assert second.head_display == "branch (dev)"
        assert second.credentials.username == "other@example.com"
        assert len(settings.instances) == 2

    def test_invalid_json(self) -> None:
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_settings({"MULTI_INSTANCE": "[{oops"})

    def test_must_be_array_of_objects(self) -> None:
        with pytest.raises(ConfigError):
            load_settings({"MULTI_INSTANCE": "{}"})
        with pytest.raises(ConfigError, match=r"MULTI_INSTANCE\[0\]"):
            load_settings({"MULTI_INSTANCE": "[1]"})

    def test_missing_fields_are_named(self) -> None:
        entries = [{"OWNER": "acme", "REPO": "widgets", "HEAD": "dev"}]

        with pytest.raises(ConfigError) as info:
            load_settings({"MULTI_INSTANCE": json.dumps(entries)})

        assert "MULTI_INSTANCE[0].BASE" in info.value.missing
        assert "MULTI_INSTANCE[0].PASSWORD (or scope_password)" in info.value.missing

    def test_duplicate_keys(self) -> None:
        entry = {"OWNER": "acme", "REPO": "widgets", "HEAD": "dev", "BASE": "master"}

        with pytest.raises(ConfigError, match="Duplicate"):
            load_settings({"MULTI_INSTANCE": json.dumps([entry, entry]), **CREDENTIAL_ENV})


class TestParseFlag:
    @pytest.mark.parametrize("value", [True, "true", "TRUE", "1", "yes", " on "])
    def test_truthy(self, value: object) -> None:
        assert parse_flag(value) is True

    @pytest.mark.parametrize("value", [False, None, "", "false", "0", "off", "nope"])
    def test_falsy(self, value: object) -> None:
        assert parse_flag(value) is False
