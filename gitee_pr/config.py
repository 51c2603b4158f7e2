"""Environment-driven configuration for the Gitee PR gateway.

Two layouts are supported:

- ``MULTI_INSTANCE``: a JSON array of repository objects (``OWNER``, ``REPO``,
  ``HEAD``, ``BASE`` and optional ``REPO_NAME``, ``ASSIGNEES``, ``TESTERS``,
  ``LABELS``, ``AUTO_*`` flags and per-repository credentials);
- single instance: lowercase ``owner``/``repo``/``head``/``base`` variables.

Credentials missing from a repository object fall back to the process-level
``scope_username``, ``scope_password``, ``scope_client_id`` and
``scope_client_secret`` variables.
"""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from gitee_pr.core.constants import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from gitee_pr.core.types import Instance, OAuthCredentials
from gitee_pr.mcp_gateway.instances import derive_instance_key, format_branch_name

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_CREDENTIAL_FIELDS = (
    ("USERNAME", "scope_username"),
    ("PASSWORD", "scope_password"),
    ("CLIENT_ID", "scope_client_id"),
    ("CLIENT_SECRET", "scope_client_secret"),
)


class ConfigError(ValueError):
    """Configuration is missing or malformed."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


@dataclass(frozen=True)
class Settings:
    instances: tuple[Instance, ...]
    tool_prefix: str | None = None
    project_name: str | None = None
    log_dir: str | None = None
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT_SECONDS


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_STRINGS


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(item).strip() for item in value)
    return str(value).strip()


def _get(env: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = env.get(name)
        if value is not None and value.strip():
            return value.strip()
    return ""


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from the environment; raises ``ConfigError`` listing missing names."""
    if env is None:
        env = os.environ

    raw_multi = _get(env, "MULTI_INSTANCE")
    if raw_multi:
        instances = _load_multi_instance(raw_multi, env)
    else:
        instances = [_load_single_instance(env)]

    seen: set[str] = set()
    for instance in instances:
        if instance.key in seen:
            raise ConfigError(f"Duplicate repository key in MULTI_INSTANCE: {instance.key}")
        seen.add(instance.key)

    timeout_raw = _get(env, "GITEE_TIMEOUT")
    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError as e:
        raise ConfigError(f"GITEE_TIMEOUT must be a number, got {timeout_raw!r}") from e
    if timeout <= 0:
        raise ConfigError("GITEE_TIMEOUT must be positive")

    return Settings(
        instances=tuple(instances),
        tool_prefix=_get(env, "TOOL_PREFIX") or None,
        project_name=_get(env, "PROJECT_NAME") or None,
        log_dir=_get(env, "LOG_DIR", "MCP_LOG_DIR") or None,
        base_url=_get(env, "GITEE_BASE_URL") or DEFAULT_BASE_URL,
        timeout=timeout,
    )


def _load_multi_instance(raw: str, env: Mapping[str, str]) -> list[Instance]:
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"MULTI_INSTANCE is not valid JSON: {e}") from e
    if not isinstance(entries, list) or not entries:
        raise ConfigError("MULTI_INSTANCE must be a non-empty JSON array of objects")

    instances: list[Instance] = []
    missing: list[str] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"MULTI_INSTANCE[{index}] must be an object")
        entry_missing = [
            f"MULTI_INSTANCE[{index}].{name}"
            for name in ("OWNER", "REPO", "HEAD", "BASE")
            if not _text(entry.get(name))
        ]
        credentials: dict[str, str] = {}
        for field_name, fallback in _CREDENTIAL_FIELDS:
            value = _text(entry.get(field_name)) or _get(env, fallback)
            if not value:
                entry_missing.append(f"MULTI_INSTANCE[{index}].{field_name} (or {fallback})")
            credentials[field_name] = value
        if entry_missing:
            missing.extend(entry_missing)
            continue

        repo = _text(entry["REPO"])
        instances.append(
            _build_instance(
                key=derive_instance_key(_text(entry.get("REPO_NAME")) or repo),
                owner=_text(entry["OWNER"]),
                repo=repo,
                head=_text(entry["HEAD"]),
                base=_text(entry["BASE"]),
                credentials=credentials,
                assignees=_text(entry.get("ASSIGNEES")),
                testers=_text(entry.get("TESTERS")),
                labels=_text(entry.get("LABELS")),
                auto_review=parse_flag(entry.get("AUTO_REVIEW")),
                auto_test=parse_flag(entry.get("AUTO_TEST")),
                auto_merge=parse_flag(entry.get("AUTO_MERGE")),
            )
        )

    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}", missing)
    return instances


def _load_single_instance(env: Mapping[str, str]) -> Instance:
    values = {name: _get(env, name) for name in ("owner", "repo", "head", "base")}
    missing = [name for name, value in values.items() if not value]
    credentials: dict[str, str] = {}
    for field_name, env_name in _CREDENTIAL_FIELDS:
        credentials[field_name] = _get(env, env_name)
        if not credentials[field_name]:
            missing.append(env_name)
    if missing:
        raise ConfigError(
            "Missing required configuration: "
            f"{', '.join(missing)} (or set MULTI_INSTANCE)",
            missing,
        )

    return _build_instance(
        key=derive_instance_key(values["repo"]),
        owner=values["owner"],
        repo=values["repo"],
        head=values["head"],
        base=values["base"],
        credentials=credentials,
        assignees=_get(env, "assignees"),
        testers=_get(env, "testers"),
        labels=_get(env, "labels"),
        auto_review=parse_flag(env.get("AUTO_REVIEW")),
        auto_test=parse_flag(env.get("AUTO_TEST")),
        auto_merge=parse_flag(env.get("AUTO_MERGE")),
    )


def _build_instance(
    *, key: str, head: str, base: str, credentials: dict[str, str], **fields: Any
) -> Instance:
    return Instance(
        key=key,
        head=head,
        base=base,
        head_display=format_branch_name(head),
        base_display=format_branch_name(base),
        credentials=OAuthCredentials(
            username=credentials["USERNAME"],
            password=credentials["PASSWORD"],
            client_id=credentials["CLIENT_ID"],
            client_secret=credentials["CLIENT_SECRET"],
        ),
        **fields,
    )
