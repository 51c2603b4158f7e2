"""Instance registry for the Gitee PR gateway."""

import re
from collections.abc import Iterable, Iterator

from gitee_pr.core.errors import InstanceNotFoundError, ValidationError
from gitee_pr.core.types import Instance

_DISALLOWED_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_BRANCH_DISPLAY = re.compile(r"branch\s*\(.*\)", re.IGNORECASE | re.DOTALL)


def derive_instance_key(repo: str) -> str:
    """Stable key for a repository id: disallowed characters become ``-``."""
    return _DISALLOWED_KEY_CHARS.sub("-", repo.strip())


def format_branch_name(branch_name: str) -> str:
    """Cosmetic ``branch (<name>)`` form used in tool descriptions.

    Names already in that form are returned trimmed but otherwise unchanged,
    so applying this twice is the same as applying it once.
    """
    trimmed = branch_name.strip()
    if _BRANCH_DISPLAY.fullmatch(trimmed):
        return trimmed
    return f"branch ({trimmed})"


class InstanceRegistry:
    """Immutable set of configured repository instances, keyed by instance key."""

    def __init__(self, instances: Iterable[Instance]) -> None:
        self._instances: dict[str, Instance] = {}
        for instance in instances:
            if instance.key in self._instances:
                raise ValueError(f"Duplicate repository key: {instance.key}")
            self._instances[instance.key] = instance

    def __len__(self) -> int:
        return len(self._instances)

    def __iter__(self) -> Iterator[Instance]:
        return iter(self._instances.values())

    def keys(self) -> list[str]:
        return list(self._instances)

    @property
    def is_multi_instance(self) -> bool:
        return len(self._instances) > 1

    def default_instance(self) -> Instance | None:
        """The only instance in single-instance mode, else None."""
        if len(self._instances) != 1:
            return None
        return next(iter(self._instances.values()))

    def resolve(self, repo_key: str) -> Instance:
        instance = self._instances.get(repo_key)
        if instance is None:
            raise InstanceNotFoundError(repo_key)
        return instance

    def resolve_for_call(self, repo_arg: object) -> Instance:
        """Pick the target instance for a tool call from its ``repo`` argument."""
        if repo_arg is not None and not isinstance(repo_arg, str):
            raise ValidationError("Invalid repo parameter. Must be a string")

        repo_key = (repo_arg or "").strip()
        if repo_key:
            return self.resolve(repo_key)

        default = self.default_instance()
        if default is None:
            if not self._instances:
                raise ValidationError("No repositories are configured")
            raise ValidationError(
                f"Missing repo parameter. Available values: {', '.join(self.keys())}"
            )
        return default
