from dataclasses import dataclass
from typing import Any

from gitee_pr.core.constants import OAUTH_SCOPE


########################################################
########   Types for configured repositories   #########
########################################################
@dataclass(frozen=True)
class OAuthCredentials:
    username: str
    password: str
    client_id: str
    client_secret: str
    scope: str = OAUTH_SCOPE

    def redacted(self) -> dict[str, str]:
        return {
            "username": _mask(self.username, 10),
            "client_id": _mask(self.client_id, 8),
            "scope": self.scope,
        }


@dataclass(frozen=True)
class Instance:
    """One configured repository target with its own credentials and flags."""

    key: str
    owner: str
    repo: str
    head: str
    base: str
    credentials: OAuthCredentials
    assignees: str = ""
    testers: str = ""
    labels: str = ""
    auto_review: bool = False
    auto_test: bool = False
    auto_merge: bool = False
    head_display: str = ""
    base_display: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def to_dict(self) -> dict[str, Any]:
        """Public metadata only; credentials are never serialized."""
        return {
            "repo_name": self.key,
            "owner": self.owner,
            "repo": self.repo,
            "head": self.head_display,
            "base": self.base_display,
            "auto_review": self.auto_review,
            "auto_test": self.auto_test,
            "auto_merge": self.auto_merge,
        }


########################################################
########   Types for upstream API exchanges    #########
########################################################
@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: int


@dataclass
class UpstreamResponse:
    status_code: int
    data: Any = None


def _mask(value: str, keep: int) -> str:
    if not value:
        return "(not set)"
    if len(value) <= keep:
        return value[:2] + "***"
    return value[:keep] + "***"
