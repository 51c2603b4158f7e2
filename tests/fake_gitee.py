import threading
from typing import Any

from gitee_pr.clients.base import UpstreamClient
from gitee_pr.core.errors import UpstreamError
from gitee_pr.core.types import Instance, OAuthCredentials, TokenGrant, UpstreamResponse
from gitee_pr.mcp_gateway.instances import format_branch_name


def make_instance(key: str = "widgets", **overrides: Any) -> Instance:
    fields: dict[str, Any] = {
        "key": key,
        "owner": "acme",
        "repo": key,
        "head": "feature",
        "base": "master",
        "credentials": OAuthCredentials(
            username="octo@example.com",
            password="hunter2",
            client_id="client-id-123456",
            client_secret="client-secret",
        ),
    }
    fields.update(overrides)
    fields.setdefault("head_display", format_branch_name(fields["head"]))
    fields.setdefault("base_display", format_branch_name(fields["base"]))
    return Instance(**fields)


class FakeGiteeClient(UpstreamClient):
    """In-memory upstream: counts token exchanges and records API calls.

    ``responses`` maps ``(method, path)`` to an ``UpstreamResponse`` or an
    exception to raise. Unmapped create calls return PR #7; other unmapped
    calls return ``{"ok": True}``.
    """

    def __init__(
        self,
        expires_in: int = 3600,
        token_error: Exception | None = None,
        responses: dict[tuple[str, str], Any] | None = None,
        token_gate: threading.Event | None = None,
    ) -> None:
        self.expires_in = expires_in
        self.token_error = token_error
        self.responses = responses or {}
        self.token_gate = token_gate
        self.token_calls = 0
        self.requests: list[tuple[str, str, str, dict[str, Any] | None]] = []
        self._lock = threading.Lock()

    def fetch_token(self, credentials: OAuthCredentials) -> TokenGrant:
        with self._lock:
            self.token_calls += 1
            call_number = self.token_calls
        if self.token_gate is not None:
            self.token_gate.wait(timeout=5)
        if self.token_error is not None:
            raise self.token_error
        return TokenGrant(access_token=f"tok-{call_number}", expires_in=self.expires_in)

    def request(
        self,
        method: str,
        path: str,
        token: str,
        payload: dict[str, Any] | None = None,
    ) -> UpstreamResponse:
        self.requests.append((method, path, token, payload))
        outcome = self.responses.get((method, path))
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        if method == "POST" and path.endswith("/pulls"):
            return UpstreamResponse(
                status_code=201,
                data={
                    "number": 7,
                    "title": (payload or {}).get("title"),
                    "html_url": "https://gitee.com/acme/widgets/pulls/7",
                },
            )
        return UpstreamResponse(status_code=200, data={"ok": True})

    def paths(self) -> list[str]:
        return [path for _, path, _, _ in self.requests]


def upstream_failure(status_code: int, message: str) -> UpstreamError:
    return UpstreamError(status_code, message, {"message": message})
