"""Gitee REST v5 client: OAuth password grant plus authenticated JSON calls."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from gitee_pr import __version__
from gitee_pr.clients.base import UpstreamClient
from gitee_pr.core.constants import (
    API_PREFIX,
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    TOKEN_PATH,
)
from gitee_pr.core.errors import UpstreamError
from gitee_pr.core.retry import retry_with_backoff
from gitee_pr.core.types import OAuthCredentials, TokenGrant, UpstreamResponse

_client_log = logging.getLogger("gitee_pr.clients.gitee")

USER_AGENT = f"gitee-pr-mcp/{__version__}"


class GiteeClient(UpstreamClient):
    """Blocking Gitee API client; async callers run it via ``asyncio.to_thread``."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        token_attempts: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token_attempts = token_attempts

    def fetch_token(self, credentials: OAuthCredentials) -> TokenGrant:
        """Exchange username/password credentials for a bearer token."""
        form = {
            "grant_type": "password",
            "username": credentials.username,
            "password": credentials.password,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "scope": credentials.scope,
        }
        _client_log.info(
            "oauth_token_request username=%s client_id=%s scope=%s",
            credentials.redacted()["username"],
            credentials.redacted()["client_id"],
            credentials.scope,
        )

        started = time.monotonic()

        def _post() -> requests.Response:
            # Retries share one timeout budget.
            remaining = self.timeout - (time.monotonic() - started)
            return self.session.post(
                f"{self.base_url}{TOKEN_PATH}",
                data=form,
                headers={"User-Agent": USER_AGENT},
                timeout=remaining,
            )

        try:
            response = retry_with_backoff(
                _post,
                max_attempts=self.token_attempts,
                operation="oauth_token",
                max_elapsed=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(0, f"Request failed: {e}") from e

        payload = _decode_json(response)
        if not _is_success(response.status_code):
            message = _error_message(payload)
            _client_log.warning(
                "oauth_token_failed status=%s error=%s",
                response.status_code,
                message,
                extra={"status_code": response.status_code},
            )
            raise UpstreamError(response.status_code, message, payload)

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise UpstreamError(
                response.status_code, "Token response did not contain access_token", payload
            )

        return TokenGrant(
            access_token=str(payload["access_token"]),
            expires_in=_lifetime(payload.get("expires_in")),
        )

    def request(
        self,
        method: str,
        path: str,
        token: str,
        payload: dict[str, Any] | None = None,
    ) -> UpstreamResponse:
        """Call ``{base_url}/api/v5{path}`` with the token as a query parameter.

        A 2xx response with an empty body yields ``data=None``.
        """
        url = f"{self.base_url}{API_PREFIX}{path}"
        headers = {
            "Content-Type": "application/json;charset=UTF-8",
            "User-Agent": USER_AGENT,
        }
        try:
            response = self.session.request(
                method,
                url,
                params={"access_token": token},
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(0, f"Request failed: {e}") from e

        success = _is_success(response.status_code)
        if success and not response.text.strip():
            return UpstreamResponse(status_code=response.status_code, data=None)

        data = _decode_json(response)
        if not success:
            message = _error_message(data)
            _client_log.warning(
                "gitee_request_failed method=%s path=%s status=%s error=%s",
                method,
                path,
                response.status_code,
                message,
                extra={"status_code": response.status_code, "path": path},
            )
            raise UpstreamError(response.status_code, message, data)

        return UpstreamResponse(
            status_code=response.status_code,
            data=data,
        )


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _decode_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(
            response.status_code,
            f"Failed to parse response: {e}",
            {"rawResponse": response.text},
        ) from e


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error_description", "message", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    return "Unknown error"


def _lifetime(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit() and int(value) > 0:
        return int(value)
    return DEFAULT_TOKEN_LIFETIME_SECONDS
