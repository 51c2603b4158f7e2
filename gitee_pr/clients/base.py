from abc import ABC, abstractmethod
from typing import Any

from gitee_pr.core.types import OAuthCredentials, TokenGrant, UpstreamResponse


class UpstreamClient(ABC):
    """
    Interface the token cache and workflow orchestrator consume. Implementations
    are blocking; the gateway moves each call onto a worker thread.
    """

    @abstractmethod
    def fetch_token(self, credentials: OAuthCredentials) -> TokenGrant:
        """Perform the OAuth password-grant exchange. Raises UpstreamError."""
        raise NotImplementedError

    @abstractmethod
    def request(
        self,
        method: str,
        path: str,
        token: str,
        payload: dict[str, Any] | None = None,
    ) -> UpstreamResponse:
        """Perform an authenticated REST call. Raises UpstreamError."""
        raise NotImplementedError
