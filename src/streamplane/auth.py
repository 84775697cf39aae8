"""OAuth2 client-credentials token source for the cloud API."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from azure.core import PipelineClient
from azure.core.credentials import AccessToken
from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.core.pipeline.policies import HeadersPolicy, RetryPolicy, UserAgentPolicy
from azure.core.rest import HttpRequest

logger = logging.getLogger(__name__)

# Refresh tokens this long before they expire
TOKEN_REFRESH_MARGIN_SECONDS = 300
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class ClientCredentialsProvider:
    """azure-core ``TokenCredential`` for the client-credentials grant.

    Tokens are cached and shared by every transport of the process; the lock
    keeps concurrent passes from fetching the same token twice.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str,
        audience: str,
        client: PipelineClient | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._audience = audience
        self._client = client or PipelineClient(
            base_url=token_url,
            policies=[
                HeadersPolicy({"Accept": "application/json"}),
                UserAgentPolicy(base_user_agent="streamplane"),
                RetryPolicy(retry_total=3),
            ],
        )
        self._lock = threading.Lock()
        self._token: AccessToken | None = None

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        """Return a cached token, fetching a new one when close to expiry.

        Scopes are ignored: the grant is bound to the configured audience.
        """
        with self._lock:
            now = int(time.time())
            if self._token is not None and self._token.expires_on - TOKEN_REFRESH_MARGIN_SECONDS > now:
                return self._token
            self._token = self._fetch(now)
            return self._token

    def _fetch(self, now: int) -> AccessToken:
        request = HttpRequest(
            "POST",
            self._token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "audience": self._audience,
            },
        )
        try:
            response = self._client.send_request(request)
        except AzureError as e:
            raise ClientAuthenticationError(message=f"token request failed: {e}") from e

        if response.status_code >= 400:
            raise ClientAuthenticationError(
                message=f"token request rejected with status {response.status_code}",
                response=response,
            )
        try:
            payload = response.json()
            token = payload["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise ClientAuthenticationError(message="token response has no access_token") from e

        lifetime = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        logger.info(
            "Obtained API token",
            extra={"audience": self._audience, "expires_in_seconds": lifetime},
        )
        return AccessToken(token, now + lifetime)

    def close(self) -> None:
        self._client.close()
