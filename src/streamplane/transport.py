"""Transport to the control-plane and data-plane REST APIs.

The reconciliation core only needs ``invoke(method, request)`` and
``get_operation(id)``. ``RestTransport`` implements both on an azure-core
``PipelineClient``: one long-lived, thread-safe client per endpoint,
built once at start-up and handed to controllers. Blocking HTTP calls run in
the default executor so a pass can still be cancelled while waiting.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.core.pipeline import PipelineRequest, PipelineResponse
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    HTTPPolicy,
    NetworkTraceLoggingPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest

from .errors import InvalidRequestError, UnreachableError, translate_http_error

logger = logging.getLogger(__name__)

USER_AGENT = "streamplane"
RATE_LIMIT_HEADER = "ratelimit"

# The API advertises a per-minute limit; allow a sixth of it as burst
RATE_LIMIT_PERIOD_SECONDS = 60.0
RATE_LIMIT_BURST_PERIOD_SECONDS = 10.0
MAX_RATE_LIMIT_WAIT_SECONDS = 120


class Transport(Protocol):
    """Authenticated remote-procedure channel consumed by controllers."""

    async def invoke(self, method: str, request: Mapping[str, Any]) -> dict[str, Any]: ...

    async def get_operation(self, operation_id: str) -> dict[str, Any]: ...


# =============================================================================
# Routes
# =============================================================================

_PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_.]+)\}")


@dataclass(frozen=True)
class Route:
    """How one API method maps onto an HTTP call.

    Placeholders in ``path`` are filled from the request (dotted keys reach
    into nested members). ``body`` names the request member sent as JSON
    body, or ``"*"`` for everything the path did not consume. Remaining
    members become query parameters.
    """

    http_method: str
    path: str
    body: str | None = None

    def render(self, request: Mapping[str, Any]) -> tuple[str, dict[str, str], Any]:
        consumed: set[str] = set()

        def substitute(match: re.Match[str]) -> str:
            key = match.group(1)
            value = _lookup(request, key)
            if value in (None, ""):
                raise InvalidRequestError(f"{self.path} requires {key}")
            consumed.add(key)
            return quote(str(value), safe="")

        path = _PLACEHOLDER.sub(substitute, self.path)
        remaining = {k: v for k, v in request.items() if k not in consumed}

        body: Any = None
        if self.body == "*":
            body, remaining = remaining, {}
        elif self.body is not None:
            body = remaining.pop(self.body, None)
        return path, _query_params(remaining), body


def _lookup(request: Mapping[str, Any], dotted: str) -> Any:
    current: Any = request
    for part in dotted.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _query_params(values: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in values.items():
        name = f"{prefix}{key}"
        if value is None:
            continue
        if isinstance(value, Mapping):
            params.update(_query_params(value, f"{name}."))
        elif isinstance(value, list | tuple):
            params[name] = ",".join(str(item) for item in value)
        elif isinstance(value, bool):
            params[name] = "true" if value else "false"
        else:
            params[name] = str(value)
    return params


ROUTES: dict[str, Route] = {
    # Control plane
    "GetOperation": Route("GET", "/v1/operations/{id}"),
    "CreateResourceGroup": Route("POST", "/v1/resource-groups", body="resource_group"),
    "GetResourceGroup": Route("GET", "/v1/resource-groups/{id}"),
    "DeleteResourceGroup": Route("DELETE", "/v1/resource-groups/{id}"),
    "CreateCluster": Route("POST", "/v1/clusters", body="cluster"),
    "GetCluster": Route("GET", "/v1/clusters/{id}"),
    "UpdateCluster": Route("PATCH", "/v1/clusters/{cluster.id}", body="cluster"),
    "DeleteCluster": Route("DELETE", "/v1/clusters/{id}"),
    "CreateNetwork": Route("POST", "/v1/networks", body="network"),
    "GetNetwork": Route("GET", "/v1/networks/{id}"),
    "DeleteNetwork": Route("DELETE", "/v1/networks/{id}"),
    # Data plane
    "CreateTopic": Route("POST", "/v1/topics", body="topic"),
    "ListTopics": Route("GET", "/v1/topics"),
    "GetTopicConfigurations": Route("GET", "/v1/topics/{topic_name}/configurations"),
    "UpdateTopicConfigurations": Route(
        "PATCH", "/v1/topics/{topic_name}/configurations", body="configurations"
    ),
    "SetTopicPartitions": Route("PUT", "/v1/topics/{topic_name}/partitions", body="*"),
    "DeleteTopic": Route("DELETE", "/v1/topics/{topic_name}"),
    "CreateUser": Route("POST", "/v1/users", body="user"),
    "ListUsers": Route("GET", "/v1/users"),
    "UpdateUser": Route("PUT", "/v1/users/{user.name}", body="user"),
    "DeleteUser": Route("DELETE", "/v1/users/{name}"),
    "CreateACL": Route("POST", "/v1/acls", body="*"),
    "ListACLs": Route("GET", "/v1/acls"),
    "DeleteACLs": Route("DELETE", "/v1/acls"),
    "CreateSchemaRegistryACL": Route("POST", "/v1/schema-registry/acls", body="*"),
    "ListSchemaRegistryACLs": Route("GET", "/v1/schema-registry/acls"),
    "DeleteSchemaRegistryACLs": Route("DELETE", "/v1/schema-registry/acls", body="*"),
}

_ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


# =============================================================================
# Rate limiting
# =============================================================================


@dataclass(frozen=True)
class RateLimit:
    """Parsed ``ratelimit`` response header."""

    limit: int = 0
    remaining: int = 0
    reset_seconds: int = 0


def parse_rate_limit(header: str | None) -> RateLimit | None:
    """Parse ``limit=N,remaining=N,reset=N``; unknown keys are ignored.

    Raises:
        ValueError: A known key carries a non-integer value.
    """
    if not header:
        return None
    values: dict[str, int] = {}
    for part in header.split(","):
        key, sep, raw = part.strip().partition("=")
        if not sep or key not in ("limit", "remaining", "reset"):
            continue
        try:
            values[key] = int(raw)
        except ValueError as e:
            raise ValueError(f"invalid {key} value in rate limit header: {raw!r}") from e
    return RateLimit(
        limit=values.get("limit", 0),
        remaining=values.get("remaining", 0),
        reset_seconds=values.get("reset", 0),
    )


class RateLimitPolicy(HTTPPolicy):
    """Paces requests to the limit the API advertises.

    Requests are spaced by a token bucket sized from the advertised limit;
    once the API reports nothing remaining, the next request waits for the
    reset window.
    """

    def __init__(
        self,
        *,
        header: str = RATE_LIMIT_HEADER,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._header = header
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._rate = 0.0
        self._burst = 0.0
        self._tokens = 0.0
        self._updated = clock()
        self._blocked_until = 0.0

    def _acquire(self) -> None:
        with self._lock:
            now = self._clock()
            wait = max(0.0, self._blocked_until - now)
            if self._rate > 0:
                self._tokens = min(self._burst, self._tokens + (now - self._updated) * self._rate)
                self._updated = now
                if self._tokens < 1.0:
                    wait = max(wait, (1.0 - self._tokens) / self._rate)
                    self._tokens = 0.0
                else:
                    self._tokens -= 1.0
        if wait > 0:
            self._sleep(min(wait, MAX_RATE_LIMIT_WAIT_SECONDS))

    def _observe(self, limit: RateLimit) -> None:
        with self._lock:
            if limit.limit > 0:
                self._rate = limit.limit / RATE_LIMIT_PERIOD_SECONDS
                self._burst = max(1.0, limit.limit / RATE_LIMIT_BURST_PERIOD_SECONDS)
            if limit.remaining == 0 and limit.reset_seconds > 0:
                self._blocked_until = self._clock() + limit.reset_seconds + 1
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        "limit": limit.limit,
                        "remaining": limit.remaining,
                        "reset_seconds": limit.reset_seconds,
                    },
                )

    def send(self, request: PipelineRequest) -> PipelineResponse:
        self._acquire()
        response = self.next.send(request)
        try:
            limit = parse_rate_limit(response.http_response.headers.get(self._header))
        except ValueError as e:
            logger.warning("Ignoring malformed rate limit header", extra={"error": str(e)})
            return response
        if limit is not None:
            self._observe(limit)
        return response


# =============================================================================
# REST transport
# =============================================================================


class RestTransport:
    """``Transport`` over JSON/HTTP using azure-core."""

    def __init__(
        self,
        endpoint: str,
        credential: TokenCredential | None = None,
        *,
        scope: str = "",
        routes: Mapping[str, Route] = ROUTES,
        client: PipelineClient | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the transport.

        Args:
            endpoint: Base URL, e.g. https://api.redpanda.com.
            credential: Token source for bearer authentication.
            scope: Scope requested from the credential.
            routes: Method table.
            client: Pre-built pipeline client (tests).
            **kwargs: Passed to PipelineClient (e.g. ``transport``).
        """
        self.endpoint = endpoint.rstrip("/")
        self._routes = dict(routes)
        if client is None:
            policies: list[Any] = [
                HeadersPolicy({"Accept": "application/json"}),
                UserAgentPolicy(base_user_agent=USER_AGENT),
            ]
            if credential is not None:
                policies.append(BearerTokenCredentialPolicy(credential, scope))
            policies.extend([RateLimitPolicy(), NetworkTraceLoggingPolicy()])
            client = PipelineClient(base_url=self.endpoint, policies=policies, **kwargs)
        self._client = client

    def send(self, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        """Blocking call of ``method``; returns the decoded JSON response."""
        route = self._routes.get(method)
        if route is None:
            raise InvalidRequestError(f"unknown API method: {method}")
        path, params, body = route.render(request)
        http_request = HttpRequest(
            route.http_method,
            self._client.format_url(path),
            params=params or None,
            json=body,
        )

        logger.debug(
            "Calling API",
            extra={"method": method, "http_method": route.http_method, "path": path},
        )
        try:
            response = self._client.send_request(http_request)
        except ClientAuthenticationError:
            # Token acquisition failed; says nothing about the resource itself
            raise
        except AzureError as e:
            raise translate_http_error(e, method) from e

        if response.status_code >= 400:
            error_type = _ERROR_MAP.get(response.status_code, HttpResponseError)
            error = error_type(message=_error_message(response), response=response)
            raise translate_http_error(error, method) from error

        text = response.text()
        if not text:
            return {}
        try:
            decoded = response.json()
        except ValueError as e:
            raise InvalidRequestError(f"{method}: response is not valid JSON") from e
        return decoded if isinstance(decoded, dict) else {"items": decoded}

    async def invoke(self, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.send, method, request))

    async def get_operation(self, operation_id: str) -> dict[str, Any]:
        return await self.invoke("GetOperation", {"id": operation_id})

    def close(self) -> None:
        self._client.close()


def _error_message(response: Any) -> str:
    """Best-effort human message from an error response body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            return f"{response.status_code} {message}"
    return f"{response.status_code} {response.text() or response.reason}"


class Clients:
    """Transports shared by every controller of a process.

    The control-plane transport is fixed; data-plane transports are created on
    first use per cluster URL and then reused.
    """

    def __init__(
        self,
        control_plane: Transport,
        dataplane_factory: Callable[[str], Transport],
    ) -> None:
        self.control_plane = control_plane
        self._factory = dataplane_factory
        self._dataplane: dict[str, Transport] = {}
        self._lock = threading.Lock()

    def dataplane(self, url: str) -> Transport:
        if not url:
            raise UnreachableError("no data plane URL is known for this resource")
        with self._lock:
            transport = self._dataplane.get(url)
            if transport is None:
                transport = self._factory(url)
                self._dataplane[url] = transport
            return transport

    def close(self) -> None:
        with self._lock:
            transports = [self.control_plane, *self._dataplane.values()]
            self._dataplane.clear()
        for transport in transports:
            close = getattr(transport, "close", None)
            if close is not None:
                close()
