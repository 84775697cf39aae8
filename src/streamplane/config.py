"""Configuration management with validation.

All settings come from ``STREAMPLANE_*`` environment variables and are
validated when the Config is built, so a bad value fails at start-up rather
than halfway through a pass.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class CloudEnvironment(str, Enum):
    """Cloud API environments with their own endpoints."""

    PRODUCTION = "pro"
    PREPRODUCTION = "pre"
    INTEGRATION = "ign"
    DEVELOPMENT = "dev"


@dataclass(frozen=True)
class Endpoints:
    """API and token endpoints of one environment."""

    api_url: str
    token_url: str
    audience: str


ENDPOINTS: dict[CloudEnvironment, Endpoints] = {
    CloudEnvironment.PRODUCTION: Endpoints(
        "https://api.redpanda.com",
        "https://auth.prd.cloud.redpanda.com/oauth/token",
        "cloudv2-production.redpanda.cloud",
    ),
    CloudEnvironment.PREPRODUCTION: Endpoints(
        "https://api.ppd.cloud.redpanda.com",
        "https://preprod-cloudv2.us.auth0.com/oauth/token",
        "cloudv2-preprod.redpanda.cloud",
    ),
    CloudEnvironment.INTEGRATION: Endpoints(
        "https://api.ign.cloud.redpanda.com",
        "https://integration-cloudv2.us.auth0.com/oauth/token",
        "cloudv2-integration.redpanda.cloud",
    ),
    CloudEnvironment.DEVELOPMENT: Endpoints(
        "https://api.dev.cloud.redpanda.com",
        "https://dev-cloudv2.us.auth0.com/oauth/token",
        "cloudv2-dev.redpanda.cloud",
    ),
}


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_OPERATION_TIMEOUT_SECONDS = 180 * 60  # cluster creation can take hours
MIN_OPERATION_TIMEOUT_SECONDS = 1
MAX_OPERATION_TIMEOUT_SECONDS = 24 * 60 * 60

DEFAULT_READ_TIMEOUT_SECONDS = 300

DEFAULT_POLL_INTERVAL_SECONDS = 10
MAX_POLL_INTERVAL_SECONDS = 300

DEFAULT_RETRY_DELAY_SECONDS = 5
DEFAULT_RETRY_BACKOFF = 1.5
DEFAULT_MAX_RETRY_DELAY_SECONDS = 60

# Newly granted ACLs take a few seconds to become visible
DEFAULT_ACL_VERIFY_TIMEOUT_SECONDS = 30

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max desired-state file
MAX_STATE_FILE_SIZE_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    environment: CloudEnvironment = CloudEnvironment.PRODUCTION
    api_url: str = ""
    token_url: str = ""
    audience: str = ""

    # Credentials are only needed when talking to the API
    client_id: str = ""
    client_secret: str = ""

    # Timing
    create_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    update_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    delete_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS
    read_timeout_seconds: float = DEFAULT_READ_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    max_retry_delay_seconds: float = DEFAULT_MAX_RETRY_DELAY_SECONDS
    acl_verify_timeout_seconds: float = DEFAULT_ACL_VERIFY_TIMEOUT_SECONDS

    # Behavior
    strict_consistency: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        for label, value in (
            ("STREAMPLANE_CREATE_TIMEOUT", self.create_timeout_seconds),
            ("STREAMPLANE_UPDATE_TIMEOUT", self.update_timeout_seconds),
            ("STREAMPLANE_DELETE_TIMEOUT", self.delete_timeout_seconds),
            ("STREAMPLANE_READ_TIMEOUT", self.read_timeout_seconds),
        ):
            if not MIN_OPERATION_TIMEOUT_SECONDS <= value <= MAX_OPERATION_TIMEOUT_SECONDS:
                errors.append(
                    f"{label} must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                    f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
                )

        if not 0 < self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS:
            errors.append(
                f"STREAMPLANE_POLL_INTERVAL must be positive and at most "
                f"{MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if self.retry_delay_seconds < 0:
            errors.append("STREAMPLANE_RETRY_DELAY must not be negative")
        if self.retry_backoff < 1.0:
            errors.append("STREAMPLANE_RETRY_BACKOFF must be at least 1.0")
        if self.max_retry_delay_seconds < self.retry_delay_seconds:
            errors.append("STREAMPLANE_MAX_RETRY_DELAY must not be below STREAMPLANE_RETRY_DELAY")
        if self.acl_verify_timeout_seconds <= 0:
            errors.append("STREAMPLANE_ACL_VERIFY_TIMEOUT must be positive")

        if bool(self.client_id) != bool(self.client_secret):
            errors.append("STREAMPLANE_CLIENT_ID and STREAMPLANE_CLIENT_SECRET must be set together")

        for label, url in (("STREAMPLANE_API_URL", self.api_url), ("STREAMPLANE_TOKEN_URL", self.token_url)):
            if url and not url.startswith("https://"):
                errors.append(f"{label} must be an https URL: {url}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def endpoints(self) -> Endpoints:
        """Endpoints of the selected environment with any explicit overrides applied."""
        defaults = ENDPOINTS[self.environment]
        return Endpoints(
            api_url=self.api_url or defaults.api_url,
            token_url=self.token_url or defaults.token_url,
            audience=self.audience or defaults.audience,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            STREAMPLANE_ENVIRONMENT: One of pro, pre, ign, dev (default: pro)
            STREAMPLANE_API_URL / STREAMPLANE_TOKEN_URL / STREAMPLANE_AUDIENCE:
                Override the environment's endpoints
            STREAMPLANE_CLIENT_ID / STREAMPLANE_CLIENT_SECRET: API credentials
            STREAMPLANE_CREATE_TIMEOUT, STREAMPLANE_UPDATE_TIMEOUT,
            STREAMPLANE_DELETE_TIMEOUT: Per-operation budgets in seconds
                (default: 10800)
            STREAMPLANE_READ_TIMEOUT: Budget for reads in seconds (default: 300)
            STREAMPLANE_POLL_INTERVAL: Seconds between operation status queries
                (default: 10)
            STREAMPLANE_RETRY_DELAY: First wait after a transient failure (default: 5)
            STREAMPLANE_RETRY_BACKOFF: Multiplier per retry (default: 1.5)
            STREAMPLANE_MAX_RETRY_DELAY: Upper bound on the wait (default: 60)
            STREAMPLANE_ACL_VERIFY_TIMEOUT: ACL propagation window (default: 30)
            STREAMPLANE_STRICT_CONSISTENCY: Fail instead of warn when the state
                read after apply disagrees with the plan (default: false)
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_environment(value: str | None) -> CloudEnvironment:
            if not value:
                return CloudEnvironment.PRODUCTION
            try:
                return CloudEnvironment(value)
            except ValueError as e:
                valid = [env.value for env in CloudEnvironment]
                raise ConfigurationError(f"STREAMPLANE_ENVIRONMENT must be one of {valid}: {value}") from e

        return cls(
            environment=get_environment(os.environ.get("STREAMPLANE_ENVIRONMENT")),
            api_url=os.environ.get("STREAMPLANE_API_URL", ""),
            token_url=os.environ.get("STREAMPLANE_TOKEN_URL", ""),
            audience=os.environ.get("STREAMPLANE_AUDIENCE", ""),
            client_id=os.environ.get("STREAMPLANE_CLIENT_ID", ""),
            client_secret=os.environ.get("STREAMPLANE_CLIENT_SECRET", ""),
            create_timeout_seconds=get_float(
                "STREAMPLANE_CREATE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            update_timeout_seconds=get_float(
                "STREAMPLANE_UPDATE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            delete_timeout_seconds=get_float(
                "STREAMPLANE_DELETE_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            read_timeout_seconds=get_float("STREAMPLANE_READ_TIMEOUT", DEFAULT_READ_TIMEOUT_SECONDS),
            poll_interval_seconds=get_float(
                "STREAMPLANE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            retry_delay_seconds=get_float("STREAMPLANE_RETRY_DELAY", DEFAULT_RETRY_DELAY_SECONDS),
            retry_backoff=get_float("STREAMPLANE_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF),
            max_retry_delay_seconds=get_float(
                "STREAMPLANE_MAX_RETRY_DELAY", DEFAULT_MAX_RETRY_DELAY_SECONDS
            ),
            acl_verify_timeout_seconds=get_float(
                "STREAMPLANE_ACL_VERIFY_TIMEOUT", DEFAULT_ACL_VERIFY_TIMEOUT_SECONDS
            ),
            strict_consistency=get_bool("STREAMPLANE_STRICT_CONSISTENCY", False),
        )
