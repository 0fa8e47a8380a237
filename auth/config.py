"""Client authentication configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ClientConfig(BaseModel):
    """
    Authentication client configuration.

    Durations are in seconds: every timer the client runs is compared against
    server-issued epoch seconds.
    """

    # Remote API
    api_base_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL every API path is joined to",
    )
    csrf_handshake_path: str = Field(
        default="/sanctum/csrf-cookie",
        description="Path (on the API origin) that sets the XSRF-TOKEN cookie",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout",
        gt=0,
        le=120,
    )

    # Durable client state
    state_url: str | None = Field(
        default=None,
        description="Valkey URL for durable client state; in-memory when unset",
    )
    state_namespace: str = Field(
        default="socialclient",
        description="Key prefix isolating this client's durable state",
        min_length=1,
    )

    # Verification codes
    code_length: int = Field(
        default=6,
        description="Digits in every verification / 2FA code",
        ge=4,
        le=10,
    )
    default_resend_cooldown_seconds: int = Field(
        default=30,
        description="Cooldown used when the server gives no timing hint",
        ge=1,
        le=900,
    )

    # Age policy (server is the authority; this is the fast local check)
    minimum_age_years: int = Field(
        default=15,
        description="Minimum age accepted at registration / age verification",
        ge=0,
        le=21,
    )

    # Session lifecycle
    user_refresh_interval_seconds: int = Field(
        default=300,  # 5 minutes
        description="Background re-fetch of the current user while authenticated",
        ge=10,
    )
    user_poll_interval_seconds: int = Field(
        default=30,
        description="Poll for a token written by another process with no user loaded",
        ge=1,
    )

    # Retries for non-auth mutations
    mutation_retry_attempts: int = Field(
        default=3,
        description="Attempts for retryable mutations (device register/revoke)",
        ge=1,
        le=10,
    )
    mutation_retry_base_delay_seconds: float = Field(
        default=1.0,
        description="First backoff delay; doubles per attempt",
        ge=0,
        le=30,
    )

    @property
    def api_origin(self) -> str:
        """API base URL without the trailing /api segment."""
        base = self.api_base_url.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return base

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Build config from environment variables (loads .env first).

        Unset variables fall back to the field defaults.
        """
        load_dotenv()

        env_map = {
            "api_base_url": "SOCIAL_API_URL",
            "state_url": "SOCIAL_STATE_URL",
            "state_namespace": "SOCIAL_STATE_NAMESPACE",
            "request_timeout_seconds": "SOCIAL_REQUEST_TIMEOUT",
            "minimum_age_years": "SOCIAL_MINIMUM_AGE",
        }
        values = {}
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value
        return cls(**values)
