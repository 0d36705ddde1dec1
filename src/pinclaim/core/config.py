"""
Configuration management for PinClaim.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


@dataclass(frozen=True)
class Config:
    """Service configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    env: str = "development"

    # Secret store
    pin_max_attempts: int = 5
    pin_hash_iterations: int = 100_000

    # Claim lifetime (seconds)
    default_ttl_seconds: int = 86_400
    min_ttl_seconds: int = 1
    max_ttl_seconds: int = 30 * 86_400

    # Amounts
    supported_assets: tuple[str, ...] = ("NATIVE",)
    amount_decimals: int = 7  # Stellar stroop precision

    # Ledger retries
    ledger_max_attempts: int = 3
    ledger_backoff_min: float = 0.5
    ledger_backoff_max: float = 8.0

    # Timeout per gateway call in seconds
    request_timeout: float = 30.0

    # Per-claim redemption lock
    lock_ttl: int = 120
    lock_retry_count: int = 20
    lock_retry_delay: float = 0.25

    # Background sweep
    sweep_interval: float = 60.0
    pending_grace_seconds: int = 300

    # Notification content
    claim_base_url: str = "http://localhost:3000"
    app_name: str = "PinClaim"
    default_country_code: str = "1"

    # Stellar
    horizon_url: str = "https://horizon-testnet.stellar.org"
    network_passphrase: str = "Test SDF Network ; September 2015"
    escrow_secret: str | None = None

    # Administrative endpoints; disabled while unset
    admin_api_key: str | None = None

    # Twilio
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None

    def __post_init__(self) -> None:
        if self.pin_max_attempts < 1:
            raise ValueError("pin_max_attempts must be at least 1")
        if self.pin_hash_iterations < 1:
            raise ValueError("pin_hash_iterations must be positive")
        if self.min_ttl_seconds < 1:
            raise ValueError("min_ttl_seconds must be at least 1")
        if self.max_ttl_seconds < self.min_ttl_seconds:
            raise ValueError("max_ttl_seconds must not be below min_ttl_seconds")
        if not self.min_ttl_seconds <= self.default_ttl_seconds <= self.max_ttl_seconds:
            raise ValueError("default_ttl_seconds must be within the TTL bounds")
        if self.ledger_max_attempts < 1:
            raise ValueError("ledger_max_attempts must be at least 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.lock_ttl <= self.settlement_budget:
            raise ValueError(
                f"lock_ttl must exceed the worst-case ledger settlement time "
                f"({self.settlement_budget:g}s for {self.ledger_max_attempts} attempts)"
            )
        if not self.supported_assets:
            raise ValueError("supported_assets must not be empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        storage_backend = overrides.get("storage_backend") or _get_env_var(
            "PINCLAIM_STORAGE_BACKEND", default="memory"
        )
        redis_url = overrides.get("redis_url") or _get_env_var("PINCLAIM_REDIS_URL")

        log_level = overrides.get("log_level") or _get_env_var(
            "PINCLAIM_LOG_LEVEL", default="INFO"
        )
        env = overrides.get("env") or _get_env_var("PINCLAIM_ENV", default="development")

        max_attempts = overrides.get("pin_max_attempts") or _get_env_var(
            "PINCLAIM_PIN_MAX_ATTEMPTS", default=str(cls.pin_max_attempts)
        )
        default_ttl = overrides.get("default_ttl_seconds") or _get_env_var(
            "PINCLAIM_DEFAULT_TTL", default=str(cls.default_ttl_seconds)
        )

        claim_base_url = overrides.get("claim_base_url") or _get_env_var(
            "APP_URL", default=cls.claim_base_url
        )

        values: dict[str, Any] = {
            "storage_backend": storage_backend,
            "redis_url": redis_url,
            "log_level": log_level,
            "env": env,
            "pin_max_attempts": int(max_attempts),  # type: ignore[arg-type]
            "default_ttl_seconds": int(default_ttl),  # type: ignore[arg-type]
            "claim_base_url": claim_base_url,
            "app_name": overrides.get("app_name")
            or _get_env_var("PINCLAIM_APP_NAME", default=cls.app_name),
            "horizon_url": overrides.get("horizon_url")
            or _get_env_var("HORIZON_URL", default=cls.horizon_url),
            "network_passphrase": overrides.get("network_passphrase")
            or _get_env_var("NETWORK_PASSPHRASE", default=cls.network_passphrase),
            "escrow_secret": overrides.get("escrow_secret")
            or _get_env_var("PINCLAIM_ESCROW_SECRET"),
            "default_country_code": overrides.get("default_country_code")
            or _get_env_var("PINCLAIM_DEFAULT_COUNTRY_CODE", default=cls.default_country_code),
            "admin_api_key": overrides.get("admin_api_key")
            or _get_env_var("PINCLAIM_ADMIN_API_KEY"),
            "twilio_account_sid": overrides.get("twilio_account_sid")
            or _get_env_var("TWILIO_ACCOUNT_SID"),
            "twilio_auth_token": overrides.get("twilio_auth_token")
            or _get_env_var("TWILIO_AUTH_TOKEN"),
            "twilio_from_number": overrides.get("twilio_from_number")
            or _get_env_var("TWILIO_PHONE_NUMBER"),
        }

        # Remaining overrides are passed through untouched
        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key in known and key not in values:
                values[key] = value

        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    def masked_escrow_secret(self) -> str:
        """Return the escrow secret with most characters masked for safe logging."""
        if not self.escrow_secret or len(self.escrow_secret) <= 8:
            return "****"
        return self.escrow_secret[:4] + "..." + self.escrow_secret[-4:]

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @property
    def settlement_budget(self) -> float:
        """Longest a release or refund can take: every attempt timing out plus the backoff between them."""
        return (
            self.ledger_max_attempts * self.request_timeout
            + (self.ledger_max_attempts - 1) * self.ledger_backoff_max
        )
