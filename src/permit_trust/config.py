# SPDX-License-Identifier: MPL-2.0
"""
Configuration module for Permit Trust.

Centralizes all configuration with environment variable support and
validation.  Settings are read once per process through :func:`get_settings`;
tests build their own :class:`Settings` directly or via :meth:`Settings.from_env`
with an explicit mapping.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Mapping, Optional

from permit_trust.core.exceptions import ConfigurationError

DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://localhost:8000"
DEFAULT_TRUSTED_HOSTS = "localhost,127.0.0.1"


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Process configuration."""

    env: str = "dev"  # dev|stage|prod
    signing_key_path: Optional[str] = None
    private_key_pem: Optional[str] = None
    max_credential_age_seconds: int = 86400
    uri_scheme: str = "peche"
    authority_url: Optional[str] = None
    request_timeout: float = 5.0
    store_path: str = "permit-store.db"
    cache_path: str = "verification-cache.db"
    log_level: str = "INFO"
    log_json: bool = False
    rate_limit: str = "100/minute"
    allowed_origins: List[str] = field(default_factory=lambda: _split(DEFAULT_ALLOWED_ORIGINS))
    trusted_hosts: List[str] = field(default_factory=lambda: _split(DEFAULT_TRUSTED_HOSTS))

    @property
    def max_credential_age_ms(self) -> int:
        return self.max_credential_age_seconds * 1000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Raises:
            ConfigurationError: If a numeric variable is not a valid number.
        """
        env = os.environ if environ is None else environ
        scheme = env.get("PERMIT_TRUST_URI_SCHEME", "peche").strip().lower()
        if not scheme.isalnum():
            raise ConfigurationError(f"PERMIT_TRUST_URI_SCHEME must be alphanumeric, got {scheme!r}")
        return cls(
            env=env.get("PERMIT_TRUST_ENV", "dev"),
            signing_key_path=env.get("PERMIT_TRUST_SIGNING_KEY_PATH") or None,
            private_key_pem=env.get("PERMIT_TRUST_PRIVATE_KEY") or None,
            max_credential_age_seconds=_int(env, "PERMIT_TRUST_MAX_CREDENTIAL_AGE_SECONDS", 86400),
            uri_scheme=scheme,
            authority_url=env.get("PERMIT_TRUST_AUTHORITY_URL") or None,
            request_timeout=_float(env, "PERMIT_TRUST_REQUEST_TIMEOUT", 5.0),
            store_path=env.get("PERMIT_TRUST_STORE_PATH", "permit-store.db"),
            cache_path=env.get("PERMIT_TRUST_CACHE_PATH", "verification-cache.db"),
            log_level=env.get("PERMIT_TRUST_LOG_LEVEL", "INFO").upper(),
            log_json=_bool(env, "PERMIT_TRUST_LOG_JSON", False),
            rate_limit=env.get("PERMIT_TRUST_RATE_LIMIT", "100/minute"),
            allowed_origins=_split(env.get("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS)),
            trusted_hosts=_split(env.get("TRUSTED_HOSTS", DEFAULT_TRUSTED_HOSTS)),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read from the environment once."""
    return Settings.from_env()
