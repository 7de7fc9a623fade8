"""Credential loading for the exchange router."""

from __future__ import annotations

import os
import re
from typing import Mapping

import keyring
from keyring.errors import KeyringError

from market_client.auth import ApiCredentials

DEFAULT_SERVICE_NAME = "staking-monitor"
DEFAULT_API_KEY_ENV = "STAKING_MONITOR_API_KEY"
DEFAULT_API_SECRET_ENV = "STAKING_MONITOR_API_SECRET"
DEFAULT_API_KEY_USERNAME = "api_key"
DEFAULT_API_SECRET_USERNAME = "api_secret"
_ENV_PATTERN = re.compile(r"^\$\{([A-Z0-9_]+)\}$")


def load_api_credentials(
    service_name: str,
    config: Mapping[str, object] | None = None,
    *,
    api_key_env: str = DEFAULT_API_KEY_ENV,
    api_secret_env: str = DEFAULT_API_SECRET_ENV,
) -> ApiCredentials:
    """Resolve credentials from config, then env vars, then the OS keyring."""
    api_key = _resolve_value(config, "api_key") or _clean_value(os.getenv(api_key_env))
    api_secret = _resolve_value(config, "api_secret") or _clean_value(
        os.getenv(api_secret_env)
    )
    if not api_key:
        api_key = _get_keyring_value(service_name, DEFAULT_API_KEY_USERNAME)
    if not api_secret:
        api_secret = _get_keyring_value(service_name, DEFAULT_API_SECRET_USERNAME)

    if not api_key or not api_secret:
        raise ValueError(
            "API credentials are missing. Provide api_key/api_secret in the config, "
            f"set {api_key_env}/{api_secret_env}, or store them in the keychain "
            f"for service '{service_name}'."
        )
    return ApiCredentials(api_key=api_key, api_secret=api_secret)


def store_api_credentials(service_name: str, api_key: str, api_secret: str) -> None:
    """Store credentials in the OS keychain."""
    api_key_value = _clean_value(api_key)
    api_secret_value = _clean_value(api_secret)
    if not api_key_value or not api_secret_value:
        raise ValueError("api_key and api_secret must be non-empty strings.")
    try:
        keyring.set_password(service_name, DEFAULT_API_KEY_USERNAME, api_key_value)
        keyring.set_password(service_name, DEFAULT_API_SECRET_USERNAME, api_secret_value)
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to store credentials in the OS keychain. "
            "Ensure a keyring backend is available."
        ) from exc


def _resolve_value(config: Mapping[str, object] | None, key: str) -> str | None:
    if not config or config.get(key) is None:
        return None
    raw = str(config[key]).strip()
    match = _ENV_PATTERN.match(raw)
    if match:
        return _clean_value(os.getenv(match.group(1)))
    return _clean_value(raw)


def _clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _get_keyring_value(service_name: str, username: str) -> str | None:
    try:
        return _clean_value(keyring.get_password(service_name, username))
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to access the OS keychain. Ensure a keyring backend is available."
        ) from exc
