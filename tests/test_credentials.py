import pytest
from keyring.errors import KeyringError

import utils.credentials as credentials


@pytest.fixture
def no_keyring(monkeypatch):
    monkeypatch.setattr(credentials.keyring, "get_password", lambda service, username: None)


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv(credentials.DEFAULT_API_KEY_ENV, raising=False)
    monkeypatch.delenv(credentials.DEFAULT_API_SECRET_ENV, raising=False)


def test_config_values_win_over_env_and_keyring(monkeypatch):
    monkeypatch.setenv(credentials.DEFAULT_API_KEY_ENV, "env-key")
    monkeypatch.setenv(credentials.DEFAULT_API_SECRET_ENV, "env-secret")
    monkeypatch.setattr(
        credentials.keyring, "get_password", lambda service, username: f"ring-{username}"
    )

    resolved = credentials.load_api_credentials(
        "staking-monitor", {"api_key": " cfg-key ", "api_secret": "cfg-secret"}
    )

    assert resolved.api_key == "cfg-key"
    assert resolved.api_secret == "cfg-secret"


def test_env_placeholder_in_config_is_expanded(monkeypatch, no_keyring):
    monkeypatch.setenv("ROUTER_KEY", "placeholder-key")
    monkeypatch.setenv("ROUTER_SECRET", "placeholder-secret")

    resolved = credentials.load_api_credentials(
        "staking-monitor", {"api_key": "${ROUTER_KEY}", "api_secret": "${ROUTER_SECRET}"}
    )

    assert resolved.api_key == "placeholder-key"
    assert resolved.api_secret == "placeholder-secret"


def test_unset_placeholder_falls_through_to_keyring(monkeypatch, clean_env):
    monkeypatch.delenv("ROUTER_KEY", raising=False)
    requested = []

    def fake_get_password(service, username):
        requested.append((service, username))
        return f"ring-{username}"

    monkeypatch.setattr(credentials.keyring, "get_password", fake_get_password)

    resolved = credentials.load_api_credentials(
        "custom-service", {"api_key": "${ROUTER_KEY}", "api_secret": "cfg-secret"}
    )

    assert resolved.api_key == "ring-api_key"
    assert resolved.api_secret == "cfg-secret"
    assert requested == [("custom-service", "api_key")]


def test_custom_env_names(monkeypatch, no_keyring):
    monkeypatch.setenv("OTHER_KEY", "k")
    monkeypatch.setenv("OTHER_SECRET", "s")

    resolved = credentials.load_api_credentials(
        "staking-monitor", None, api_key_env="OTHER_KEY", api_secret_env="OTHER_SECRET"
    )

    assert (resolved.api_key, resolved.api_secret) == ("k", "s")


def test_missing_credentials_explain_every_source(clean_env, no_keyring):
    with pytest.raises(ValueError) as excinfo:
        credentials.load_api_credentials("staking-monitor", {})

    message = str(excinfo.value)
    assert credentials.DEFAULT_API_KEY_ENV in message
    assert "staking-monitor" in message


def test_keyring_backend_failure_is_a_runtime_error(monkeypatch, clean_env):
    def broken(service, username):
        raise KeyringError("no backend")

    monkeypatch.setattr(credentials.keyring, "get_password", broken)

    with pytest.raises(RuntimeError, match="keychain"):
        credentials.load_api_credentials("staking-monitor", {})


def test_store_credentials_trims_and_writes_both_entries(monkeypatch):
    calls = []
    monkeypatch.setattr(
        credentials.keyring,
        "set_password",
        lambda service, username, password: calls.append((service, username, password)),
    )

    credentials.store_api_credentials("staking-monitor", " key ", "secret")

    assert calls == [
        ("staking-monitor", "api_key", "key"),
        ("staking-monitor", "api_secret", "secret"),
    ]


def test_store_credentials_rejects_blank_values():
    with pytest.raises(ValueError):
        credentials.store_api_credentials("staking-monitor", "key", "   ")
