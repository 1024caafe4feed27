from __future__ import annotations

import pytest

from modelbridge.errors import ConfigurationError
from modelbridge.security.api_keys import load_api_key


def test_explicit_key_wins(monkeypatch) -> None:
    monkeypatch.setenv("ACME_API_KEY", "from-env")
    assert load_api_key("explicit", env_var="ACME_API_KEY", description="Acme") == "explicit"


def test_environment_fallback(monkeypatch) -> None:
    monkeypatch.setenv("ACME_API_KEY", "from-env")
    assert load_api_key(None, env_var="ACME_API_KEY", description="Acme") == "from-env"


def test_missing_key_names_both_sources(monkeypatch) -> None:
    monkeypatch.delenv("ACME_API_KEY", raising=False)
    with pytest.raises(ConfigurationError) as excinfo:
        load_api_key(None, env_var="ACME_API_KEY", description="Acme")
    message = str(excinfo.value)
    assert "api_key" in message
    assert "ACME_API_KEY" in message


def test_empty_keys_are_errors(monkeypatch) -> None:
    with pytest.raises(ConfigurationError):
        load_api_key("  ", env_var="ACME_API_KEY", description="Acme")
    monkeypatch.setenv("ACME_API_KEY", "")
    with pytest.raises(ConfigurationError):
        load_api_key(None, env_var="ACME_API_KEY", description="Acme")
