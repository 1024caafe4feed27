"""API key loading for provider construction."""

from __future__ import annotations

import os

from ..errors import ConfigurationError


def load_api_key(
    api_key: str | None,
    *,
    env_var: str,
    description: str,
    parameter_name: str = "api_key",
) -> str:
    """Return the explicit key, else the environment variable, else fail."""

    if api_key is not None:
        if not api_key.strip():
            raise ConfigurationError(f"{description} API key passed via '{parameter_name}' is empty.")
        return api_key
    value = os.environ.get(env_var)
    if value is None:
        raise ConfigurationError(
            f"{description} API key is missing. Pass it using the '{parameter_name}' "
            f"parameter or the {env_var} environment variable."
        )
    if not value.strip():
        raise ConfigurationError(f"{description} API key is empty in the {env_var} environment variable.")
    return value
