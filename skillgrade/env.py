from __future__ import annotations

import os

PREFIX = "SKILLGRADE_"


def env_name(name: str) -> str:
    """Return the fully-prefixed environment variable name for a setting."""
    return name if name.startswith(PREFIX) else f"{PREFIX}{name}"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Accepts either the bare setting name (``LOG_LEVEL``) or the prefixed one
    (``SKILLGRADE_LOG_LEVEL``); the lookup always uses the prefixed form.
    """
    value = os.getenv(env_name(name))
    if value is not None:
        return value
    return default
