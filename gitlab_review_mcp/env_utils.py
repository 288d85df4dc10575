"""
Environment helpers shared by config loading and the HTTP transport.
"""
from __future__ import annotations

import os
from typing import Optional


def is_production_env() -> bool:
    """
    Prüft, ob die App im Production-Modus läuft.

    Returns True wenn ENVIRONMENT oder APP_ENV auf "production" steht
    (case-insensitive, nach lowercase + strip).
    """
    env_vars = [
        os.getenv("ENVIRONMENT", ""),
        os.getenv("APP_ENV", ""),
    ]

    for env_val in env_vars:
        if env_val.strip().lower() == "production":
            return True

    return False


def env_flag(name: str, default: str) -> bool:
    v = os.getenv(name, default).strip().lower()
    return v not in {"0", "false", "no", "off", ""}


def env_str(name: str) -> Optional[str]:
    """Return the stripped value of an env var, or None when unset/blank."""
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None
