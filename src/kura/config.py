# SPDX-License-Identifier: MIT
"""Configuration management for kura.

This module handles:
- Logging setup
- Listing and streaming limits read from the environment
- Connection settings for the default filesystem
"""

from __future__ import annotations

import json
import logging
import os
import sys
from functools import lru_cache
from typing import Any

logger = logging.getLogger("kura")

DEFAULT_MAX_LIST_ITEMS = 500_000
DEFAULT_CHUNK_SIZE = 64 * 1024


# ---------- Logging configuration ----------
def configure_logging(level: str | None = None) -> None:
    """Configure root logging for applications embedding kura.

    Args:
        level: Log level name.  Defaults to ``LOG_LEVEL`` (``INFO`` if unset).
    """
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ---------- Limits (runtime) ----------
def _positive_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{env_var} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise RuntimeError(f"{env_var} must be positive, got {value}")
    return value


@lru_cache(maxsize=1)
def get_max_list_items() -> int:
    """Maximum number of keys a flat-store listing may fetch (``KURA_MAX_LIST_ITEMS``).

    Raises:
        RuntimeError: If the variable is set but not a positive integer
    """
    return _positive_int("KURA_MAX_LIST_ITEMS", DEFAULT_MAX_LIST_ITEMS)


@lru_cache(maxsize=1)
def get_chunk_size() -> int:
    """Read size used when streaming sources (``KURA_CHUNK_SIZE``)."""
    return _positive_int("KURA_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)


# ---------- Connection settings ----------
def get_connection_settings() -> dict[str, Any]:
    """Collect ``KURA_CONNECTION_*`` variables into keyword arguments for ``Connection``.

    Raises:
        RuntimeError: If ``KURA_CONNECTION_PROPERTIES`` is not a JSON object
    """
    settings: dict[str, Any] = {"type": os.getenv("KURA_CONNECTION_TYPE", "folder").strip().lower()}
    for field in ("url", "username", "password"):
        value = os.getenv(f"KURA_CONNECTION_{field.upper()}")
        if value and value.strip():
            settings[field] = value.strip()

    raw_props = os.getenv("KURA_CONNECTION_PROPERTIES", "").strip()
    if raw_props:
        try:
            props = json.loads(raw_props)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"KURA_CONNECTION_PROPERTIES is not valid JSON: {e}") from e
        if not isinstance(props, dict):
            raise RuntimeError("KURA_CONNECTION_PROPERTIES must be a JSON object")
        settings["properties"] = {str(k): str(v) for k, v in props.items()}
    return settings
