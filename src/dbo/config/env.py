"""Typed access to DBO_* environment variables.

EnvReader accepts an optional mapping so tests can inject an environment
without touching os.environ.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


class EnvReader:
    """Read environment variables with type conversion.

    Invalid numeric values are logged and replaced by the default rather
    than raising, so a typo in the environment never prevents startup.

    Example:
        reader = EnvReader({"DBO_SERVER_PORT": "9000"})
        reader.get_int("DBO_SERVER_PORT", 8322)  # 9000
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Initialize the reader.

        Args:
            env: Mapping used instead of os.environ when given.
        """
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def get_str(self, var: str, default: str | None = None) -> str | None:
        """Return the raw value of var, or default when unset."""
        value = self._env.get(var)
        return default if value is None else value

    def get_int(self, var: str, default: int | None = None) -> int | None:
        """Return var parsed as int, or default when unset or invalid."""
        value = self._env.get(var)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for %s: %s", var, value)
            return default

    def get_float(self, var: str, default: float | None = None) -> float | None:
        """Return var parsed as float, or default when unset or invalid."""
        value = self._env.get(var)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid float value for %s: %s", var, value)
            return default

    def get_bool(self, var: str, default: bool | None = None) -> bool | None:
        """Return var as a boolean.

        "true", "1", "yes" and "on" (any case) are true; every other
        value is false.
        """
        value = self._env.get(var)
        if value is None:
            return default
        return value.strip().lower() in _TRUE_VALUES

    def get_path(
        self, var: str, must_exist: bool = False, default: Path | None = None
    ) -> Path | None:
        """Return var as an expanded Path.

        Args:
            var: Environment variable name.
            must_exist: When True, a path that does not exist is logged and
                replaced by default.
            default: Value returned when unset.
        """
        value = self._env.get(var)
        if not value:
            return default

        path = Path(value).expanduser()
        if must_exist and not path.exists():
            logger.warning(
                "Environment variable %s points to non-existent path: %s",
                var,
                value,
            )
            return default
        return path
