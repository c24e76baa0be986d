"""Loading of Redis passwords and Lua scripts from disk."""

import json
import logging
from pathlib import Path
from typing import Iterable

from redis_exporter.errors import CredentialLoadError

logger = logging.getLogger(__name__)


def load_password_map(path: str | Path) -> dict[str, str]:
    """Load the address to password mapping from a JSON password file.

    The file holds a single JSON object, for example
    ``{"redis://host-1:6379": "secret", "redis://host-2:6379": ""}``.

    Args:
        path: Path to the password file

    Returns:
        dict[str, str]: Mapping of Redis address to password

    Raises:
        CredentialLoadError: If the file cannot be read or is malformed
    """
    logger.debug("Loading redis passwords from file %s", path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise CredentialLoadError(
            f"Error loading redis passwords from file {path}, err: {e}"
        ) from e
    except json.JSONDecodeError as e:
        raise CredentialLoadError(
            f"Error parsing redis passwords from file {path}, err: {e}"
        ) from e

    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise CredentialLoadError(
            f"Password file {path} must contain a JSON object of string addresses to string passwords"
        )

    logger.debug("Loaded %d redis password(s) from file %s", len(data), path)
    return data


def split_paths(value: str) -> list[str]:
    """Split comma-separated paths; empty entries are kept so they fail to load."""
    return value.split(",") if value else []


def load_scripts(paths: str | Iterable[str]) -> dict[str, bytes]:
    """Read Lua scripts used to gather extra metrics.

    Args:
        paths: Comma-separated string or iterable of script paths

    Returns:
        dict[str, bytes]: Script contents keyed by path, in the given order

    Raises:
        CredentialLoadError: On the first script that cannot be read
    """
    if isinstance(paths, str):
        paths = split_paths(paths)

    scripts: dict[str, bytes] = {}
    for script in paths:
        try:
            scripts[script] = Path(script).read_bytes()
        except OSError as e:
            raise CredentialLoadError(
                f"Error loading script file {script}    err: {e}"
            ) from e
        logger.debug("Loaded script %s (%d bytes)", script, len(scripts[script]))
    return scripts
