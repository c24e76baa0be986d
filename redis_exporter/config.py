"""Resolution of startup arguments against environment-sourced defaults.

Every option can be set with a command line flag or an environment variable.
An explicitly supplied flag always wins, then the environment, then the
built-in default. Environment values that do not parse for the option's type
are ignored (with a warning) and the default is used instead, so a typo in a
deployment manifest never prevents the exporter from starting.
"""

import logging
import re
from datetime import timedelta
from os import environ
from typing import Callable, TypeVar

from redis_exporter.errors import ConfigParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
_MAX_DURATION_SECONDS = INT64_MAX / 1e9

_TRUE_VALUES = frozenset(["1", "t", "T", "TRUE", "true", "True"])
_FALSE_VALUES = frozenset(["0", "f", "F", "FALSE", "false", "False"])

_INT_RE = re.compile(r"[+-]?[0-9]+")
_DURATION_RE = re.compile(r"(?:(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:ns|us|µs|μs|ms|s|m|h))+")
_DURATION_PART_RE = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_bool(value: str) -> bool:
    """Parse a boolean using the strict set of accepted spellings.

    Raises:
        ValueError: If the value is not one of the accepted spellings
    """
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def parse_int(value: str) -> int:
    """Parse a base 10 signed 64-bit integer.

    Raises:
        ValueError: If the value is not a decimal integer or overflows int64
    """
    if not _INT_RE.fullmatch(value):
        raise ValueError(f"invalid integer: {value!r}")
    number = int(value)
    if not INT64_MIN <= number <= INT64_MAX:
        raise ValueError(f"integer out of range: {value!r}")
    return number


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as ``15s``, ``1m30s`` or ``250ms``.

    A duration is an optionally signed sequence of decimal numbers, each
    with a unit suffix (``ns``, ``us``, ``ms``, ``s``, ``m``, ``h``). The
    bare string ``0`` is also accepted.

    Args:
        value: Duration text

    Returns:
        timedelta: The parsed duration

    Raises:
        ConfigParseError: If the text does not follow the duration grammar
    """
    text = value
    sign = 1.0
    if text[:1] in ("-", "+"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text or not _DURATION_RE.fullmatch(text):
        raise ConfigParseError(f"invalid duration {value!r}")

    seconds = sum(
        float(number) * _DURATION_UNITS[unit]
        for number, unit in _DURATION_PART_RE.findall(text)
    )
    # durations are bounded by a signed 64-bit nanosecond count
    if seconds > _MAX_DURATION_SECONDS:
        raise ConfigParseError(f"invalid duration {value!r}: out of range")
    return timedelta(seconds=sign * seconds)


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    An empty host (``:9121``) binds all interfaces; IPv6 hosts must be
    bracketed (``[::1]:9121``).

    Raises:
        ConfigParseError: If the address has no port or the port is invalid
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigParseError(f"listen address {address!r} is missing a port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigParseError(
            f"listen address {address!r} has too many colons, bracket IPv6 hosts"
        )
    if not (port.isascii() and port.isdigit()) or not 0 <= int(port) <= 65535:
        raise ConfigParseError(f"listen address {address!r} has an invalid port")
    return host, int(port)


def env_value(name: str, default: T, parse: Callable[[str], T]) -> T:
    """Read ``name`` from the environment and parse it, falling back to ``default``."""
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning(
            "Ignoring invalid value %r for environment variable %s, using default %r",
            raw,
            name,
            default,
        )
        return default


def resolve(
    arg_value: T | None,
    env_name: str,
    default: T,
    parse: Callable[[str], T] | None = None,
) -> T:
    """Resolve a single option: explicit argument, then environment, then default.

    Args:
        arg_value: Value from the command line, ``None`` when not supplied
        env_name: Name of the environment variable backing the option
        default: Built-in default
        parse: Parser for the environment string, identity for strings

    Returns:
        The resolved, typed value
    """
    if arg_value is not None:
        return arg_value
    if parse is None:
        return environ.get(env_name, default)
    return env_value(env_name, default, parse)
