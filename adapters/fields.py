"""
Helpers shared by the resource normalizers.

Each logical attribute is declared as an ordered tuple of candidate keys;
``first_of`` resolves it, so alias precedence lives in one place.
"""

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from adapters.base import Architecture, Platform
from core.errors import MalformedResponse
from core.logger import logger

_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
)

# Checked in order, first hit wins. Distributions before the generic "linux".
_PLATFORM_KEYWORDS: tuple[tuple[str, Platform], ...] = (
    ("windows", Platform.WINDOWS),
    ("ubuntu",  Platform.UBUNTU),
    ("debian",  Platform.DEBIAN),
    ("centos",  Platform.CENT_OS),
    ("red hat", Platform.RHEL),
    ("redhat",  Platform.RHEL),
    ("rhel",    Platform.RHEL),
    ("fedora",  Platform.FEDORA_CORE),
    ("suse",    Platform.SUSE),
    ("coreos",  Platform.COREOS),
    ("freebsd", Platform.FREE_BSD),
    ("solaris", Platform.SOLARIS),
    ("linux",   Platform.UNIX),
    ("unix",    Platform.UNIX),
)

_ARCHITECTURE_KEYWORDS: tuple[tuple[str, Architecture], ...] = (
    ("32",    Architecture.I32),
    ("i386",  Architecture.I32),
    ("i686",  Architecture.I32),
    ("sparc", Architecture.SPARC),
    ("power", Architecture.POWER),
    ("ppc",   Architecture.POWER),
)


def first_of(raw: dict, aliases: Iterable[str], expected: type = str, default: Any = None) -> Any:
    """Return the first present, non-null alias value coerced to ``expected``."""
    for key in aliases:
        value = raw.get(key)
        if value is None:
            continue
        return _coerce(key, value, expected)
    return default


def unwrap(payload: dict | None, key: str) -> dict | None:
    """Pull the single resource out of a response envelope like {"volume": {...}}."""
    if not payload:
        return None
    body = payload.get(key)
    if body is None:
        return None
    if not isinstance(body, dict):
        raise MalformedResponse(f"'{key}' should be an object, got {type(body).__name__}")
    return body


def first_timestamp(raw: dict, aliases: Iterable[str]) -> datetime | None:
    # An unparseable value under one alias falls through to the next.
    for key in aliases:
        parsed = parse_timestamp(first_of(raw, (key,)))
        if parsed is not None:
            return parsed
    return None


def nested_list(raw: dict, key: str) -> list[dict]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise MalformedResponse(f"'{key}' should be a list of objects, got {value!r}")
    return value


def string_map(raw: dict, key: str, strict: bool = True) -> dict[str, str]:
    """A flat key/value map (metadata, extra specs). Scalars are stringified.

    Structured values raise ``MalformedResponse``, or are dropped when
    ``strict`` is False.
    """
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedResponse(f"'{key}' should be an object, got {type(value).__name__}")

    result: dict[str, str] = {}
    for name, item in value.items():
        if item is None:
            continue
        if isinstance(item, (dict, list)):
            if strict:
                raise MalformedResponse(f"'{key}.{name}' should be a scalar, got {type(item).__name__}")
            logger.debug(f"[fields] Dropping structured value '{key}.{name}'.")
            continue
        result[str(name)] = _scalar_text(item)
    return result


def _scalar_text(item: Any) -> str:
    if isinstance(item, str):
        return item
    # JSON spelling, so true stays "true" rather than "True".
    if isinstance(item, bool):
        return json.dumps(item)
    return str(item)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a provider timestamp. ``None`` means "unknown", never epoch."""
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        logger.debug(f"[fields] Unparseable timestamp '{value}', treating as unknown.")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def guess_platform(text: str | None) -> Platform:
    if not text:
        return Platform.UNKNOWN
    lowered = text.lower()
    for keyword, platform in _PLATFORM_KEYWORDS:
        if keyword in lowered:
            return platform
    return Platform.UNKNOWN


def guess_architecture(text: str | None, default: Architecture = Architecture.I64) -> Architecture:
    if not text:
        return default
    lowered = text.lower()
    for keyword, architecture in _ARCHITECTURE_KEYWORDS:
        if keyword in lowered:
            return architecture
    return default


def _coerce(key: str, value: Any, expected: type) -> Any:
    if expected is str:
        # Some endpoints hand out integer ids; anything structured is an error.
        if isinstance(value, str):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
    elif expected is int:
        if isinstance(value, bool):
            pass
        elif isinstance(value, int):
            return value
        elif isinstance(value, float) and value.is_integer():
            return int(value)
        elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
    elif isinstance(value, expected):
        return value

    raise MalformedResponse(f"'{key}' should be {expected.__name__}, got {value!r}")
