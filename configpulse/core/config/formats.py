# SPDX-License-Identifier: MIT
"""Conversion of raw store payloads into configuration objects.

Supported formats:

* ``json`` - a JSON object; an empty payload is an empty object.
* ``properties`` - ``key=value`` (or ``key: value``) lines. Values are coerced
  by :func:`coerce_value`: integers first, then ``true``/``false``, otherwise
  the trimmed string is kept.
* ``yaml`` - a YAML mapping.
* ``raw`` - the payload wrapped under a single key.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict

import yaml

from configpulse.core.config.errors import FormatError

__all__ = [
    "DEFAULT_FORMAT",
    "DEFAULT_RAW_KEY",
    "coerce_value",
    "convert",
    "parse_properties",
    "supported_formats",
]

DEFAULT_FORMAT = "json"
DEFAULT_RAW_KEY = "raw"

_INTEGER = re.compile(r"^[+-]?\d+$")
_COMMENT_PREFIXES = ("#", "!")


def coerce_value(value: str) -> Any:
    """Coerce a textual value to ``int``, then ``bool``, falling back to ``str``."""

    text = value.strip()
    if _INTEGER.match(text):
        return int(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return text


def _split_property(line: str) -> tuple[str, str]:
    positions = [index for index in (line.find("="), line.find(":")) if index >= 0]
    if not positions:
        return line.strip(), ""
    index = min(positions)
    return line[:index].strip(), line[index + 1 :]


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def parse_properties(text: str, *, hierarchical: bool = False, coerce: bool = True) -> Dict[str, Any]:
    """Parse properties text into a configuration object."""

    result: Dict[str, Any] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue
        key, raw_value = _split_property(line)
        if not key:
            raise FormatError(f"Properties line has an empty key: {raw_line!r}")
        value = coerce_value(raw_value) if coerce else raw_value.strip()
        if hierarchical:
            _assign_nested(result, key, value)
        else:
            result[key] = value
    return result


def _decode(payload: bytes | str, fmt: str) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return bytes(payload).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError(f"Payload declared as '{fmt}' is not valid UTF-8: {exc}") from exc


def _convert_json(payload: bytes | str, **_: Any) -> Dict[str, Any]:
    text = _decode(payload, "json")
    if not text.strip():
        return {}
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Malformed JSON payload: {exc}") from exc
    if not isinstance(document, dict):
        raise FormatError(
            f"JSON payload must be an object, got {type(document).__name__}"
        )
    return document


def _convert_properties(payload: bytes | str, *, hierarchical: bool = False, **_: Any) -> Dict[str, Any]:
    return parse_properties(_decode(payload, "properties"), hierarchical=hierarchical)


def _convert_yaml(payload: bytes | str, **_: Any) -> Dict[str, Any]:
    text = _decode(payload, "yaml")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise FormatError(f"Malformed YAML payload: {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise FormatError(
            f"YAML payload must be a mapping, got {type(document).__name__}"
        )
    return {str(key): value for key, value in document.items()}


def _convert_raw(
    payload: bytes | str,
    *,
    raw_key: str = DEFAULT_RAW_KEY,
    raw_type: str = "string",
    **_: Any,
) -> Dict[str, Any]:
    if raw_type == "binary":
        value: Any = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    elif raw_type == "string":
        value = _decode(payload, "raw")
    else:
        raise FormatError(f"Unsupported raw type '{raw_type}', expected 'string' or 'binary'")
    return {raw_key: value}


_CONVERTERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "json": _convert_json,
    "properties": _convert_properties,
    "yaml": _convert_yaml,
    "raw": _convert_raw,
}


def supported_formats() -> tuple[str, ...]:
    return tuple(_CONVERTERS)


def convert(
    payload: bytes | str,
    fmt: str = DEFAULT_FORMAT,
    *,
    raw_key: str = DEFAULT_RAW_KEY,
    raw_type: str = "string",
    hierarchical: bool = False,
) -> Dict[str, Any]:
    """Convert *payload* declared as *fmt* into a configuration object.

    Raises:
        FormatError: if the format is unknown or the payload is malformed.
    """

    converter = _CONVERTERS.get(fmt)
    if converter is None:
        raise FormatError(
            f"Unknown configuration format '{fmt}' (supported: {', '.join(_CONVERTERS)})"
        )
    return converter(payload, raw_key=raw_key, raw_type=raw_type, hierarchical=hierarchical)
