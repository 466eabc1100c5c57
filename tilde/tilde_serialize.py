from __future__ import annotations

import datetime as _dt
import json
import re
from typing import Any, Optional
import collections.abc

import yaml

from tilde.tilde_datatypes import (
    ErrorValue, TildeCallable, TildeTypeError, clone_value, from_python, to_string,
)


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        enc = encoding or 'utf-8'
        try:
            return data.decode(enc, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def _to_plain(value: Any) -> Any:
    """Tilde value -> JSON/YAML friendly Python data."""
    match value:
        case None | bool() | str():
            return value
        case float():
            return int(value) if value.is_integer() else value
        case int():
            return value
        case list():
            return [_to_plain(v) for v in value]
        case dict():
            return {k: _to_plain(v) for k, v in value.items()}
        case _dt.datetime():
            return to_string(value)
        case ErrorValue():
            return {
                'message': value.message,
                'code': value.code,
                'source': value.source,
                'context': _to_plain(value.context),
            }
        case TildeCallable():
            raise TildeTypeError(f"Cannot serialize {value.describe()}")
    raise TildeTypeError(f"Cannot serialize a {type(value).__name__}")


def _to_tilde(obj: Any) -> Any:
    """Parsed JSON/YAML -> Tilde value."""
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_tilde(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_to_tilde(x) for x in obj]
    # YAML timestamps without a time part load as date
    if isinstance(obj, _dt.date) and not isinstance(obj, _dt.datetime):
        return _dt.datetime(obj.year, obj.month, obj.day, tzinfo=_dt.timezone.utc)
    if isinstance(obj, (bytes, bytearray)):
        return _norm_text(obj)
    return from_python(obj)


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' or 'yaml' (or None for plain text).
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if ct:
        return None

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Convert wire data to Tilde values, leniently.

    Used for HTTP bodies: text that does not parse in the detected format is
    returned unchanged as a string.
    """
    enc = _encoding_from_content_type(content_type)
    text = _norm_text(data, encoding=enc)
    f = (fmt or detect_format(content_type, text))
    if f == 'json':
        try:
            return _to_tilde(json.loads(text))
        except ValueError:
            return text
    if f == 'yaml':
        try:
            return _to_tilde(yaml.safe_load(text))
        except yaml.YAMLError:
            return text
    return text


def parse_text(text: str, *, fmt: str) -> Any:
    """Strict parse for `from-json` / `from-yaml`; malformed input is an error."""
    f = (fmt or '').lower()
    if f == 'json':
        try:
            return _to_tilde(json.loads(text))
        except json.JSONDecodeError as e:
            raise TildeTypeError(f"Invalid JSON: {e.msg} (line {e.lineno}, col {e.colno})", code="parse-error")
    if f == 'yaml':
        try:
            return _to_tilde(yaml.safe_load(text))
        except yaml.YAMLError as e:
            raise TildeTypeError(f"Invalid YAML: {e}", code="parse-error")
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True) -> str:
    """
    Convert a Tilde value into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_plain(clone_value(value))
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "detect_format",
    "parse_text",
    "serialize",
]
