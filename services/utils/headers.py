"""
Header Lookup Module

A single case-insensitive header lookup capability with adapters for the
header containers host frameworks hand us: plain mappings, iterables of
``(name, value)`` pairs and objects exposing ``get(name)``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class HeaderLookup(Protocol):
    """Anything that can answer ``get(name) -> Optional[str]``."""

    def get(self, name: str) -> Optional[str]:
        ...


def _first(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


class EmptyHeaders:
    """Lookup used when a request carries no headers."""

    def get(self, name: str) -> Optional[str]:
        return None

    def snapshot(self) -> dict[str, str]:
        return {}


class MappingHeaders:
    """Case-insensitive lookup over a ``{name: value | [values]}`` mapping."""

    def __init__(self, headers: Mapping[Any, Any]):
        self._headers = headers

    def get(self, name: str) -> Optional[str]:
        target = name.lower()
        for key in self._headers.keys():
            if isinstance(key, bytes):
                key_text = key.decode("latin-1")
            elif isinstance(key, str):
                key_text = key
            else:
                continue
            if key_text.lower() == target:
                return _first(self._headers[key])
        return None

    def snapshot(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for key in self._headers.keys():
            value = _first(self._headers[key])
            if value is not None:
                name = key.decode("latin-1") if isinstance(key, bytes) else str(key)
                result[name.lower()] = value
        return result


class PairHeaders:
    """Case-insensitive lookup over ``(name, value)`` pairs; the first match wins."""

    def __init__(self, pairs: Iterable[Any]):
        self._pairs = [tuple(pair) for pair in pairs if pair]

    def get(self, name: str) -> Optional[str]:
        target = name.lower()
        for pair in self._pairs:
            if len(pair) < 2:
                continue
            key, value = pair[0], pair[1]
            if isinstance(key, bytes):
                key = key.decode("latin-1")
            if isinstance(key, str) and key.lower() == target:
                return _first(value)
        return None

    def snapshot(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for pair in reversed(self._pairs):
            if len(pair) < 2:
                continue
            key = pair[0].decode("latin-1") if isinstance(pair[0], bytes) else str(pair[0])
            value = _first(pair[1])
            if value is not None:
                result[key.lower()] = value
        return result


class GetterHeaders:
    """Lookup delegating to a ``get(name)`` method, retried with a lower-cased name."""

    def __init__(self, headers: Any):
        self._headers = headers

    def get(self, name: str) -> Optional[str]:
        value = self._headers.get(name)
        if value is None:
            value = self._headers.get(name.lower())
        return _first(value)

    def snapshot(self) -> dict[str, str]:
        items = getattr(self._headers, "items", None)
        if not callable(items):
            return {}
        return {str(key).lower(): str(value) for key, value in items()}


def as_header_lookup(headers: Any) -> HeaderLookup:
    """Wrap any supported header container in a lookup adapter."""
    if headers is None:
        return EmptyHeaders()
    if isinstance(headers, (EmptyHeaders, MappingHeaders, PairHeaders, GetterHeaders)):
        return headers
    if isinstance(headers, Mapping):
        return MappingHeaders(headers)
    if callable(getattr(headers, "get", None)):
        return GetterHeaders(headers)
    if isinstance(headers, Iterable) and not isinstance(headers, (str, bytes)):
        return PairHeaders(headers)
    return EmptyHeaders()


def header_value(headers: Any, name: str) -> Optional[str]:
    """Look up ``name`` case-insensitively in any supported header container."""
    return as_header_lookup(headers).get(name)


def snapshot_headers(headers: Any) -> dict[str, str]:
    """Copy a header container into a plain dict with lower-cased names."""
    return as_header_lookup(headers).snapshot()
