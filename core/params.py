"""
Beacon Parameter Module

Normalizes caller-supplied beacon parameters and appends them to a pixel
endpoint as a query string.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any, Optional, Union
from urllib.parse import urlencode

ParamValue = Union[str, int, float, bool, None]
BeaconParams = Mapping[str, ParamValue]


def stringify(value: Any) -> str:
    """Render a scalar the way a browser query string would."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def random_nonce() -> str:
    """Cache-busting token for beacon URLs."""
    return uuid.uuid4().hex[:12]


def normalize_params(params: Optional[BeaconParams] = None) -> dict[str, str]:
    """
    Coerce a parameter mapping into a flat mapping of non-empty strings.

    ``None`` values are dropped rather than stringified, as are values that
    render to an empty string. Never raises; no defaults are applied.
    """
    if not params:
        return {}

    normalized: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        text = stringify(value)
        if text == "":
            continue
        normalized[str(key)] = text
    return normalized


def with_defaults(params: Optional[BeaconParams] = None, **defaults: ParamValue) -> dict[str, ParamValue]:
    """Return a copy of ``params`` with missing or ``None`` keys filled from ``defaults``."""
    merged: dict[str, ParamValue] = dict(params or {})
    for key, value in defaults.items():
        if merged.get(key) is None:
            merged[key] = value
    return merged


def merge_params(*layers: Optional[BeaconParams]) -> dict[str, str]:
    """Merge parameter layers left to right; later layers overwrite earlier keys."""
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(normalize_params(layer))
    return merged


def build_query_string(params: Mapping[str, str]) -> str:
    """Percent-encode a normalized mapping as ``key=value&...``."""
    return urlencode(list(params.items()))


def build_url(endpoint: str, params: Optional[Mapping[str, str]] = None) -> str:
    """
    Append ``params`` to ``endpoint`` as a query string.

    An empty mapping returns the endpoint unchanged. An endpoint that already
    carries a query string is extended with ``&``.
    """
    query = build_query_string(params or {})
    if not query:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{query}"
