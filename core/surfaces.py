"""
Delivery Surface Module

Resolves a caller-facing mode selector into the set of delivery surfaces
(image, iframe, noscript, inline script) to render.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Optional, Union


class Surface(str, Enum):
    """Concrete beacon delivery mechanisms."""

    IMAGE = "img"
    IFRAME = "iframe"
    NOSCRIPT = "noscript"
    SCRIPT = "script"


# Rendering order
SURFACES: tuple[Surface, ...] = (
    Surface.IMAGE,
    Surface.IFRAME,
    Surface.NOSCRIPT,
    Surface.SCRIPT,
)

ALL_SURFACES = frozenset(SURFACES)
NON_SCRIPT_SURFACES = frozenset({Surface.IMAGE, Surface.IFRAME, Surface.NOSCRIPT})

MODE_MAP: dict[str, tuple[Surface, ...]] = {
    "auto": SURFACES,
    "server": SURFACES,
    "image": (Surface.IMAGE,),
    "img": (Surface.IMAGE,),
    "iframe": (Surface.IFRAME,),
    "noscript": (Surface.NOSCRIPT,),
    "script": (Surface.SCRIPT,),
}

ModeInput = Union[str, Surface, Iterable[Union[str, Surface]], None]


def _expand_token(token: object) -> tuple[Surface, ...]:
    """Map one mode or surface token to its surfaces; unknown tokens map to nothing."""
    if isinstance(token, Surface):
        return (token,)
    if not isinstance(token, str):
        return ()
    return MODE_MAP.get(token.strip().lower(), ())


def _expand(mode: ModeInput) -> Optional[frozenset[Surface]]:
    """Expand a mode selector; ``None`` means no usable selection was made."""
    if not mode:
        return None

    if isinstance(mode, (str, Surface)):
        surfaces = _expand_token(mode)
    else:
        surfaces = tuple(s for entry in mode for s in _expand_token(entry))

    return frozenset(surfaces) or None


def resolve_surfaces(mode: ModeInput = None) -> frozenset[Surface]:
    """
    Resolve a mode selector into the surfaces to activate.

    Falsy modes, ``auto``, ``server``, empty lists and selections made only of
    unrecognized tokens all resolve to every surface.
    """
    return _expand(mode) or ALL_SURFACES


def resolve_surfaces_without_script(mode: ModeInput = None) -> frozenset[Surface]:
    """
    Resolve a mode selector for consumers that render the script separately.

    The script surface is never returned; an empty result falls back to
    image, iframe and noscript.
    """
    surfaces = (_expand(mode) or ALL_SURFACES) - {Surface.SCRIPT}
    return surfaces or NON_SCRIPT_SURFACES


def ordered(surfaces: Iterable[Surface]) -> list[Surface]:
    """Return surfaces in rendering order."""
    selected = set(surfaces)
    return [surface for surface in SURFACES if surface in selected]
