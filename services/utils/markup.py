"""
Pixel Markup Module

Renders the beacon delivery surfaces as HTML: a hidden 1x1 image, a hidden
1x1 iframe, a <noscript> image fallback and the inline pixel script.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from core.config import get_config
from core.params import BeaconParams, build_url, normalize_params, with_defaults
from core.surfaces import ModeInput, Surface, ordered, resolve_surfaces, resolve_surfaces_without_script
from services.inline_scripts import build_mouse_detection_inline_script, build_pixel_inline_script

DEFAULT_SOURCE = "bildit-ai-pixel"


def escape_attribute(value: Any) -> str:
    """Escape a value for use inside a double-quoted HTML attribute."""
    return str(value).replace("&", "&amp;").replace("<", "&lt;").replace('"', "&quot;")


def _style(rules: Mapping[str, Any]) -> str:
    return ";".join(f"{key}:{value}" for key, value in rules.items()) + ";"


def _attributes(attrs: Mapping[str, Any]) -> str:
    parts = []
    for key, value in attrs.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(key)
        else:
            parts.append(f'{key}="{escape_attribute(value)}"')
    return " ".join(parts)


class PixelTemplates:
    """Default attributes and styles for each surface."""

    IMG_STYLE = {
        "position": "absolute",
        "width": "1px",
        "height": "1px",
        "border": "0",
        "clip": "rect(0, 0, 0, 0)",
        "overflow": "hidden",
    }

    IFRAME_STYLE = {
        "border": "0",
        "opacity": "0",
        "position": "absolute",
        "width": "1px",
        "height": "1px",
    }

    IFRAME_TITLE = "BILDIT AI Pixel Frame"

    @classmethod
    def img(cls, src: str, alt: str, attrs: Optional[Mapping[str, Any]] = None) -> str:
        extra = dict(attrs or {})
        style = {**cls.IMG_STYLE, **extra.pop("style", {})}
        merged = {
            "src": src,
            "alt": alt,
            "width": extra.pop("width", 1),
            "height": extra.pop("height", 1),
            "decoding": extra.pop("decoding", "async"),
            "loading": extra.pop("loading", "lazy"),
            **extra,
            "style": _style(style),
        }
        return f"<img {_attributes(merged)}>"

    @classmethod
    def iframe(cls, src: str, attrs: Optional[Mapping[str, Any]] = None) -> str:
        extra = dict(attrs or {})
        style = {**cls.IFRAME_STYLE, **extra.pop("style", {})}
        merged = {
            "src": src,
            "title": extra.pop("title", None) or cls.IFRAME_TITLE,
            "width": extra.pop("width", "1"),
            "height": extra.pop("height", "1"),
            "loading": extra.pop("loading", "lazy"),
            **extra,
            "style": _style(style),
        }
        return f"<iframe {_attributes(merged)}></iframe>"

    @classmethod
    def noscript(cls, src: str, alt: str) -> str:
        return f"<noscript>{build_noscript_html(src, alt)}</noscript>"

    @classmethod
    def script(cls, content: str, script_id: Optional[str] = None, nonce: Optional[str] = None) -> str:
        attrs = _attributes({"id": script_id, "nonce": nonce})
        opening = f"<script {attrs}>" if attrs else "<script>"
        return f"{opening}{content}</script>"


def build_noscript_html(src: str, alt: str) -> str:
    """Static fallback image markup placed inside a <noscript> block."""
    attributes = [
        f'src="{escape_attribute(src)}"',
        f'alt="{escape_attribute(alt)}"',
        'width="1"',
        'height="1"',
        'style="display:none;"',
        'loading="lazy"',
        'decoding="async"',
    ]
    return f"<img {' '.join(attributes)}>"


def surface_urls(pixel_url: str, params: Mapping[str, str]) -> dict[Surface, str]:
    """Per-surface beacon URLs; ``mode`` is appended last."""
    base = {key: value for key, value in params.items() if key != "mode"}
    return {
        surface: build_url(pixel_url, {**base, "mode": surface.value})
        for surface in (Surface.IMAGE, Surface.IFRAME, Surface.NOSCRIPT)
    }


def _render_surfaces(
    surfaces: frozenset[Surface],
    pixel_url: str,
    params: dict[str, str],
    alt: str,
    script_id: Optional[str],
    script_nonce: Optional[str],
    img_attrs: Optional[Mapping[str, Any]],
    iframe_attrs: Optional[Mapping[str, Any]],
) -> str:
    urls = surface_urls(pixel_url, params)
    elements = []
    for surface in ordered(surfaces):
        if surface is Surface.IMAGE:
            elements.append(PixelTemplates.img(urls[surface], alt, img_attrs))
        elif surface is Surface.IFRAME:
            elements.append(PixelTemplates.iframe(urls[surface], iframe_attrs))
        elif surface is Surface.NOSCRIPT:
            elements.append(PixelTemplates.noscript(urls[surface], alt))
        elif surface is Surface.SCRIPT:
            content = build_pixel_inline_script(pixel_url, params, alt)
            elements.append(PixelTemplates.script(content, script_id, script_nonce))
    return "\n".join(elements)


def render_pixel(
    pixel_url: Optional[str] = None,
    params: Optional[BeaconParams] = None,
    mode: ModeInput = "auto",
    alt: Optional[str] = None,
    script_id: Optional[str] = None,
    script_nonce: Optional[str] = None,
    img_attrs: Optional[Mapping[str, Any]] = None,
    iframe_attrs: Optional[Mapping[str, Any]] = None,
) -> str:
    """Render the pixel with every surface the mode selects."""
    pixel_cfg = get_config().pixel
    normalized = normalize_params(with_defaults(params, component="python", source=DEFAULT_SOURCE))
    return _render_surfaces(
        resolve_surfaces(mode),
        pixel_url or pixel_cfg.url,
        normalized,
        pixel_cfg.alt if alt is None else alt,
        script_id,
        script_nonce,
        img_attrs,
        iframe_attrs,
    )


def render_pixel_script(
    pixel_url: Optional[str] = None,
    params: Optional[BeaconParams] = None,
    alt: Optional[str] = None,
    script_id: Optional[str] = None,
    script_nonce: Optional[str] = None,
) -> str:
    """Render only the inline pixel script with server-integration defaults."""
    config = get_config()
    normalized = normalize_params(_server_defaults(params))
    content = build_pixel_inline_script(
        pixel_url or config.pixel.url,
        normalized,
        config.pixel.alt if alt is None else alt,
    )
    return PixelTemplates.script(content, script_id or config.pixel.script_id, script_nonce)


def render_server_pixel(
    pixel_url: Optional[str] = None,
    params: Optional[BeaconParams] = None,
    mode: ModeInput = None,
    alt: Optional[str] = None,
    include_script: bool = True,
    script_id: Optional[str] = None,
    script_nonce: Optional[str] = None,
    img_attrs: Optional[Mapping[str, Any]] = None,
    iframe_attrs: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Render the pixel for server-rendered pages.

    The markup surfaces never include the script; the inline script is
    emitted as its own tag ahead of them when ``include_script`` is set.
    """
    config = get_config()
    pixel_url = pixel_url or config.pixel.url
    alt = config.pixel.alt if alt is None else alt
    normalized = normalize_params(_server_defaults(params))

    markup = _render_surfaces(
        resolve_surfaces_without_script(mode),
        pixel_url,
        normalized,
        alt,
        None,
        None,
        img_attrs,
        iframe_attrs,
    )
    if not include_script:
        return markup

    script = render_pixel_script(pixel_url, normalized, alt, script_id, script_nonce)
    return f"{script}\n{markup}"


def render_mouse_detection_script(
    pixel_url: Optional[str] = None,
    duration: Optional[int] = None,
    throttle: Optional[int] = None,
    max_movements: Optional[int] = None,
    params: Optional[BeaconParams] = None,
    script_id: Optional[str] = None,
    script_nonce: Optional[str] = None,
) -> str:
    """Render the mouse/click/scroll recorder as a script tag."""
    content = build_mouse_detection_inline_script(pixel_url, duration, throttle, max_movements, params)
    return PixelTemplates.script(content, script_id, script_nonce)


def _server_defaults(params: Optional[BeaconParams]) -> dict[str, Any]:
    dispatch_cfg = get_config().dispatch
    return with_defaults(
        params,
        component=dispatch_cfg.component,
        framework=dispatch_cfg.framework,
        source=dispatch_cfg.source,
    )
