"""Service utilities - Header lookup adapters and pixel markup."""

from services.utils.headers import (
    HeaderLookup,
    as_header_lookup,
    header_value,
)
from services.utils.markup import (
    PixelTemplates,
    build_noscript_html,
    render_mouse_detection_script,
    render_pixel,
    render_pixel_script,
    render_server_pixel,
)

__all__ = [
    "HeaderLookup",
    "as_header_lookup",
    "header_value",
    "PixelTemplates",
    "build_noscript_html",
    "render_mouse_detection_script",
    "render_pixel",
    "render_pixel_script",
    "render_server_pixel",
]
