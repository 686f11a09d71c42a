"""
Unit tests for pixel markup rendering.
"""

import html

import pytest

from core.surfaces import Surface
from services.inline_scripts import extract_script_config
from services.utils.markup import (
    PixelTemplates,
    build_noscript_html,
    escape_attribute,
    render_mouse_detection_script,
    render_pixel,
    render_pixel_script,
    render_server_pixel,
    surface_urls,
)

PIXEL = "https://ai-pixel.example/pixel.gif"


def script_body(markup):
    start = markup.index(">", markup.index("<script")) + 1
    return markup[start:markup.index("</script>")]


class TestEscaping:
    def test_escape_attribute(self):
        assert escape_attribute('a&b<c"d') == "a&amp;b&lt;c&quot;d"

    def test_noscript_html(self):
        markup = build_noscript_html(f"{PIXEL}?a=1&b=2", 'Say "hi"')
        assert markup.startswith("<img ")
        assert 'src="https://ai-pixel.example/pixel.gif?a=1&amp;b=2"' in markup
        assert 'alt="Say &quot;hi&quot;"' in markup
        assert 'style="display:none;"' in markup


class TestSurfaceUrls:
    def test_mode_appended_last(self):
        urls = surface_urls(PIXEL, {"campaign": "spring"})
        assert urls[Surface.IMAGE] == f"{PIXEL}?campaign=spring&mode=img"
        assert urls[Surface.IFRAME] == f"{PIXEL}?campaign=spring&mode=iframe"
        assert urls[Surface.NOSCRIPT] == f"{PIXEL}?campaign=spring&mode=noscript"

    def test_caller_mode_replaced(self):
        urls = surface_urls(PIXEL, {"mode": "custom", "campaign": "spring"})
        assert urls[Surface.IMAGE] == f"{PIXEL}?campaign=spring&mode=img"


class TestTemplates:
    def test_img_defaults(self):
        markup = PixelTemplates.img(PIXEL, "alt")
        assert 'width="1"' in markup
        assert 'decoding="async"' in markup
        assert "clip:rect(0, 0, 0, 0);" in markup

    def test_img_overrides(self):
        markup = PixelTemplates.img(PIXEL, "alt", {"class": "px", "style": {"border": "1px"}, "hidden": True})
        assert 'class="px"' in markup
        assert "border:1px;" in markup
        assert " hidden" in markup

    def test_iframe_title(self):
        assert 'title="BILDIT AI Pixel Frame"' in PixelTemplates.iframe(PIXEL)
        assert 'title="Custom"' in PixelTemplates.iframe(PIXEL, {"title": "Custom"})

    def test_script_attributes(self):
        assert PixelTemplates.script("x()") == "<script>x()</script>"
        assert PixelTemplates.script("x()", "sid", "abc") == '<script id="sid" nonce="abc">x()</script>'


class TestRenderPixel:
    """Tests for the general-purpose renderer."""

    def test_image_mode(self):
        markup = render_pixel(PIXEL, {"campaign": "spring"}, mode="image", alt="Pixel")
        assert markup.count("<img") == 1
        assert "<iframe" not in markup
        assert "<noscript" not in markup
        assert "<script" not in markup
        src = html.unescape(markup.split('src="')[1].split('"')[0])
        assert src == f"{PIXEL}?campaign=spring&component=python&source=bildit-ai-pixel&mode=img"

    def test_auto_mode_renders_everything_in_order(self):
        markup = render_pixel(PIXEL, mode="auto")
        positions = [markup.index(tag) for tag in ("<img", "<iframe", "<noscript>", "<script")]
        assert positions == sorted(positions)

    def test_script_surface_embeds_params(self):
        markup = render_pixel(PIXEL, {"campaign": "spring"}, mode="script", script_id="px", script_nonce="n1")
        assert markup.startswith('<script id="px" nonce="n1">')
        cfg = extract_script_config(script_body(markup))
        assert cfg["params"]["campaign"] == "spring"
        assert cfg["params"]["component"] == "python"

    def test_caller_component_kept(self):
        markup = render_pixel(PIXEL, {"component": "storefront"}, mode="img")
        assert "component=storefront" in markup

    def test_defaults_from_config(self):
        markup = render_pixel(mode="img")
        assert "https://ai-pixel.bildit.co/pixel.gif?" in markup
        assert 'alt="BILDIT AI Pixel Tracker"' in markup

    @pytest.mark.parametrize("mode", [["iframe", "noscript"], ("noscript", "iframe")])
    def test_list_mode(self, mode):
        markup = render_pixel(PIXEL, mode=mode)
        assert "<iframe" in markup
        assert "<noscript>" in markup
        assert markup.index("<iframe") < markup.index("<noscript>")
        assert "<script" not in markup


class TestRenderServerPixel:
    """Tests for the server-rendered variant."""

    def test_script_first_then_surfaces(self):
        markup = render_server_pixel(PIXEL, {"campaign": "spring"})
        assert markup.startswith('<script id="bildit-ai-pixel">')
        assert markup.count("<script") == 1
        for tag in ("<img", "<iframe", "<noscript>"):
            assert tag in markup

    def test_server_defaults(self):
        markup = render_server_pixel(PIXEL, mode="img", include_script=False)
        assert "component=server" in markup
        assert "framework=python" in markup
        assert "source=bildit-ai-pixel" in markup

    def test_script_mode_never_duplicates_script(self):
        markup = render_server_pixel(PIXEL, mode="script")
        assert markup.count("<script") == 1
        for tag in ("<img", "<iframe", "<noscript>"):
            assert tag in markup

    def test_without_script(self):
        markup = render_server_pixel(PIXEL, mode="iframe", include_script=False)
        assert "<script" not in markup
        assert markup.startswith("<iframe")

    def test_render_pixel_script(self):
        markup = render_pixel_script(PIXEL, {"campaign": "spring"}, script_nonce="n1")
        assert markup.startswith('<script id="bildit-ai-pixel" nonce="n1">')
        cfg = extract_script_config(script_body(markup))
        assert cfg["pixelUrl"] == PIXEL
        assert cfg["params"]["component"] == "server"


class TestRenderMouseDetection:
    def test_script_tag(self):
        markup = render_mouse_detection_script(PIXEL, duration=2000, script_id="mouse")
        assert markup.startswith('<script id="mouse">')
        cfg = extract_script_config(script_body(markup))
        assert cfg["options"]["duration"] == 2000
        assert cfg["options"]["throttle"] == 1000
