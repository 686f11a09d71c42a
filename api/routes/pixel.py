"""
Pixel Routes

Embed snippets, the recorder script and user-agent classification.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, Response

from core.config import PIXEL_URL_PATTERN
from core.logger import get_logger
from services.classifier import identify_ai_bot
from services.utils.markup import render_pixel
from services.inline_scripts import build_mouse_detection_inline_script

logger = get_logger(__name__)

router = APIRouter()

# Query keys consumed by the snippet route itself
_SNIPPET_OPTIONS = {"mode", "alt", "pixel_url"}


@router.get("/snippet", response_class=HTMLResponse)
async def pixel_snippet(
    request: Request,
    alt: Optional[str] = None,
    pixel_url: Optional[str] = Query(default=None, pattern=PIXEL_URL_PATTERN),
) -> HTMLResponse:
    """
    Embed markup for the pixel.

    ``mode`` may be repeated to select several surfaces; every other query
    parameter is forwarded to the beacon.
    """
    modes = request.query_params.getlist("mode")
    params = {
        key: value
        for key, value in request.query_params.items()
        if key not in _SNIPPET_OPTIONS
    }
    markup = render_pixel(
        pixel_url=pixel_url,
        params=params,
        mode=modes if len(modes) > 1 else (modes[0] if modes else "auto"),
        alt=alt,
    )
    return HTMLResponse(content=markup)


@router.get("/mouse.js")
async def mouse_script(
    duration: Optional[int] = Query(default=None, gt=0),
    throttle: Optional[int] = Query(default=None, gt=0),
    max_movements: Optional[int] = Query(default=None, gt=0),
) -> Response:
    """The mouse/click/scroll recorder as a standalone script."""
    script = build_mouse_detection_inline_script(
        duration=duration,
        throttle=throttle,
        max_movements=max_movements,
    )
    return Response(
        content=script,
        media_type="application/javascript",
        headers={"Cache-Control": "no-store"},
    )


@router.get("/classify")
async def classify(request: Request, ua: Optional[str] = None) -> dict:
    """Classify a user agent, defaulting to the caller's own."""
    user_agent = ua if ua is not None else request.headers.get("user-agent")
    signature = identify_ai_bot(user_agent)
    logger.debug("user_agent_classified", bot=signature.slug if signature else None)
    return {
        "bot": signature.slug if signature else None,
        "is_ai_bot": signature is not None,
        "user_agent": user_agent,
    }
