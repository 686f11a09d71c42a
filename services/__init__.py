"""BILDIT Pixel Services Module - Bot classification, dispatch and inline scripts."""

from services.classifier import AI_BOT_SIGNATURES, BotSignature, identify_ai_bot
from services.dispatcher import (
    BeaconDispatcher,
    BeaconDispatchResult,
    BeaconRequestContext,
    track_ai_bot_request,
)
from services.inline_scripts import build_mouse_detection_inline_script, build_pixel_inline_script

__all__ = [
    "AI_BOT_SIGNATURES",
    "BotSignature",
    "identify_ai_bot",
    "BeaconDispatcher",
    "BeaconDispatchResult",
    "BeaconRequestContext",
    "track_ai_bot_request",
    "build_mouse_detection_inline_script",
    "build_pixel_inline_script",
]
