"""
AI Bot Classifier

Maps a raw user-agent string to a known AI crawler identity by matching an
ordered list of signatures. The first matching signature wins, so specific
vendor signatures precede the generic catch-all.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

from core.config import SignatureSpec, get_config


@dataclass(frozen=True)
class BotSignature:
    """A bot identity and the pattern recognising it."""

    slug: str
    pattern: re.Pattern

    def matches(self, user_agent: str) -> bool:
        return self.pattern.search(user_agent) is not None


def _signature(slug: str, pattern: str) -> BotSignature:
    return BotSignature(slug=slug, pattern=re.compile(pattern, re.IGNORECASE))


AI_BOT_SIGNATURES: tuple[BotSignature, ...] = (
    _signature("openai-gptbot", r"gptbot"),
    _signature("openai-chatgpt", r"chatgpt|gpt-?crawler"),
    _signature("anthropic-claudebot", r"anthropic|claudebot"),
    _signature("perplexity", r"perplexity|pplx"),
    _signature("google-gemini", r"google.*(other|snippet|inspect)|google-extended|gemini|aiagent"),
    _signature("bing-copilot", r"bingbot|bingpreview|bing-ai|msnbot|cpt-ai"),
    _signature("meta-ai", r"facebookexternalhit|facebot|meta-ai"),
    _signature("xai-grok", r"grok|x-ai|xbot|xai-bot"),
    _signature("baidu-ernie", r"baidu|ernie"),
    _signature("kimi-moonshot", r"moonshot|kimi"),
    _signature("deepseek", r"deepseek|deepthinker"),
    _signature("generic-ai", r"ai(\s|-)agent|ai crawler|llm|large language"),
)


def compile_signatures(specs: Iterable[SignatureSpec]) -> tuple[BotSignature, ...]:
    """Compile configured signatures, keeping their order."""
    return tuple(_signature(spec.slug, spec.pattern) for spec in specs)


def get_signatures() -> tuple[BotSignature, ...]:
    """Return the configured signature list, or the built-in one."""
    configured = get_config().bots.signatures
    if configured:
        return compile_signatures(configured)
    return AI_BOT_SIGNATURES


def identify_ai_bot(
    user_agent: Optional[str],
    signatures: Optional[Sequence[BotSignature]] = None,
) -> Optional[BotSignature]:
    """Return the first signature matching ``user_agent``, or ``None``."""
    if not user_agent:
        return None

    ua = str(user_agent)
    for signature in signatures if signatures is not None else get_signatures():
        if signature.matches(ua):
            return signature
    return None
