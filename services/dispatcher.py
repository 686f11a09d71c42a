"""
Server Beacon Dispatcher

Classifies an inbound request by its user agent and, when it comes from a
known AI crawler (or when forced), fires a best-effort server-side pixel
request on its behalf. Every outcome is reported as a
``BeaconDispatchResult``; the dispatcher never raises to its caller.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Optional, Protocol
from urllib.parse import urlsplit

import aiohttp

from core.config import Config, env_debug_enabled, get_config
from core.logger import DispatchLogger, get_logger
from core.params import BeaconParams, build_url, normalize_params, random_nonce, with_defaults
from services.classifier import BotSignature, identify_ai_bot
from services.utils.headers import HeaderLookup, as_header_lookup, snapshot_headers

logger = get_logger(__name__)

SOURCE_HEADER = "X-BILDIT-Source"

REASON_NON_BOT = "non-bot-user-agent"
REASON_FETCH_UNAVAILABLE = "fetch-unavailable"

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class TransportResponse:
    """Status of a completed pixel request."""

    status: int
    ok: bool


class Transport(Protocol):
    """Async callable performing the pixel request."""

    def __call__(
        self,
        url: str,
        *,
        method: str,
        headers: dict[str, str],
        redirect: str,
        **options: Any,
    ) -> Awaitable[TransportResponse]:
        ...


class AiohttpTransport:
    """Pixel requests over an aiohttp client session."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session

    async def __call__(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        redirect: str = "follow",
        **options: Any,
    ) -> TransportResponse:
        allow_redirects = redirect == "follow"
        if self._session is not None:
            return await self._request(self._session, url, method, headers, allow_redirects, options)
        async with aiohttp.ClientSession() as session:
            return await self._request(session, url, method, headers, allow_redirects, options)

    @staticmethod
    async def _request(
        session: aiohttp.ClientSession,
        url: str,
        method: str,
        headers: Optional[dict[str, str]],
        allow_redirects: bool,
        options: dict[str, Any],
    ) -> TransportResponse:
        async with session.request(
            method,
            url,
            headers=headers,
            allow_redirects=allow_redirects,
            **options,
        ) as response:
            return TransportResponse(status=response.status, ok=response.ok)


class DispatchOutcome(str, Enum):
    """Which branch of the result variant holds."""

    TRIGGERED = "triggered"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass(frozen=True)
class BeaconDispatchResult:
    """Outcome of a dispatch: triggered, skipped or errored."""

    triggered: bool
    status: Optional[int] = None
    ok: Optional[bool] = None
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    bot: Optional[str] = None

    @classmethod
    def success(cls, response: TransportResponse, **echo: Any) -> "BeaconDispatchResult":
        return cls(triggered=True, status=response.status, ok=response.ok, **echo)

    @classmethod
    def skip(cls, reason: str, **echo: Any) -> "BeaconDispatchResult":
        return cls(triggered=False, skipped=True, reason=reason, **echo)

    @classmethod
    def failure(cls, error: str, **echo: Any) -> "BeaconDispatchResult":
        return cls(triggered=False, error=error, **echo)

    @property
    def outcome(self) -> DispatchOutcome:
        if self.triggered:
            return DispatchOutcome.TRIGGERED
        if self.skipped:
            return DispatchOutcome.SKIPPED
        return DispatchOutcome.ERRORED

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, dropping unset fields."""
        data: dict[str, Any] = {"triggered": self.triggered}
        if self.skipped:
            data["skipped"] = True
        for key in ("status", "ok", "reason", "error", "url", "user_agent", "referer", "bot"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


# Headers the site fallback chain and classifier read
_CONTEXT_HEADERS = ("user-agent", "referer", "referrer", "x-forwarded-proto", "x-forwarded-host", "host")


@dataclass(frozen=True)
class BeaconRequestContext:
    """Identity signals extracted once from an inbound request."""

    user_agent: Optional[str] = None
    referer: Optional[str] = None
    headers: HeaderLookup = field(default_factory=lambda: as_header_lookup(None))
    url: Optional[str] = None

    @classmethod
    def from_request(
        cls,
        request: Any = None,
        *,
        headers: Any = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> "BeaconRequestContext":
        """
        Build a context from a request-like object.

        ``request`` may expose ``headers`` and ``url`` attributes, be a
        mapping with those keys, or be ``None``. Explicit ``headers``,
        ``user_agent`` and ``referer`` take precedence.
        """
        if isinstance(request, BeaconRequestContext):
            return cls(
                user_agent=user_agent or request.user_agent,
                referer=referer or request.referer,
                headers=as_header_lookup(headers) if headers is not None else request.headers,
                url=request.url,
            )

        raw_headers = headers
        if raw_headers is None:
            raw_headers = _request_attr(request, "headers")
        lookup = as_header_lookup(raw_headers)

        raw_url = _request_attr(request, "url")
        url = str(raw_url) if raw_url is not None else None

        return cls(
            user_agent=user_agent or lookup.get("user-agent"),
            referer=referer or lookup.get("referer") or lookup.get("referrer"),
            headers=lookup,
            url=url,
        )

    def detached(self) -> "BeaconRequestContext":
        """Copy headers into a plain mapping so the context outlives the request."""
        snapshot = snapshot_headers(self.headers)
        present = {name.lower() for name in snapshot}
        # Getter-only containers cannot be enumerated
        for name in _CONTEXT_HEADERS:
            if name not in present:
                value = self.headers.get(name)
                if value is not None:
                    snapshot[name] = value
        return BeaconRequestContext(
            user_agent=self.user_agent,
            referer=self.referer,
            headers=as_header_lookup(snapshot),
            url=self.url,
        )


def _request_attr(request: Any, name: str) -> Any:
    if request is None:
        return None
    # Attributes first: ASGI requests are also mappings over their scope
    value = getattr(request, name, None)
    if value is None and isinstance(request, Mapping):
        value = request.get(name)
    return value


def url_origin(url: Optional[str]) -> Optional[str]:
    """Return ``scheme://host[:port]`` for an absolute http(s) URL, else ``None``."""
    if not url:
        return None
    try:
        parts = urlsplit(str(url).strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in _DEFAULT_PORTS or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def resolve_site(context: BeaconRequestContext) -> Optional[str]:
    """
    Derive the site origin for a request.

    Tried in order: referer origin, request URL origin, forwarded
    proto/host headers, then the Host header.
    """
    origin = url_origin(context.referer)
    if origin:
        return origin

    origin = url_origin(context.url)
    if origin:
        return origin

    forwarded_host = context.headers.get("x-forwarded-host")
    if forwarded_host:
        proto = context.headers.get("x-forwarded-proto") or "https"
        # Proxies may append a list; the first entry is the client-facing hop
        proto = proto.split(",")[0].strip() or "https"
        return f"{proto}://{forwarded_host.split(',')[0].strip()}"

    host = context.headers.get("host")
    if host:
        return f"https://{host.strip()}"

    return None


def build_header_bag(
    extra_headers: Any,
    user_agent: Optional[str],
    source_marker: str,
) -> dict[str, str]:
    """Merge caller headers with the forced User-Agent echo and source marker."""
    bag: dict[str, str] = {}

    if isinstance(extra_headers, Mapping):
        items: Iterable[Any] = extra_headers.items()
    elif extra_headers is not None and not isinstance(extra_headers, (str, bytes)):
        items = extra_headers
    else:
        items = ()

    for pair in items:
        if not pair:
            continue
        key, value = pair[0], pair[1]
        if not key or value is None:
            continue
        bag[str(key)] = ", ".join(str(v) for v in value) if isinstance(value, (list, tuple)) else str(value)

    if user_agent:
        for key in [k for k in bag if k.lower() == "user-agent"]:
            del bag[key]
        bag["User-Agent"] = user_agent

    if not any(k.lower() == SOURCE_HEADER.lower() for k in bag):
        bag[SOURCE_HEADER] = source_marker

    return bag


_DEFAULT = object()


class BeaconDispatcher:
    """
    Server-side pixel dispatcher.

    Holds the configuration and transport; each ``dispatch`` call works on
    a fresh request context and never raises.
    """

    def __init__(self, config: Optional[Config] = None, transport: Any = _DEFAULT):
        self._config = config or get_config()
        if transport is _DEFAULT:
            transport = AiohttpTransport() if self._config.dispatch.network_enabled else None
        self._transport: Optional[Transport] = transport
        self._pending: set[asyncio.Task] = set()

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def build_params(
        self,
        context: BeaconRequestContext,
        bot: Optional[BotSignature],
        params: Optional[BeaconParams] = None,
    ) -> dict[str, str]:
        """Assemble the outgoing parameters, filling only what the caller left unset."""
        dispatch_cfg = self._config.dispatch
        normalized = normalize_params(
            with_defaults(
                params,
                component=dispatch_cfg.component,
                framework=dispatch_cfg.framework,
                source=dispatch_cfg.source,
            )
        )

        fills = {
            "mode": "server",
            "event": dispatch_cfg.event,
            "ts": str(int(time.time() * 1000)),
            "nonce": random_nonce(),
            "ua": context.user_agent,
            "referer": context.referer,
            "bot": bot.slug if bot else None,
        }
        for key, value in fills.items():
            if value and not normalized.get(key):
                normalized[key] = value

        if not normalized.get("site"):
            site = resolve_site(context)
            if site:
                normalized["site"] = site

        return normalized

    async def dispatch(
        self,
        request: Any = None,
        *,
        pixel_url: Optional[str] = None,
        params: Optional[BeaconParams] = None,
        require_bot_match: bool = True,
        force: bool = False,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
        headers: Any = None,
        fetch_options: Optional[Mapping[str, Any]] = None,
        debug: bool = False,
        transport: Any = _DEFAULT,
    ) -> BeaconDispatchResult:
        """
        Classify ``request`` and fire the server-side pixel when appropriate.

        Args:
            request: Request-like object exposing ``headers`` (and optionally ``url``)
            pixel_url: Endpoint override
            params: Extra beacon parameters
            require_bot_match: Skip requests from unrecognised user agents
            force: Dispatch regardless of classification
            user_agent: Explicit user agent override
            referer: Explicit referer override
            headers: Explicit header container override
            fetch_options: ``headers``, ``method``, ``redirect`` and transport keyword arguments
            debug: Emit verbose diagnostics
            transport: Transport override; ``None`` means no network capability

        Returns:
            A BeaconDispatchResult describing what happened
        """
        diagnostics = DispatchLogger(debug or self._config.debug or env_debug_enabled())

        context = BeaconRequestContext.from_request(
            request,
            headers=headers,
            user_agent=user_agent,
            referer=referer,
        )
        bot = identify_ai_bot(context.user_agent)
        echo = {"user_agent": context.user_agent, "referer": context.referer}

        diagnostics.detection(
            context.user_agent,
            context.referer,
            bot.slug if bot else None,
            force=force,
            require_bot_match=require_bot_match,
        )

        if not force and require_bot_match and bot is None:
            diagnostics.skipped(REASON_NON_BOT)
            return BeaconDispatchResult.skip(REASON_NON_BOT, **echo)

        outgoing = self.build_params(context, bot, params)
        url = build_url(pixel_url or self._config.pixel.url, outgoing)
        echo.update(url=url, bot=bot.slug if bot else None)

        active_transport = self._transport if transport is _DEFAULT else transport
        if active_transport is None:
            diagnostics.skipped(REASON_FETCH_UNAVAILABLE, url=url)
            return BeaconDispatchResult.skip(REASON_FETCH_UNAVAILABLE, **echo)

        options = dict(fetch_options or {})
        extra_headers = options.pop("headers", None)
        method = options.pop("method", None) or "GET"
        redirect = options.pop("redirect", None) or "follow"
        header_bag = build_header_bag(extra_headers, context.user_agent, self._config.dispatch.source_header)

        diagnostics.request(url, headers=header_bag, bot=echo["bot"], params=outgoing)

        try:
            response = await active_transport(
                url,
                method=method,
                headers=header_bag,
                redirect=redirect,
                **options,
            )
        except Exception as e:
            error = str(e) or e.__class__.__name__
            diagnostics.failure(url, error, bot=echo["bot"])
            return BeaconDispatchResult.failure(error, **echo)

        diagnostics.success(url, response.status, response.ok, bot=echo["bot"])
        return BeaconDispatchResult.success(response, **echo)

    def fire_and_forget(self, request: Any = None, **options: Any) -> asyncio.Task:
        """
        Schedule ``dispatch`` without awaiting it.

        The request's headers are copied first, so the task does not depend
        on the request object staying alive.
        """
        context = BeaconRequestContext.from_request(
            request,
            headers=options.pop("headers", None),
            user_agent=options.pop("user_agent", None),
            referer=options.pop("referer", None),
        ).detached()

        task = asyncio.get_running_loop().create_task(self.dispatch(context, **options))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for scheduled dispatches to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_dispatcher: Optional[BeaconDispatcher] = None


def get_dispatcher() -> BeaconDispatcher:
    """Get the shared dispatcher built from the cached configuration."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = BeaconDispatcher()
    return _dispatcher


async def track_ai_bot_request(request: Any = None, **options: Any) -> BeaconDispatchResult:
    """Dispatch through the shared dispatcher; see ``BeaconDispatcher.dispatch``."""
    return await get_dispatcher().dispatch(request, **options)
