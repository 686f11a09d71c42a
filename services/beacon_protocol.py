"""
Beacon Protocol Models

Executable state machines mirroring the generated inline scripts, driven by
an injectable millisecond clock, timer scheduler and send sink. They pin
down the ordering, one-shot and throttling behaviour of the in-browser
protocols independently of the JavaScript text.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from core.config import get_config
from core.logger import get_logger
from core.params import BeaconParams, build_url, merge_params, normalize_params, random_nonce, stringify

logger = get_logger(__name__)

Clock = Callable[[], float]
Scheduler = Callable[[float, Callable[[], Any]], Any]
Sink = Callable[[str, str], Any]

SUMMARY_SIZE = 5
UPDATE_EVERY = 5


def wall_clock_ms() -> float:
    return time.time() * 1000


def asyncio_scheduler(delay_ms: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
    """Schedule ``callback`` on the running event loop."""
    return asyncio.get_running_loop().call_later(delay_ms / 1000, callback)


class BeaconTransport(str, Enum):
    """How a beacon left the page."""

    FETCH = "fetch"
    IMAGE = "image"
    PIXEL = "pixel"


@dataclass
class SentBeacon:
    """A beacon handed to the send sink."""

    transport: BeaconTransport
    url: str
    params: dict[str, str]

    @property
    def event(self) -> Optional[str]:
        return self.params.get("event")


def _site_default(params: Optional[BeaconParams], origin: Optional[str]) -> dict[str, str]:
    base = normalize_params(params)
    if origin and "site" not in base:
        base["site"] = origin
    return base


class PixelScriptSession:
    """
    One run of the pixel script on a page.

    ``run`` sends the bootstrap beacon, then renders the pixel immediately
    when the document is ready or waits for ``document_ready``. The first
    ``mouse_move`` sends a single mouse beacon; later moves are ignored.
    """

    def __init__(
        self,
        pixel_url: Optional[str] = None,
        params: Optional[BeaconParams] = None,
        *,
        user_agent: str = "unknown",
        origin: Optional[str] = None,
        fetch_available: bool = True,
        send: Optional[Sink] = None,
        clock: Optional[Clock] = None,
        nonce: Callable[[], str] = random_nonce,
    ):
        self._pixel_url = pixel_url or get_config().pixel.url
        self._base = _site_default(params, origin)
        self._user_agent = user_agent
        self._fetch_available = fetch_available
        self._send_sink = send
        self._clock = clock or wall_clock_ms
        self._nonce = nonce
        self._rendered = False
        self._waiting_for_ready = False
        self._mouse_tracked = False
        self.sent: list[SentBeacon] = []

    @property
    def mouse_tracked(self) -> bool:
        return self._mouse_tracked

    def run(self, document_loading: bool = False) -> None:
        self._send(
            {"mode": "script", "event": "bootstrap", "ua": self._user_agent, "ts": self._now()},
            BeaconTransport.FETCH,
        )
        if document_loading:
            self._waiting_for_ready = True
        else:
            self._render()

    def document_ready(self) -> None:
        if self._waiting_for_ready:
            self._waiting_for_ready = False
            self._render()

    def mouse_move(self) -> None:
        if self._mouse_tracked:
            return
        self._mouse_tracked = True
        self._send(
            {"mode": "script", "event": "mouse", "mouse": "1", "ua": self._user_agent, "ts": self._now()},
            BeaconTransport.FETCH,
        )

    def _render(self) -> None:
        if self._rendered:
            return
        self._rendered = True
        self._send(
            {
                "mode": "js-img",
                "event": "render",
                "ts": self._now(),
                "r": self._nonce(),
                "ua": self._user_agent,
            },
            BeaconTransport.PIXEL,
        )

    def _now(self) -> str:
        return stringify(int(self._clock()))

    def _send(self, extra: dict[str, Any], transport: BeaconTransport) -> None:
        if transport is BeaconTransport.FETCH and not self._fetch_available:
            transport = BeaconTransport.IMAGE
        params = merge_params(self._base, extra)
        beacon = SentBeacon(transport=transport, url=build_url(self._pixel_url, params), params=params)
        self.sent.append(beacon)
        if self._send_sink is None:
            return
        try:
            self._send_sink(beacon.url, transport.value)
        except Exception as e:
            logger.error("pixel_script_error", error=str(e), event=beacon.event)


class RecorderState(str, Enum):
    """Recorder lifecycle states."""

    IDLE = "idle"
    RECORDING = "recording"


@dataclass
class Movement:
    """A recorded pointer sample, ``t`` is ms since recording started."""

    x: float
    y: float
    t: float

    def to_dict(self) -> dict[str, Any]:
        return {"x": self.x, "y": self.y, "t": self.t}


class MouseRecorder:
    """
    Mouse/click/scroll recorder.

    The first movement, click or scroll starts a recording session that
    ends automatically after ``duration`` ms. Every send, whatever its
    event, is suppressed when it lands within ``throttle`` ms of the
    previous successful send.
    """

    def __init__(
        self,
        pixel_url: Optional[str] = None,
        *,
        duration: Optional[int] = None,
        throttle: Optional[int] = None,
        max_movements: Optional[int] = None,
        params: Optional[BeaconParams] = None,
        origin: Optional[str] = None,
        send: Optional[Sink] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        nonce: Callable[[], str] = random_nonce,
    ):
        config = get_config()
        self._pixel_url = pixel_url or config.pixel.url
        self._duration = duration or config.recorder.duration
        self._throttle = throttle or config.recorder.throttle
        self._max_movements = max_movements or config.recorder.max_movements
        self._base = _site_default(params, origin)
        self._send_sink = send
        self._clock = clock or wall_clock_ms
        self._scheduler = scheduler or asyncio_scheduler
        self._nonce = nonce

        self._state = RecorderState.IDLE
        self._start_time = 0.0
        self._last_send: Optional[float] = None
        self._timer: Any = None
        self._count = 0
        self._movements: list[Movement] = []
        self.sent: list[SentBeacon] = []

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    @property
    def count(self) -> int:
        return self._count

    @property
    def movements(self) -> list[Movement]:
        return list(self._movements)

    def init(self, viewport_width: int = 0, viewport_height: int = 0) -> bool:
        """Send the one-off environment beacon."""
        return self._send({"event": "mouse-init", "vw": viewport_width, "vh": viewport_height})

    def start(self) -> None:
        if self.is_recording:
            return
        self._state = RecorderState.RECORDING
        self._start_time = self._clock()
        self._count = 0
        self._movements = []
        self._send({"event": "mouse-start"})
        self._timer = self._scheduler(self._duration, self.stop)

    def stop(self) -> None:
        if not self.is_recording:
            return
        self._state = RecorderState.IDLE
        self._cancel_timer()
        elapsed = self._clock() - self._start_time
        summary = json.dumps(
            [m.to_dict() for m in self._movements[:SUMMARY_SIZE]],
            separators=(",", ":"),
        )
        self._send({"event": "mouse-end", "dur": int(elapsed), "moves": self._count, "data": summary})

    def mouse_move(self, x: float, y: float) -> None:
        if not self.is_recording:
            self.start()
        self._count += 1
        elapsed = self._elapsed()
        if len(self._movements) < self._max_movements:
            self._movements.append(Movement(x=x, y=y, t=elapsed))
        if self._count % UPDATE_EVERY == 0:
            self._send({"event": "mouse-update", "c": self._count, "t": int(elapsed), "x": x, "y": y})

    def click(self, x: float, y: float, button: int = 0) -> None:
        if not self.is_recording:
            self.start()
        self._send({"event": "mouse-click", "x": x, "y": y, "b": button})

    def scroll(self, scroll_x: float = 0, scroll_y: float = 0) -> None:
        if not self.is_recording:
            self.start()
        self._send({"event": "scroll", "sx": scroll_x, "sy": scroll_y})

    def _elapsed(self) -> float:
        return self._clock() - self._start_time

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        cancel = getattr(timer, "cancel", None)
        if callable(cancel):
            cancel()

    def _send(self, extra: dict[str, Any]) -> bool:
        now = self._clock()
        if self._last_send is not None and now - self._last_send < self._throttle:
            return False
        self._last_send = now

        params = merge_params(self._base, extra)
        params.setdefault("ts", stringify(int(now)))
        params.setdefault("nonce", self._nonce())
        params["mode"] = "mouse"

        beacon = SentBeacon(transport=BeaconTransport.IMAGE, url=build_url(self._pixel_url, params), params=params)
        self.sent.append(beacon)
        if self._send_sink is not None:
            try:
                self._send_sink(beacon.url, beacon.transport.value)
            except Exception as e:
                logger.error("mouse_recorder_error", error=str(e), event=beacon.event)
        return True
