"""
Pytest configuration and fixtures for BILDIT pixel tests.
"""

import json
import os
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlsplit

import pytest
from py_mini_racer import MiniRacer

# Set test environment
os.environ["BILDIT_ENV"] = "testing"
os.environ.pop("BILDIT_DEBUG", None)

from core.config import Config, reload_config
from services.dispatcher import BeaconDispatcher, TransportResponse


class RecordingTransport:
    """Transport double that records every pixel request."""

    def __init__(self, status: int = 200, error: Optional[Exception] = None):
        self.status = status
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, url: str, **kwargs: Any) -> TransportResponse:
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return TransportResponse(status=self.status, ok=200 <= self.status < 400)


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], Any]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timer scheduler driven by a ManualClock."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.timers: list[ManualTimer] = []

    def __call__(self, delay_ms: float, callback: Callable[[], Any]) -> ManualTimer:
        timer = ManualTimer(self.clock.now + delay_ms, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, ms: float) -> None:
        """Advance the clock, firing timers that come due."""
        target = self.clock.now + ms
        while True:
            due = sorted(
                (t for t in self.pending if t.due <= target),
                key=lambda t: t.due,
            )
            if not due:
                break
            timer = due[0]
            self.clock.now = timer.due
            timer.cancelled = True
            timer.callback()
        self.clock.now = target


# Fake page for running generated payloads: manual clock and timers, Image
# beacons, listener registry and a deterministic URLSearchParams.
PAGE_HARNESS = r"""
function makeEnv(opts) {
  var clock = { now: opts.start };
  var timers = [];
  var timerSeq = 0;
  var records = [];
  var listeners = [];
  var errors = [];

  function setTimeout(fn, ms) {
    timerSeq += 1;
    timers.push({ id: timerSeq, due: clock.now + (Number(ms) || 0), fn: fn });
    return timerSeq;
  }

  function clearTimeout(id) {
    timers = timers.filter(function (t) { return t.id !== id; });
  }

  function advance(ms) {
    var target = clock.now + ms;
    for (;;) {
      var due = timers.filter(function (t) { return t.due <= target; });
      if (!due.length) break;
      due.sort(function (a, b) { return (a.due - b.due) || (a.id - b.id); });
      var timer = due[0];
      clearTimeout(timer.id);
      clock.now = timer.due;
      timer.fn();
    }
    clock.now = target;
  }

  function Image(width, height) {
    this.width = width;
    this.height = height;
    this.style = {};
    this.appended = false;
  }
  Object.defineProperty(Image.prototype, 'src', {
    get: function () { return this._src; },
    set: function (value) {
      this._src = value;
      records.push({ kind: 'image', url: String(value), at: clock.now, img: this });
    }
  });

  function fetch(url, init) {
    records.push({ kind: 'fetch', url: String(url), at: clock.now, init: init });
    return { catch: function () { return this; } };
  }

  function URLSearchParams() { this.pairs = []; }
  URLSearchParams.prototype.append = function (k, v) { this.pairs.push([String(k), String(v)]); };
  URLSearchParams.prototype.set = function (k, v) {
    k = String(k);
    v = String(v);
    var out = [];
    var placed = false;
    this.pairs.forEach(function (p) {
      if (p[0] !== k) {
        out.push(p);
      } else if (!placed) {
        out.push([k, v]);
        placed = true;
      }
    });
    if (!placed) out.push([k, v]);
    this.pairs = out;
  };
  URLSearchParams.prototype.has = function (k) {
    k = String(k);
    return this.pairs.some(function (p) { return p[0] === k; });
  };
  URLSearchParams.prototype.toString = function () {
    function enc(s) { return encodeURIComponent(s).replace(/%20/g, '+'); }
    return this.pairs.map(function (p) { return enc(p[0]) + '=' + enc(p[1]); }).join('&');
  };

  function addListener(target) {
    return function (type, fn, options) {
      var once = !!(options && typeof options === 'object' && options.once);
      listeners.push({ target: target, type: type, fn: fn, once: once });
    };
  }

  function removeListener(target) {
    return function (type, fn) {
      listeners = listeners.filter(function (l) {
        return !(l.target === target && l.type === type && l.fn === fn);
      });
    };
  }

  function dispatch(target, type, event) {
    var matched = listeners.filter(function (l) { return l.target === target && l.type === type; });
    matched.forEach(function (l) {
      if (listeners.indexOf(l) === -1) return;
      if (l.once) {
        listeners = listeners.filter(function (other) { return other !== l; });
      }
      l.fn(event || {});
    });
  }

  function listenerCount(target, type) {
    return listeners.filter(function (l) { return l.target === target && l.type === type; }).length;
  }

  function beacons() {
    return records.map(function (r) {
      var transport = r.kind === 'fetch' ? 'fetch' : (r.img.appended ? 'pixel' : 'image');
      return { transport: transport, url: r.url, at: r.at };
    });
  }

  var document = {
    readyState: opts.readyState,
    body: { appendChild: function (el) { el.appended = true; } },
    documentElement: null,
    addEventListener: addListener('document'),
    removeEventListener: removeListener('document')
  };
  var window = {
    innerWidth: opts.innerWidth,
    innerHeight: opts.innerHeight,
    scrollX: 0,
    scrollY: 0,
    addEventListener: addListener('window'),
    removeEventListener: removeListener('window')
  };
  var navigator = { userAgent: opts.userAgent };
  var location = opts.origin ? { origin: opts.origin } : {};
  var FakeDate = { now: function () { return clock.now; } };
  var console = {
    error: function () { errors.push(Array.prototype.map.call(arguments, String).join(' ')); }
  };

  return {
    clock: clock,
    document: document,
    window: window,
    advance: advance,
    dispatch: dispatch,
    listenerCount: listenerCount,
    beacons: beacons,
    errors: function () { return errors; },
    globals: [setTimeout, clearTimeout, document, window, navigator, location, Image,
              opts.fetch ? fetch : undefined, URLSearchParams, FakeDate, console]
  };
}
"""

_PAYLOAD_WRAPPER = (
    "(function (setTimeout, clearTimeout, document, window, navigator, location, "
    "Image, fetch, URLSearchParams, Date, console) {\n%s\n}).apply(null, env.globals);"
)


class ScriptRuntime:
    """Runs a generated payload in an embedded V8 against a fake page."""

    def __init__(
        self,
        script: str,
        *,
        ready_state: str = "complete",
        fetch_available: bool = True,
        user_agent: str = "TestAgent/1.0",
        origin: Optional[str] = "https://shop.example",
        viewport: tuple[int, int] = (1280, 720),
        start: int = 1_700_000_000_000,
    ):
        options = {
            "start": start,
            "readyState": ready_state,
            "fetch": fetch_available,
            "userAgent": user_agent,
            "origin": origin,
            "innerWidth": viewport[0],
            "innerHeight": viewport[1],
        }
        self._ctx = MiniRacer()
        self._ctx.eval(PAGE_HARNESS)
        self._ctx.eval(f"var env = makeEnv({json.dumps(options)});")
        self._ctx.eval(_PAYLOAD_WRAPPER % script)

    def _read(self, expression: str) -> Any:
        return json.loads(self._ctx.eval(f"JSON.stringify({expression})"))

    def _dispatch(self, target: str, event_type: str, event: Optional[dict] = None) -> None:
        self._ctx.eval(f"env.dispatch({json.dumps(target)}, {json.dumps(event_type)}, {json.dumps(event or {})});")

    @property
    def now(self) -> int:
        return self._read("env.clock.now")

    @property
    def beacons(self) -> list[dict[str, Any]]:
        beacons = self._read("env.beacons()")
        for beacon in beacons:
            beacon["params"] = dict(parse_qsl(urlsplit(beacon["url"]).query, keep_blank_values=True))
        return beacons

    @property
    def events(self) -> list[Optional[str]]:
        return [beacon["params"].get("event") for beacon in self.beacons]

    @property
    def errors(self) -> list[str]:
        return self._read("env.errors()")

    def advance(self, ms: int) -> None:
        self._ctx.eval(f"env.advance({int(ms)});")

    def listener_count(self, target: str, event_type: str) -> int:
        return self._read(f"env.listenerCount({json.dumps(target)}, {json.dumps(event_type)})")

    def document_ready(self) -> None:
        self._ctx.eval("env.document.readyState = 'interactive';")
        self._dispatch("document", "DOMContentLoaded")

    def mouse_move(self, x: int, y: int) -> None:
        self._dispatch("document", "mousemove", {"clientX": x, "clientY": y})

    def click(self, x: int, y: int, button: int = 0) -> None:
        self._dispatch("document", "click", {"clientX": x, "clientY": y, "button": button})

    def scroll(self, x: int, y: int) -> None:
        self._ctx.eval(f"env.window.scrollX = {int(x)}; env.window.scrollY = {int(y)};")
        self._dispatch("window", "scroll")

    def recorder(self, action: str) -> None:
        """Call ``start`` or ``stop`` on the recorder's page-level controls."""
        self._ctx.eval(f"env.window.BILDIT_MOUSE_DETECTION.{action}();")


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch) -> Config:
    """Reload configuration from a clean environment for every test."""
    for key in list(os.environ):
        if key.startswith(("BILDIT_PIXEL_", "BILDIT_RECORDER_", "BILDIT_DISPATCH_", "BILDIT_BOTS_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("BILDIT_DEBUG", raising=False)
    monkeypatch.delenv("BILDIT_CONFIG", raising=False)
    config = reload_config()
    yield config
    reload_config()


@pytest.fixture
def test_config() -> Config:
    """Create a test configuration."""
    return Config(env="testing", debug=False)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def transport_factory():
    return RecordingTransport


@pytest.fixture
def dispatcher(test_config, transport) -> BeaconDispatcher:
    return BeaconDispatcher(test_config, transport=transport)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def bot_user_agents() -> dict:
    """Representative AI crawler user agents keyed by expected slug."""
    return {
        "openai-gptbot": "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; GPTBot/1.2; +https://openai.com/gptbot)",
        "openai-chatgpt": "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko); compatible; ChatGPT-User/1.0; +https://openai.com/bot",
        "anthropic-claudebot": "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; ClaudeBot/1.0; +claudebot@anthropic.com)",
        "perplexity": "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; PerplexityBot/1.0; +https://perplexity.ai/perplexitybot)",
        "google-gemini": "Mozilla/5.0 (compatible; Google-Extended)",
        "bing-copilot": "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
        "meta-ai": "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)",
        "xai-grok": "Mozilla/5.0 (compatible; Grok/1.0)",
        "baidu-ernie": "Mozilla/5.0 (compatible; Baiduspider/2.0; +http://www.baidu.com/search/spider.html)",
        "kimi-moonshot": "Mozilla/5.0 (compatible; MoonshotBot/1.0)",
        "deepseek": "Mozilla/5.0 (compatible; DeepSeekBot/1.0)",
        "generic-ai": "SomeVendor AI-Agent/0.1",
    }


@pytest.fixture
def run_script() -> Callable[..., ScriptRuntime]:
    """Factory running a generated payload on a fresh fake page."""
    return ScriptRuntime
