"""
Inline Beacon Scripts

Generates the self-contained JavaScript payloads embedded in pages:

* the pixel script (bootstrap beacon, deferred render pixel and a one-shot
  mouse beacon);
* the mouse/click/scroll recorder script.

Both payloads carry their configuration as a JSON literal so the same
template is parameterized without string interpolation of user data.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from core.config import get_config
from core.params import BeaconParams, normalize_params

_CONFIG_PLACEHOLDER = "__BILDIT_CONFIG__"
_CONFIG_LINE = re.compile(r"^\s*var cfg = (?P<json>\{.*\});\s*$", re.MULTILINE)


PIXEL_SCRIPT_TEMPLATE = """(function(){
  try {
    var cfg = __BILDIT_CONFIG__;
    var baseParams = cfg.params || {};
    var pixelUrl = cfg.pixelUrl;
    var UA = (typeof navigator !== 'undefined' && navigator.userAgent) ? navigator.userAgent : 'unknown';

    try {
      if (typeof location !== 'undefined' && location.origin && baseParams.site == null) {
        baseParams.site = location.origin;
      }
    } catch (_) {}

    function mergeParams(extra) {
      var params = new URLSearchParams();
      for (var key in baseParams) {
        if (Object.prototype.hasOwnProperty.call(baseParams, key) && baseParams[key] != null) {
          params.append(key, String(baseParams[key]));
        }
      }
      if (extra) {
        for (var extraKey in extra) {
          if (Object.prototype.hasOwnProperty.call(extra, extraKey) && extra[extraKey] != null) {
            params.set(extraKey, String(extra[extraKey]));
          }
        }
      }
      return params.toString();
    }

    function pixelSrc(extra) {
      return pixelUrl + (pixelUrl.indexOf('?') === -1 ? '?' : '&') + mergeParams(extra);
    }

    function sendBeacon(extra, opts) {
      var url = pixelSrc(extra);
      if (opts && opts.method === 'fetch' && typeof fetch === 'function') {
        try {
          fetch(url, { method: 'GET', mode: 'no-cors', credentials: 'omit', keepalive: true }).catch(function(){});
          return;
        } catch (error) {}
      }
      try {
        var beaconImg = new Image(1, 1);
        beaconImg.src = url;
      } catch (error) {}
    }

    function appendPixel(extra) {
      var img = new Image(1, 1);
      img.alt = cfg.alt || '';
      img.decoding = 'async';
      img.loading = 'lazy';
      img.referrerPolicy = 'no-referrer-when-downgrade';
      img.style.position = 'absolute';
      img.style.width = '1px';
      img.style.height = '1px';
      img.style.border = '0';
      img.style.clip = 'rect(0, 0, 0, 0)';
      img.style.overflow = 'hidden';
      img.width = 1;
      img.height = 1;
      img.src = pixelSrc(extra);
      var target = document.body || document.documentElement;
      if (target) {
        target.appendChild(img);
      }
    }

    sendBeacon({ mode: 'script', event: 'bootstrap', ua: UA, ts: Date.now() }, { method: 'fetch' });

    function initPixel() {
      appendPixel({ mode: 'js-img', event: 'render', ts: Date.now(), r: Math.random().toString(36).slice(2), ua: UA });
    }

    if (document.readyState === 'loading') {
      document.addEventListener('DOMContentLoaded', initPixel, { once: true });
    } else {
      initPixel();
    }

    var mouseTracked = false;
    function handleMouseMove() {
      if (mouseTracked) return;
      mouseTracked = true;
      sendBeacon({ mode: 'script', event: 'mouse', mouse: '1', ua: UA, ts: Date.now() }, { method: 'fetch' });
      document.removeEventListener('mousemove', handleMouseMove, true);
    }
    document.addEventListener('mousemove', handleMouseMove, { once: true, capture: true, passive: true });
  } catch (error) {
    try {
      console.error('BILDITAIPixel inline script error:', error);
    } catch (err) {}
  }
})();"""


MOUSE_SCRIPT_TEMPLATE = """(function(){
  'use strict';
  try {
    var cfg = __BILDIT_CONFIG__;
    var pixelUrl = cfg.pixelUrl;
    var opts = cfg.options || {};
    var DURATION = Number(opts.duration) || 5000;
    var THROTTLE = Number(opts.throttle) || 1000;
    var MAX = Number(opts.maxMovements) || 10;
    var baseParams = opts.params || {};

    try {
      if (typeof location !== 'undefined' && location.origin && baseParams.site == null) {
        baseParams.site = location.origin;
      }
    } catch (_) {}

    var isRecording = false;
    var startTime = 0;
    var lastPing = 0;
    var stopTimer = null;
    var count = 0;
    var movements = [];

    function qs(extra){
      var sp = new URLSearchParams();
      for (var k in baseParams){ if (Object.prototype.hasOwnProperty.call(baseParams,k) && baseParams[k]!=null) sp.set(k, String(baseParams[k])); }
      if (extra){ for (var ek in extra){ if (Object.prototype.hasOwnProperty.call(extra,ek) && extra[ek]!=null) sp.set(ek, String(extra[ek])); } }
      if (!sp.has('ts')) sp.set('ts', Date.now().toString());
      if (!sp.has('nonce')) sp.set('nonce', Math.random().toString(36).slice(2));
      sp.set('mode','mouse');
      return sp.toString();
    }

    function send(extra){
      var now = Date.now();
      if (now - lastPing < THROTTLE) return;
      lastPing = now;
      var img = new Image(1,1);
      img.decoding = 'async';
      img.loading = 'lazy';
      img.referrerPolicy = 'no-referrer-when-downgrade';
      img.src = pixelUrl + (pixelUrl.indexOf('?')===-1?'?':'&') + qs(extra);
    }

    function start(){
      if (isRecording) return;
      isRecording = true;
      startTime = Date.now();
      count = 0;
      movements = [];
      send({ event:'mouse-start' });
      stopTimer = setTimeout(stop, DURATION);
    }

    function stop(){
      if (!isRecording) return;
      isRecording = false;
      if (stopTimer !== null) { clearTimeout(stopTimer); stopTimer = null; }
      var dur = Date.now() - startTime;
      var summary = movements.slice(0,5);
      try { summary = JSON.stringify(summary); } catch(e){ summary = '[]'; }
      send({ event:'mouse-end', dur: String(dur), moves: String(count), data: summary });
    }

    function onMove(e){
      if (!isRecording) start();
      count++;
      if (movements.length < MAX){
        movements.push({ x:e.clientX, y:e.clientY, t: Date.now()-startTime });
      }
      if (count % 5 === 0){
        send({ event:'mouse-update', c:String(count), t:String(Date.now()-startTime), x:String(e.clientX), y:String(e.clientY) });
      }
    }

    function onClick(e){
      if (!isRecording) start();
      send({ event:'mouse-click', x:String(e.clientX), y:String(e.clientY), b:String(e.button) });
    }

    function onScroll(){
      if (!isRecording) start();
      send({ event:'scroll', sx:String(window.scrollX||0), sy:String(window.scrollY||0) });
    }

    document.addEventListener('mousemove', onMove, { passive:true });
    document.addEventListener('click', onClick, { passive:true });
    window.addEventListener('scroll', onScroll, { passive:true });

    send({ event:'mouse-init', vw:String(window.innerWidth||0), vh:String(window.innerHeight||0) });

    try { window.BILDIT_MOUSE_DETECTION = { start:start, stop:stop }; } catch(_){}
  } catch (err) { try { console.error('BILDIT mouse script error', err); } catch(_){} }
})();"""


def serialize_config(payload: dict[str, Any]) -> str:
    """Serialize a config object as a JSON literal safe inside a <script> block."""
    return json.dumps(payload, ensure_ascii=True).replace("<", "\\u003c")


def extract_script_config(script: str) -> dict[str, Any]:
    """Recover the JSON config embedded in a generated script."""
    match = _CONFIG_LINE.search(script)
    if match is None:
        raise ValueError("Script does not carry an embedded BILDIT config")
    return json.loads(match.group("json"))


def build_pixel_inline_script(
    pixel_url: Optional[str] = None,
    params: Optional[BeaconParams] = None,
    alt: Optional[str] = None,
) -> str:
    """Build the bootstrap/render/mouse pixel script."""
    pixel_cfg = get_config().pixel
    payload = {
        "pixelUrl": pixel_url or pixel_cfg.url,
        "params": normalize_params(params),
        "alt": pixel_cfg.alt if alt is None else alt,
    }
    return PIXEL_SCRIPT_TEMPLATE.replace(_CONFIG_PLACEHOLDER, serialize_config(payload))


def build_mouse_detection_inline_script(
    pixel_url: Optional[str] = None,
    duration: Optional[int] = None,
    throttle: Optional[int] = None,
    max_movements: Optional[int] = None,
    params: Optional[BeaconParams] = None,
) -> str:
    """Build the mouse/click/scroll recorder script."""
    config = get_config()
    recorder = config.recorder
    payload = {
        "pixelUrl": pixel_url or config.pixel.url,
        "options": {
            "duration": duration or recorder.duration,
            "throttle": throttle or recorder.throttle,
            "maxMovements": max_movements or recorder.max_movements,
            "params": normalize_params(params),
        },
    }
    return MOUSE_SCRIPT_TEMPLATE.replace(_CONFIG_PLACEHOLDER, serialize_config(payload))
