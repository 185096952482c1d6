from __future__ import annotations
"""
Control HTTP Bridge
===================
Small boundary adapter that lets an operator surface (web page, script, the
control_post.py client) drive the sorter over HTTP on localhost.

Design intent:
- Keep HTTP concerns outside the domain. Requests are validated here and
  turned into typed commands dispatched through the CommandBus.
- Protect the trust boundary: require and cap Content-Length, require JSON,
  validate action names and fields.

Accepted POST payloads (one JSON object per request):
  {"action":"sort_all"}
  {"action":"cancel"}
  {"action":"sort","color":"red"}
  {"action":"adjust","color":"green","delta":-1}

Read-only GET paths:
  /counts   {"RED": 3, "GREEN": 0, "BLUE": 7}
  /log      {"lines": [...]}          (optional ?last=N)
  /status   {"listening": true, "sequence": "running", "tasks": {...}, "queues": {...}}
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from sorter_stack.l0_core.events import (
    AdjustCountCmd,
    CancelSequenceCmd,
    Color,
    SendScriptCmd,
    StartSequenceCmd,
)
from sorter_stack.l3_domain.runtime import SorterRuntime

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8766
DEFAULT_MAX_BODY_BYTES = 4 * 1024

log = logging.getLogger(__name__)


class ControlHttpBridge:
    """
    Purpose:
        Accept tiny JSON posts and turn them into sorter commands.

    Threading model:
        ThreadingHTTPServer handles each request on its own short-lived thread.
        Commands that touch sequencer state are re-published on the EventBus
        by their CommandBus handlers, so no request thread mutates it.

    Lifecycle:
        start() → starts background server thread.
        stop()  → shuts down server and joins the thread.
    """

    def __init__(
        self,
        runtime: SorterRuntime,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        self._runtime = runtime
        self._max_body = max_body_bytes
        self._server = ThreadingHTTPServer((host, port), self._make_handler())
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="ControlHttpBridge", daemon=True
        )

    @property
    def address(self) -> tuple[str, int]:
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        self._thread.start()
        log.info("Control bridge on http://%s:%d", *self.address)

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=1.0)

    # ---- request dispatch (request thread) ----
    def dispatch(self, msg: dict) -> tuple[int, dict]:
        """
        Validate one action payload and run it. Returns (HTTP status, JSON body).

        Kept separate from the handler class so it can be exercised directly.
        """
        rt = self._runtime
        action = str(msg.get("action", "")).strip().lower()

        if action == "sort_all":
            ok = rt.commandbus.call(StartSequenceCmd(reason="http"))
            if not ok:
                return 409, {"error": "telemetry listener not bound or bus saturated"}
            return 202, {"accepted": "sort_all"}

        if action == "cancel":
            rt.commandbus.call(CancelSequenceCmd(reason="http"))
            return 202, {"accepted": "cancel"}

        if action in ("sort", "adjust"):
            color = Color.parse(str(msg.get("color", "")))
            if color is None:
                return 422, {"error": "color must be one of red, green, blue"}

            if action == "sort":
                script_id = rt.script_for(color)
                rt.commandbus.call(SendScriptCmd(script_id))
                return 202, {"accepted": "sort", "script": script_id}

            delta = msg.get("delta")
            if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
                return 422, {"error": "delta must be a non-zero integer"}
            if not rt.commandbus.call(AdjustCountCmd(color, delta)):
                return 503, {"error": "inventory queue saturated; try later"}
            return 202, {"accepted": "adjust", "color": color.value, "delta": delta}

        return 404, {"error": f"unknown action {action!r}"}

    def query(self, path: str, params: dict[str, list[str]]) -> tuple[int, dict]:
        rt = self._runtime
        if path == "/counts":
            return 200, {color.value: n for color, n in rt.counts().items()}
        if path == "/log":
            last = None
            if params.get("last"):
                try:
                    last = max(1, int(params["last"][0]))
                except ValueError:
                    return 422, {"error": "last must be an integer"}
            return 200, {"lines": rt.telemetry_log.snapshot(last)}
        if path == "/status":
            tasks = {
                name: {"state": s.state.value, "details": dict(s.details)}
                for name, s in rt.status().items()
            }
            return 200, {
                "listening": rt.link.listening,
                "sequence": rt.sequencer.state.value,
                "tasks": tasks,
                "queues": {
                    s.name: {"size": s.size, "capacity": s.capacity, "dropped": s.dropped}
                    for s in (rt.eventbus.stats(), rt.updater.stats())
                },
            }
        return 404, {"error": "not found"}

    # ---- internals (request handling) ----
    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        bridge = self  # capture for closure

        class Handler(BaseHTTPRequestHandler):
            """Per-request handler bound to the enclosing bridge."""

            def _reply(self, code: int, body: dict) -> None:
                data = json.dumps(body).encode("utf-8")
                self.send_response(code)
                self.send_header("Content-Type", "application/json; charset=utf-8")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                try:
                    self.wfile.write(data)
                except OSError:
                    log.debug("client went away before the reply was written")

            def do_GET(self) -> None:  # noqa: N802 (httpserver naming)
                url = urlparse(self.path)
                code, body = bridge.query(url.path.rstrip("/") or "/", parse_qs(url.query))
                self._reply(code, body)

            def do_POST(self) -> None:  # noqa: N802 (httpserver naming)
                try:
                    n = int(self.headers.get("Content-Length", ""))
                except ValueError:
                    return self._reply(411, {"error": "length required"})
                if n <= 0 or n > bridge._max_body:
                    return self._reply(413, {"error": "payload too large"})

                content_type = (self.headers.get("Content-Type") or "").lower()
                if content_type and "json" not in content_type:
                    return self._reply(415, {"error": "unsupported media type"})

                try:
                    msg = json.loads(self.rfile.read(n).decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    return self._reply(400, {"error": "invalid json"})
                if not isinstance(msg, dict):
                    return self._reply(400, {"error": "expected a JSON object"})

                try:
                    code, body = bridge.dispatch(msg)
                except Exception as e:
                    log.exception("control action failed: %r", msg)
                    code, body = 500, {"error": str(e)}
                return self._reply(code, body)

            def log_message(self, fmt: str, *args: Any) -> None:
                log.debug("http %s - " + fmt, self.address_string(), *args)

        return Handler
