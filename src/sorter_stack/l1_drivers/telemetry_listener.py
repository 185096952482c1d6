from __future__ import annotations

from typing import Optional
import codecs
import logging
import socket
import threading

from sorter_stack.l0_core.events import TelemetryLine, now_ms
from .link import BindError, LineCallback

DEFAULT_HOST = "0.0.0.0"
DEFAULT_READ_CHUNK = 4096
ACCEPT_POLL_S = 0.2   # accept() timeout; bounds how long stop() waits for the accept thread
READ_POLL_S = 0.2     # recv() timeout; bounds how long stop() waits for a reader
JOIN_TIMEOUT_S = 1.0
LISTENER_PEER = "listener"

log = logging.getLogger(__name__)


class TcpTelemetryListener:
    """
    Inbound telemetry link: the robot connects to us and writes text lines.

    - start(port) binds a listening socket and runs an accept thread.
    - Each accepted connection gets its own reader thread, so one slow or
      silent peer never blocks another (the robot may reconnect per cycle).
    - Readers decode UTF-8, split on '\\n' and hand every line to the single
      callback registered with set_reader(). All connections share it.
    - Bind failures and per-connection read errors are not raised; they are
      delivered through the same callback as TelemetryLine(diagnostic=True).
    - stop() unwinds the accept loop and all readers; after it returns no
      further lines from that session are delivered. start() may be called
      again afterwards, on the same port.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        accept_poll_s: float = ACCEPT_POLL_S,
        read_poll_s: float = READ_POLL_S,
        read_chunk: int = DEFAULT_READ_CHUNK,
    ) -> None:
        self._host = host
        self._accept_poll_s = accept_poll_s
        self._read_poll_s = read_poll_s
        self._read_chunk = read_chunk

        self._on_line: Optional[LineCallback] = None

        self._lifecycle_lock = threading.Lock()
        # held while delivering a line and while flipping the stop flag, so a
        # reader can never deliver after stop() has set it
        self._emit_lock = threading.Lock()

        self._server: Optional[socket.socket] = None
        self._port: Optional[int] = None
        self._stop_flag = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None

        self._conns_lock = threading.Lock()
        self._conns: dict[socket.socket, threading.Thread] = {}

    # ---- configuration ----
    def set_reader(self, on_line: Optional[LineCallback]) -> None:
        """
        Register or remove the callback for received lines.

        The callback runs on reader/accept threads; it must be quick and
        thread-safe (typically EventBus.publish).
        """
        self._on_line = on_line

    # ---- state ----
    def is_listening(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> Optional[int]:
        """The bound port (useful when started on port 0), None when stopped."""
        return self._port

    def connection_count(self) -> int:
        with self._conns_lock:
            return len(self._conns)

    # ---- lifecycle ----
    def start(self, port: int) -> bool:
        """
        Bind ``port`` and start accepting connections.

        Returns True when listening. Starting again on the active port is a
        no-op; a different port restarts the listener there. On a bind failure
        a diagnostic line is delivered, the listener stays stopped and False
        is returned so a later retry is possible.
        """
        with self._lifecycle_lock:
            if self._server is not None:
                if port in (0, self._port):
                    return True
                log.info("Telemetry listener moving from port %s to %d", self._port, port)
                self._stop_locked()

            try:
                server = self._bind(port)
            except BindError as e:
                log.error("%s", e)
                self._deliver(
                    TelemetryLine(now_ms(), LISTENER_PEER, f"ERROR: {e}", diagnostic=True),
                    None,
                )
                return False

            stop_flag = threading.Event()
            self._stop_flag = stop_flag
            self._server = server
            self._port = server.getsockname()[1]
            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                args=(server, stop_flag),
                name=f"telemetry-accept-{self._port}",
                daemon=True,
            )
            self._accept_thread.start()
            log.info("Telemetry listener bound on %s:%d", self._host, self._port)
            return True

    def stop(self) -> None:
        """Stop accepting and reading; safe to call when not started."""
        with self._lifecycle_lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._server is None:
            return

        with self._emit_lock:
            self._stop_flag.set()

        # wake readers blocked in recv()
        with self._conns_lock:
            conns = list(self._conns.items())
        for conn, _ in conns:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # already closed by the peer

        t = self._accept_thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=JOIN_TIMEOUT_S)
        self._accept_thread = None

        try:
            self._server.close()
        except OSError:
            log.exception("Error while closing telemetry listener socket")

        for _, reader in conns:
            if reader.is_alive() and reader is not threading.current_thread():
                reader.join(timeout=JOIN_TIMEOUT_S)

        log.info("Telemetry listener on port %s stopped", self._port)
        self._server = None
        self._port = None

    # ---- internals ----
    def _bind(self, port: int) -> socket.socket:
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server.bind((self._host, port))
            server.listen()
            server.settimeout(self._accept_poll_s)
        except OSError as e:
            server.close()
            raise BindError(port, f"Failed to bind telemetry port {port}: {e}") from e
        return server

    def _deliver(self, line: TelemetryLine, stop_flag: Optional[threading.Event]) -> None:
        with self._emit_lock:
            if stop_flag is not None and stop_flag.is_set():
                return
            cb = self._on_line
            if cb is None:
                return
            try:
                cb(line)
            except Exception:
                # keep the reader alive whatever the consumer does
                log.exception("telemetry line callback error")

    def _accept_loop(self, server: socket.socket, stop_flag: threading.Event) -> None:
        log.debug("accept loop started")
        while not stop_flag.is_set():
            try:
                conn, addr = server.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if stop_flag.is_set():
                    break
                log.warning("accept failed: %s", e)
                self._deliver(
                    TelemetryLine(now_ms(), LISTENER_PEER, f"ERROR: accept failed: {e}", diagnostic=True),
                    stop_flag,
                )
                stop_flag.wait(self._accept_poll_s)
                continue

            peer = f"{addr[0]}:{addr[1]}"
            conn.settimeout(self._read_poll_s)
            reader = threading.Thread(
                target=self._reader_loop,
                args=(conn, peer, stop_flag),
                name=f"telemetry-rx-{peer}",
                daemon=True,
            )
            with self._conns_lock:
                if stop_flag.is_set():
                    conn.close()
                    break
                self._conns[conn] = reader
            log.info("Telemetry connection from %s", peer)
            reader.start()
        log.debug("accept loop exiting")

    def _reader_loop(self, conn: socket.socket, peer: str, stop_flag: threading.Event) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        eof = False
        try:
            while not stop_flag.is_set():
                try:
                    chunk = conn.recv(self._read_chunk)
                except socket.timeout:
                    continue
                except OSError as e:
                    if not stop_flag.is_set():
                        log.warning("read error from %s: %s", peer, e)
                        self._deliver(
                            TelemetryLine(now_ms(), peer, f"ERROR: read failed from {peer}: {e}", diagnostic=True),
                            stop_flag,
                        )
                    break
                if not chunk:
                    eof = True
                    break
                pending += decoder.decode(chunk)
                while "\n" in pending:
                    line, pending = pending.split("\n", 1)
                    self._deliver(TelemetryLine(now_ms(), peer, line.rstrip("\r")), stop_flag)

            if eof:
                pending += decoder.decode(b"", final=True)
                if pending.strip():
                    self._deliver(TelemetryLine(now_ms(), peer, pending.rstrip("\r")), stop_flag)
        finally:
            with self._conns_lock:
                self._conns.pop(conn, None)
            conn.close()
            log.info("Telemetry connection from %s closed", peer)
