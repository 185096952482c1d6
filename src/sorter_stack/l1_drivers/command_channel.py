from __future__ import annotations

from typing import Optional
import logging
import socket
import time

from .link import (
    ScriptSource,
    ScriptSourceUnavailable,
    TransmissionError,
    TransmissionReason,
)

DEFAULT_GRACE_S = 0.2           # keep the socket open so the robot reads the whole script
DEFAULT_CONNECT_TIMEOUT_S = 3.0

log = logging.getLogger(__name__)


class TcpCommandChannel:
    """
    Outbound command link to the robot's fixed script endpoint.

    Every send opens a fresh TCP connection, writes the script body followed by
    one newline, waits a short grace period and closes. Nothing is read back on
    this connection; completion is reported on the telemetry link instead.

    Current capabilities:
    - send(body): transmit raw script bytes.
    - send_script(script_id): resolve the body through a ScriptSource first.

    No retries. Each call is independent, so concurrent sends from several
    threads are safe (they simply use separate connections).
    """

    def __init__(
        self,
        host: str,
        port: int,
        source: Optional[ScriptSource] = None,
        grace_s: float = DEFAULT_GRACE_S,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
    ) -> None:
        self._host = host
        self._port = port
        self._source = source
        self._grace_s = grace_s
        self._connect_timeout_s = connect_timeout_s

    @property
    def endpoint(self) -> tuple[str, int]:
        return self._host, self._port

    def send_script(self, script_id: str) -> None:
        """
        Load ``script_id`` from the script source and transmit it.

        Raises:
            TransmissionError: reason SOURCE_UNAVAILABLE when the body cannot be
                loaded (or no source is configured), otherwise as for send().
        """
        if self._source is None:
            raise TransmissionError(
                TransmissionReason.SOURCE_UNAVAILABLE,
                "no script source configured",
                script_id=script_id,
            )
        try:
            body = self._source.load(script_id)
        except ScriptSourceUnavailable as e:
            raise TransmissionError(
                TransmissionReason.SOURCE_UNAVAILABLE, str(e), script_id=script_id
            ) from e
        self.send(body, script_id=script_id)

    def send(self, body: bytes | str, script_id: str | None = None) -> None:
        """
        Transmit ``body`` plus a single trailing newline and close.

        Workflow:
            1. Connect to the configured host/port (bounded by the connect timeout).
            2. sendall(body + b"\\n").
            3. Hold the connection for the grace period, then close.

        Raises:
            TransmissionError: CONNECT_FAILED if the endpoint cannot be reached,
                WRITE_FAILED if the write fails part-way.
        """
        payload = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        payload += b"\n"

        try:
            sock = socket.create_connection(
                (self._host, self._port), timeout=self._connect_timeout_s
            )
        except OSError as e:
            raise TransmissionError(
                TransmissionReason.CONNECT_FAILED,
                f"Failed to connect to {self._host}:{self._port}: {e}",
                script_id=script_id,
            ) from e

        with sock:
            try:
                sock.sendall(payload)
            except OSError as e:
                raise TransmissionError(
                    TransmissionReason.WRITE_FAILED,
                    f"Write failed to {self._host}:{self._port}: {e}",
                    script_id=script_id,
                ) from e
            log.debug("sent %d bytes (%s) to %s:%d", len(payload), script_id, self._host, self._port)
            if self._grace_s > 0:
                time.sleep(self._grace_s)
