import socket
import threading
import time

import pytest

from conftest import wait_until
from sorter_stack.l1_drivers.telemetry_listener import TcpTelemetryListener


class Collector:
    def __init__(self):
        self.lines = []
        self._lock = threading.Lock()

    def __call__(self, line):
        with self._lock:
            self.lines.append(line)

    def texts(self):
        with self._lock:
            return [ln.text for ln in self.lines if not ln.diagnostic]

    def diagnostics(self):
        with self._lock:
            return [ln for ln in self.lines if ln.diagnostic]


@pytest.fixture
def listener():
    lst = TcpTelemetryListener(host="127.0.0.1", accept_poll_s=0.05, read_poll_s=0.05)
    yield lst
    lst.stop()


def connect(port):
    return socket.create_connection(("127.0.0.1", port), timeout=2.0)


def test_lines_are_split_and_delivered(listener):
    got = Collector()
    listener.set_reader(got)
    assert listener.start(0) is True
    port = listener.port
    assert port

    with connect(port) as c:
        c.sendall(b"RUN blaa_26 END\r\nSTEP Pl")
        c.sendall(b"ace DONE color=RED\n")
        c.sendall("DATA EyesWorkpCount=4\npartial".encode("utf-8"))

    assert wait_until(lambda: len(got.texts()) == 4)
    assert got.texts() == [
        "RUN blaa_26 END",
        "STEP Place DONE color=RED",
        "DATA EyesWorkpCount=4",
        "partial",   # unterminated tail is flushed at end of stream
    ]
    assert got.lines[0].peer.startswith("127.0.0.1:")


def test_several_connections_are_served_at_once(listener):
    got = Collector()
    listener.set_reader(got)
    listener.start(0)

    a = connect(listener.port)
    b = connect(listener.port)
    try:
        assert wait_until(lambda: listener.connection_count() == 2)
        b.sendall(b"from b\n")
        a.sendall(b"from a\n")
        assert wait_until(lambda: sorted(got.texts()) == ["from a", "from b"])
    finally:
        a.close()
        b.close()


def test_invalid_utf8_is_replaced(listener):
    got = Collector()
    listener.set_reader(got)
    listener.start(0)
    with connect(listener.port) as c:
        c.sendall(b"bad \xff byte\n")
    assert wait_until(lambda: got.texts() == ["bad � byte"])


def test_no_delivery_after_stop(listener):
    got = Collector()
    listener.set_reader(got)
    listener.start(0)
    c = connect(listener.port)
    try:
        c.sendall(b"before\n")
        assert wait_until(lambda: got.texts() == ["before"])
        listener.stop()
        assert listener.is_listening() is False
        try:
            c.sendall(b"after\n")
        except OSError:
            pass
        time.sleep(0.2)
        assert got.texts() == ["before"]
    finally:
        c.close()


def test_restart_on_the_same_port(listener):
    got = Collector()
    listener.set_reader(got)
    listener.start(0)
    port = listener.port
    listener.stop()

    assert listener.start(port) is True
    with connect(port) as c:
        c.sendall(b"again\n")
    assert wait_until(lambda: got.texts() == ["again"])


def test_start_on_active_port_is_a_no_op(listener):
    listener.start(0)
    port = listener.port
    assert listener.start(port) is True
    assert listener.start(0) is True
    assert listener.port == port


def test_bind_failure_reports_a_diagnostic(listener):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen()
    try:
        got = Collector()
        listener.set_reader(got)
        assert listener.start(blocker.getsockname()[1]) is False
        assert listener.is_listening() is False
        diags = got.diagnostics()
        assert len(diags) == 1
        assert diags[0].peer == "listener"
        assert diags[0].text.startswith("ERROR:")
    finally:
        blocker.close()


def test_stop_without_start_is_harmless():
    lst = TcpTelemetryListener()
    lst.stop()
    assert lst.port is None
