import json
import socket
import time
from urllib import request

import pytest

from conftest import free_port, wait_until
from sorter_stack.l0_core.bus import EventBus
from sorter_stack.l0_core.events import Color, StartSequenceCmd, TaskState
from sorter_stack.l2_link.robot_service import TOPIC_TELEMETRY_LINE
from sorter_stack.l3_domain.bridges.control_http_bridge import ControlHttpBridge
from sorter_stack.l3_domain.config import SorterConfig
from sorter_stack.l3_domain.runtime import SorterRuntime
from sorter_stack.l3_domain.sequencer import SequenceState


@pytest.fixture
def script_dir(tmp_path):
    d = tmp_path / "scripts"
    d.mkdir()
    for name in ("blaa_26", "groen_26", "roed_26"):
        (d / f"{name}.script").write_text(f"def {name}():\nend")
    return d


@pytest.fixture
def runtime(tmp_path, script_dir, script_server):
    cfg = SorterConfig(
        robot_host="127.0.0.1",
        command_port=script_server.port,
        telemetry_host="127.0.0.1",
        telemetry_port=0,
        send_grace_ms=0,
        script_dir=script_dir,
        database_url=f"sqlite:///{tmp_path / 'inventory.sqlite'}",
    )
    rt = SorterRuntime(cfg)
    assert rt.start() is True
    yield rt
    rt.close()


def robot_says(rt, text):
    with socket.create_connection(("127.0.0.1", rt.link.telemetry_port), timeout=2.0) as c:
        c.sendall(text.encode("utf-8") + b"\n")


def test_sort_all_walks_the_steps(runtime, script_server):
    assert runtime.commandbus.call(StartSequenceCmd()) is True
    assert script_server.wait_for(1)
    assert script_server.received[0] == b"def blaa_26():\nend\n"

    robot_says(runtime, "RUN blaa_26 END")
    assert script_server.wait_for(2)
    robot_says(runtime, "RUN groen_26 END")
    assert script_server.wait_for(3)
    robot_says(runtime, "RUN roed_26 END")

    assert wait_until(lambda: runtime.sequencer.state is SequenceState.FINISHED)
    assert wait_until(lambda: runtime.status()["sort_all"].state is TaskState.COMPLETED)


def test_placement_updates_the_inventory(runtime):
    robot_says(runtime, "STEP EyesLocate DONE cnt=3\\nSTEP Place DONE color=BLUE")
    assert wait_until(lambda: runtime.counts()[Color.BLUE] == 3)
    assert "STEP Place DONE color=BLUE" in runtime.telemetry_log.snapshot()


def test_burst_of_lines_does_not_lose_the_acknowledgement(tmp_path, script_dir, script_server):
    cfg = SorterConfig(
        robot_host="127.0.0.1",
        command_port=script_server.port,
        telemetry_host="127.0.0.1",
        telemetry_port=0,
        send_grace_ms=0,
        script_dir=script_dir,
        database_url=f"sqlite:///{tmp_path / 'inventory.sqlite'}",
    )
    rt = SorterRuntime(cfg, eventbus=EventBus(capacity=8, publish_timeout_ms=10))
    rt.eventbus.subscribe(TOPIC_TELEMETRY_LINE, lambda _: time.sleep(0.01))
    try:
        assert rt.start() is True
        assert rt.commandbus.call(StartSequenceCmd()) is True
        assert script_server.wait_for(1)

        burst = "\n".join([f"noise {i}" for i in range(50)] + ["RUN blaa_26 END"])
        robot_says(rt, burst)

        assert script_server.wait_for(2, timeout=5.0)
        assert script_server.received[1] == b"def groen_26():\nend\n"
        assert rt.eventbus.flush(timeout=2.0)
        logged = rt.telemetry_log.snapshot()
        assert [s for s in logged if s.startswith("noise ")] == [f"noise {i}" for i in range(50)]
    finally:
        rt.close()


def test_listener_status_is_published(runtime):
    assert runtime.eventbus.flush()
    status = runtime.status()["telemetry_listener"]
    assert status.state is TaskState.STARTED
    assert status.details["port"] == runtime.link.telemetry_port


def test_sort_all_refused_when_listener_not_bound(tmp_path, script_dir):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen()
    cfg = SorterConfig(
        telemetry_host="127.0.0.1",
        telemetry_port=blocker.getsockname()[1],
        script_dir=script_dir,
        database_url=f"sqlite:///{tmp_path / 'inventory.sqlite'}",
    )
    rt = SorterRuntime(cfg)
    try:
        assert rt.start() is False
        assert rt.commandbus.call(StartSequenceCmd()) is False
        assert rt.eventbus.flush()
        assert rt.status()["telemetry_listener"].state is TaskState.FAILED
        assert any("TELEMETRY_BIND_FAILED" in line for line in rt.telemetry_log.snapshot())
    finally:
        rt.close()
        blocker.close()


def test_failed_send_ends_the_run(tmp_path, script_dir):
    cfg = SorterConfig(
        robot_host="127.0.0.1",
        command_port=free_port(),
        telemetry_host="127.0.0.1",
        telemetry_port=0,
        send_grace_ms=0,
        connect_timeout_s=0.5,
        script_dir=script_dir,
        database_url=f"sqlite:///{tmp_path / 'inventory.sqlite'}",
    )
    rt = SorterRuntime(cfg)
    try:
        rt.start()
        rt.commandbus.call(StartSequenceCmd())
        assert wait_until(lambda: "sort_all" in rt.status()
                          and rt.status()["sort_all"].state is TaskState.FAILED)
        assert rt.sequencer.state is SequenceState.IDLE
    finally:
        rt.close()


# ---- control bridge ----

@pytest.fixture
def bridge(runtime):
    b = ControlHttpBridge(runtime, host="127.0.0.1", port=0)
    b.start()
    yield b
    b.stop()


def test_bridge_actions(bridge, runtime, script_server):
    assert bridge.dispatch({"action": "sort", "color": "green"}) == (
        202, {"accepted": "sort", "script": "groen_26.script"}
    )
    assert script_server.wait_for(1)

    code, body = bridge.dispatch({"action": "adjust", "color": "red", "delta": 2})
    assert code == 202
    assert wait_until(lambda: runtime.counts()[Color.RED] == 2)

    assert bridge.dispatch({"action": "adjust", "color": "red", "delta": 0})[0] == 422
    assert bridge.dispatch({"action": "adjust", "color": "red", "delta": True})[0] == 422
    assert bridge.dispatch({"action": "sort", "color": "purple"})[0] == 422
    assert bridge.dispatch({"action": "dance"})[0] == 404
    assert bridge.dispatch({"action": "cancel"})[0] == 202


def test_bridge_http_round_trip(bridge, runtime):
    host, port = bridge.address
    req = request.Request(
        f"http://{host}:{port}/",
        data=json.dumps({"action": "adjust", "color": "blue", "delta": 4}).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )
    with request.urlopen(req, timeout=2) as resp:
        assert resp.status == 202

    assert wait_until(lambda: runtime.counts()[Color.BLUE] == 4)
    with request.urlopen(f"http://{host}:{port}/counts", timeout=2) as resp:
        assert json.loads(resp.read()) == {"RED": 0, "GREEN": 0, "BLUE": 4}
    with request.urlopen(f"http://{host}:{port}/status", timeout=2) as resp:
        status = json.loads(resp.read())
    assert status["listening"] is True
    assert status["queues"]["InventoryWriteQueue"]["dropped"] == 0
