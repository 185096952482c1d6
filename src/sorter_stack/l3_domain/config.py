from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping
import json

import yaml

from sorter_stack.l0_core.events import Color
from sorter_stack.l3_domain.inventory_store import get_database_url
from sorter_stack.l3_domain.sequencer import SequenceStep

DEFAULT_STEPS: tuple[SequenceStep, ...] = (
    SequenceStep("blaa_26.script", "blaa_26"),
    SequenceStep("groen_26.script", "groen_26"),
    SequenceStep("roed_26.script", "roed_26"),
)

DEFAULT_COLOR_SCRIPTS: Mapping[Color, str] = {
    Color.RED: "roed_26.script",
    Color.GREEN: "groen_26.script",
    Color.BLUE: "blaa_26.script",
}


@dataclass(frozen=True, slots=True)
class SorterConfig:
    """
    Immutable runtime configuration.

    Fields
    ------
    robot_host, command_port : str, int
        Robot script endpoint (outbound).
    telemetry_host, telemetry_port : str, int
        Local interface/port the robot's scripts connect back to.
    send_grace_ms : int
        How long a command connection stays open after the write.
    connect_timeout_s : float
        Bound on connecting to the command endpoint.
    script_dir : Path
        Directory the script identifiers are resolved in.
    database_url : str
        SQLAlchemy URL of the inventory database.
    steps : tuple[SequenceStep, ...]
        The "sort all" run, in order.
    color_scripts : Mapping[Color, str]
        Script used for a manual single-color sort.
    log_capacity : int
        Lines kept by the diagnostic telemetry log.
    http_host, http_port : str, int
        Control bridge binding.
    """
    robot_host: str = "172.20.254.208"
    command_port: int = 30002
    telemetry_host: str = "0.0.0.0"
    telemetry_port: int = 45123
    send_grace_ms: int = 200
    connect_timeout_s: float = 3.0
    script_dir: Path = Path(".")
    database_url: str = field(default_factory=get_database_url)
    steps: tuple[SequenceStep, ...] = DEFAULT_STEPS
    color_scripts: Mapping[Color, str] = field(default_factory=lambda: dict(DEFAULT_COLOR_SCRIPTS))
    log_capacity: int = 500
    http_host: str = "127.0.0.1"
    http_port: int = 8766


def _port(value: Any, name: str) -> int:
    p = int(value)
    if not 0 <= p <= 65535:
        raise ValueError(f"{name} must be within 0..65535, got {p}")
    return p


def _to_steps(items: Iterable[Any]) -> tuple[SequenceStep, ...]:
    steps = []
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError(f"step entries must be mappings, got {item!r}")
        script = str(item.get("script", "")).strip()
        ack = str(item.get("ack", "")).strip()
        if not script or not ack:
            raise ValueError(f"step needs both 'script' and 'ack': {dict(item)!r}")
        steps.append(SequenceStep(script, ack))
    if not steps:
        raise ValueError("steps must contain at least one entry")
    return tuple(steps)


def _to_color_scripts(data: Mapping[str, Any]) -> dict[Color, str]:
    scripts = dict(DEFAULT_COLOR_SCRIPTS)
    for key, script in data.items():
        color = Color.parse(str(key))
        if color is None:
            raise ValueError(f"unknown color in color_scripts: {key!r}")
        scripts[color] = str(script)
    return scripts


def load_config(path: str | Path) -> SorterConfig:
    """
    Load configuration from a YAML or JSON file; absent keys keep their defaults.

    Supported shape (YAML):
        robot_host: 172.20.254.208
        command_port: 30002
        telemetry_port: 45123
        script_dir: ./scripts
        steps:
          - {script: blaa_26.script, ack: blaa_26}
          - {script: groen_26.script, ack: groen_26}
        color_scripts: {red: roed_26.script}

    Raises FileNotFoundError / ValueError on bad input.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)

    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yml", ".yaml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text or "{}")
    if not isinstance(data, Mapping):
        raise ValueError(f"{p}: top level must be a mapping")

    defaults = SorterConfig()
    script_dir = Path(data.get("script_dir", defaults.script_dir))
    if not script_dir.is_absolute():
        script_dir = p.parent / script_dir

    return SorterConfig(
        robot_host=str(data.get("robot_host", defaults.robot_host)),
        command_port=_port(data.get("command_port", defaults.command_port), "command_port"),
        telemetry_host=str(data.get("telemetry_host", defaults.telemetry_host)),
        telemetry_port=_port(data.get("telemetry_port", defaults.telemetry_port), "telemetry_port"),
        send_grace_ms=int(data.get("send_grace_ms", defaults.send_grace_ms)),
        connect_timeout_s=float(data.get("connect_timeout_s", defaults.connect_timeout_s)),
        script_dir=script_dir,
        database_url=str(data.get("database_url") or defaults.database_url),
        steps=_to_steps(data["steps"]) if "steps" in data else defaults.steps,
        color_scripts=_to_color_scripts(data.get("color_scripts") or {}),
        log_capacity=int(data.get("log_capacity", defaults.log_capacity)),
        http_host=str(data.get("http_host", defaults.http_host)),
        http_port=_port(data.get("http_port", defaults.http_port), "http_port"),
    )
