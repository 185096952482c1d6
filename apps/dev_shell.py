#!/usr/bin/env python3
"""
Developer Shell for the color sorter
------------------------------------
Minimal REPL that mirrors the production wiring (EventBus, CommandBus,
RobotLinkService, inventory writer) and stands in for the operator screen.
"""
from __future__ import annotations

import argparse
import shlex
import signal
import sys

from sorter_stack.l0_core.events import (
    AdjustCountCmd,
    CancelSequenceCmd,
    Color,
    SendScriptCmd,
    StartSequenceCmd,
    TelemetryLine,
    now_ms,
)
from sorter_stack.l0_core.logging_config import setup_logging
from sorter_stack.l2_link.robot_service import TOPIC_TELEMETRY_LINE
from sorter_stack.l3_domain.config import SorterConfig, load_config
from sorter_stack.l3_domain.runtime import SorterRuntime

HELP = (
    "Commands: help, sort <red|green|blue>, sort_all, cancel, counts, "
    "inc <color> [n], dec <color> [n], log [n], feed \"<line>\", status, queues, quit"
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Color sorter dev shell")
    parser.add_argument("--config", help="YAML/JSON config file (defaults built in)")
    parser.add_argument("--log-level", default="WARNING", help="Log level for the shell session")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    config = load_config(args.config) if args.config else SorterConfig()
    runtime = SorterRuntime(config)
    if runtime.start():
        print(f"[ok] telemetry listener on port {runtime.link.telemetry_port}")
    else:
        print("[warn] telemetry listener not bound; sort_all disabled")

    def _cleanup(*_: object) -> None:
        runtime.close()
        sys.exit(0)

    signal.signal(signal.SIGTERM, _cleanup)

    print("Sorter Dev Shell ready. Type 'help' or 'quit'.")
    run_repl(runtime)
    runtime.close()
    return 0


def run_repl(runtime: SorterRuntime) -> None:
    while True:
        try:
            raw = input("sorter> ")
        except (EOFError, KeyboardInterrupt):
            break
        raw = raw.strip()
        if not raw:
            continue
        try:
            tokens = shlex.split(raw)
        except ValueError as exc:
            print(f"[error] {exc}")
            continue
        if not tokens:
            continue
        if not handle_command(tokens, runtime):
            break


def handle_command(tokens: list[str], runtime: SorterRuntime) -> bool:
    cmd = tokens[0].lower()
    args = tokens[1:]
    if cmd in ("quit", "exit"):
        return False
    if cmd in ("help", "?"):
        print(HELP)
    elif cmd == "sort":
        send_color(runtime, args)
    elif cmd == "sort_all":
        if runtime.commandbus.call(StartSequenceCmd(reason="dev_shell")):
            print("[ok] sort all requested")
        else:
            print("[warn] sort all refused (listener not bound?)")
    elif cmd == "cancel":
        runtime.commandbus.call(CancelSequenceCmd(reason="dev_shell"))
        print("[ok] cancel requested")
    elif cmd == "counts":
        show_counts(runtime)
    elif cmd in ("inc", "dec"):
        adjust(runtime, cmd, args)
    elif cmd == "log":
        show_log(runtime, args)
    elif cmd == "feed":
        feed_line(runtime, args)
    elif cmd == "status":
        show_status(runtime)
    elif cmd == "queues":
        show_queues(runtime)
    else:
        print(f"Unknown command: {' '.join(tokens)}")
    return True


def _parse_color(args: list[str]) -> Color | None:
    color = Color.parse(args[0]) if args else None
    if color is None:
        print("[error] color must be one of red, green, blue")
    return color


def send_color(runtime: SorterRuntime, args: list[str]) -> None:
    color = _parse_color(args)
    if color is None:
        return
    script_id = runtime.script_for(color)
    runtime.commandbus.call(SendScriptCmd(script_id))
    print(f"[ok] sending {script_id}")


def adjust(runtime: SorterRuntime, cmd: str, args: list[str]) -> None:
    color = _parse_color(args)
    if color is None:
        return
    try:
        n = int(args[1]) if len(args) > 1 else 1
    except ValueError:
        print("[error] amount must be an integer")
        return
    delta = n if cmd == "inc" else -n
    if runtime.commandbus.call(AdjustCountCmd(color, delta)):
        print(f"[ok] {color.value} {delta:+d} queued")
    else:
        print("[warn] inventory queue saturated; change dropped")


def show_counts(runtime: SorterRuntime) -> None:
    counts = runtime.counts()
    print("  ".join(f"{c.value}={counts[c]}" for c in Color))


def show_log(runtime: SorterRuntime, args: list[str]) -> None:
    try:
        last = int(args[0]) if args else 20
    except ValueError:
        print("[error] usage: log [n]")
        return
    for line in runtime.telemetry_log.snapshot(last):
        print(f"  {line}")


def feed_line(runtime: SorterRuntime, args: list[str]) -> None:
    """Inject a telemetry line as if the robot had sent it."""
    if not args:
        print('usage: feed "<line>"')
        return
    line = TelemetryLine(now_ms(), "dev_shell", args[0])
    if not runtime.eventbus.publish(TOPIC_TELEMETRY_LINE, line):
        print("[warn] EventBus saturated; line dropped")


def show_status(runtime: SorterRuntime) -> None:
    seq = runtime.sequencer
    print(f"listening={runtime.link.listening} port={runtime.link.telemetry_port}")
    print(f"sequence={seq.state.value} index={seq.index}/{len(seq.steps)}")
    agg = runtime.aggregator.snapshot()
    print(f"quantity preferred={agg.preferred_quantity} fallback={agg.fallback_quantity}")
    for name, status in runtime.status().items():
        print(f"  {name}: {status.state.value} {dict(status.details)}")


def show_queues(runtime: SorterRuntime) -> None:
    for stats in (runtime.eventbus.stats(), runtime.updater.stats()):
        print(f"{stats.name}: {stats.size}/{stats.capacity} dropped={stats.dropped}")


if __name__ == "__main__":
    raise SystemExit(main())
