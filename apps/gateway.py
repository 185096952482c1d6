#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import signal
import sys
import time

from sorter_stack.l0_core.logging_config import setup_logging
from sorter_stack.l3_domain.bridges.control_http_bridge import ControlHttpBridge
from sorter_stack.l3_domain.config import SorterConfig, load_config
from sorter_stack.l3_domain.runtime import SorterRuntime

log = logging.getLogger("gateway")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Color sorter gateway")
    parser.add_argument("--config", help="YAML/JSON config file (defaults built in)")
    parser.add_argument("--log-level", default=None, help="Override SORTER_LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Sorter gateway runner.

    What this process does
    ----------------------
    1) Creates the EventBus (bounded queue + one dispatcher thread). Every
       telemetry line, sequence command and send failure is handled there,
       one at a time.
    2) Binds the telemetry listener the robot's scripts connect back to.
    3) Starts the inventory writer and seeds the database if needed.
    4) Exposes ControlHttpBridge on localhost for "sort all", cancel, manual
       sorts and count corrections.

    The HTTP bridge is started even when the listener fails to bind, so counts
    and logs stay reachable; "sort_all" is refused until the port is bound.
    """
    args = parse_args(argv)
    setup_logging(args.log_level)

    config = load_config(args.config) if args.config else SorterConfig()
    runtime = SorterRuntime(config)

    if runtime.start():
        log.info("telemetry listener ready on port %s", runtime.link.telemetry_port)
    else:
        log.error("telemetry listener not bound; sort all disabled")

    bridge = ControlHttpBridge(runtime, host=config.http_host, port=config.http_port)
    bridge.start()
    host, port = bridge.address
    print(f"[gateway] ControlHttpBridge on http://{host}:{port}  (Ctrl+C to exit)")
    print("Try:")
    print(f"  curl -s http://{host}:{port}/counts")
    print(f"  curl -s -H 'Content-Type: application/json' -d '{{\"action\":\"sort_all\"}}' http://{host}:{port}/")

    def _on_signal(sig, frame):
        print("\n[gateway] shutting down...")
        try:
            bridge.stop()
        finally:
            runtime.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    # Keep the process alive; event handling happens on the dispatcher thread.
    while True:
        time.sleep(1)


if __name__ == "__main__":
    sys.exit(main())
