"""
runtime.py
==========
Production wiring of the sorter stack, shared by the gateway and the dev shell.

Topics on the EventBus (all delivered on the single dispatcher thread):

    telemetry.line     TelemetryLine        listener → TelemetryRouter
    sequence.control   Start/CancelSequenceCmd  CommandBus → Sequencer
    command.failed     TransmissionFailed   TX threads → Sequencer
    sequence.status    TaskStatus           Sequencer → status cache / log
    task.status        TaskStatus           RobotLinkService → status cache / log
    inventory.counts   CountChanged         InventoryUpdater → log
    faults             Fault                anyone → log
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from sorter_stack.l0_core import CommandBus, EventBus
from sorter_stack.l0_core.events import (
    AdjustCountCmd,
    CancelSequenceCmd,
    Color,
    CountChanged,
    Fault,
    SendScriptCmd,
    StartSequenceCmd,
    TaskStatus,
)
from sorter_stack.l1_drivers.command_channel import TcpCommandChannel
from sorter_stack.l1_drivers.telemetry_listener import TcpTelemetryListener
from sorter_stack.l2_link.robot_service import (
    TOPIC_COMMAND_FAILED,
    TOPIC_FAULTS,
    TOPIC_TASK_STATUS,
    TOPIC_TELEMETRY_LINE,
    RobotLinkService,
)
from sorter_stack.l2_link.script_source import FileScriptSource
from sorter_stack.l3_domain.config import SorterConfig
from sorter_stack.l3_domain.count_aggregator import CountAggregator
from sorter_stack.l3_domain.inventory_store import InventoryStore
from sorter_stack.l3_domain.inventory_updater import InventoryUpdater
from sorter_stack.l3_domain.sequencer import SequenceStep, Sequencer
from sorter_stack.l3_domain.telemetry_log import TelemetryLog
from sorter_stack.l3_domain.telemetry_router import TelemetryRouter

TOPIC_SEQUENCE_CONTROL = "sequence.control"
TOPIC_SEQUENCE_STATUS = "sequence.status"
TOPIC_INVENTORY_COUNTS = "inventory.counts"

log = logging.getLogger(__name__)


class SorterRuntime:
    """
    Builds and owns every long-lived component.

    Lifecycle:
        start() → create/seed the database, start the inventory writer, bind
                  the telemetry listener. Returns whether the listener bound.
        close() → reverse order; safe to call once after start().

    Operator requests go through ``commandbus``; "sort all" is refused while
    the telemetry listener is not bound, since its acknowledgements could
    never arrive.
    """

    def __init__(self, config: SorterConfig,
                 eventbus: Optional[EventBus] = None,
                 store: Optional[InventoryStore] = None) -> None:
        self.config = config
        self.eventbus = eventbus or EventBus(capacity=1024, publish_timeout_ms=10)
        self.commandbus = CommandBus()

        self.store = store or InventoryStore(config.database_url)
        self.updater = InventoryUpdater(
            self.store,
            on_changed=lambda evt: self.eventbus.publish(TOPIC_INVENTORY_COUNTS, evt),
            on_fault=lambda fault: self.eventbus.publish(TOPIC_FAULTS, fault),
        )

        channel = TcpCommandChannel(
            config.robot_host,
            config.command_port,
            source=FileScriptSource(config.script_dir),
            grace_s=config.send_grace_ms / 1000.0,
            connect_timeout_s=config.connect_timeout_s,
        )
        listener = TcpTelemetryListener(host=config.telemetry_host)
        self.link = RobotLinkService(channel, listener, self.eventbus, config.telemetry_port)

        self.telemetry_log = TelemetryLog(config.log_capacity)
        self.aggregator = CountAggregator()
        self.sequencer = Sequencer(
            config.steps,
            transmit=self._transmit_step,
            emit_status=lambda status: self.eventbus.publish(TOPIC_SEQUENCE_STATUS, status),
            note=self.telemetry_log.append,
        )
        self.router = TelemetryRouter(
            self.aggregator, self.sequencer, self.telemetry_log, emit_delta=self.updater.submit_delta
        )

        self._status: Dict[str, TaskStatus] = {}

        self._subscribe()
        self._register_commands()

    # ---- wiring ----
    def _subscribe(self) -> None:
        bus = self.eventbus
        bus.subscribe(TOPIC_TELEMETRY_LINE, self.router.on_line)
        bus.subscribe(TOPIC_SEQUENCE_CONTROL, self.sequencer.on_control)
        bus.subscribe(TOPIC_COMMAND_FAILED, self.sequencer.on_transmission_failed)
        bus.subscribe(TOPIC_SEQUENCE_STATUS, self._on_status)
        bus.subscribe(TOPIC_TASK_STATUS, self._on_status)
        bus.subscribe(TOPIC_INVENTORY_COUNTS, self._on_count_changed)
        bus.subscribe(TOPIC_FAULTS, self._on_fault)

    def _register_commands(self) -> None:
        self.commandbus.register(StartSequenceCmd, self._handle_start)
        self.commandbus.register(CancelSequenceCmd, self._handle_cancel)
        self.commandbus.register(SendScriptCmd, self.link.handle_send_script)
        self.commandbus.register(AdjustCountCmd, self.updater.handle_adjust)

    def _transmit_step(self, step: SequenceStep, tag: str) -> None:
        self.link.send_script(step.script_id, tag=tag)

    # ---- command handlers (caller's thread) ----
    def _handle_start(self, cmd: StartSequenceCmd) -> bool:
        if not self.link.listening:
            log.warning("Sort all refused: telemetry listener is not bound")
            return False
        return self.eventbus.publish(TOPIC_SEQUENCE_CONTROL, cmd)

    def _handle_cancel(self, cmd: CancelSequenceCmd) -> bool:
        return self.eventbus.publish(TOPIC_SEQUENCE_CONTROL, cmd)

    # ---- subscribers (dispatcher thread) ----
    def _on_status(self, status: TaskStatus) -> None:
        self._status[status.task_name] = status
        log.info("[%s] %s %s", status.task_name, status.state.value, dict(status.details))

    def _on_count_changed(self, evt: CountChanged) -> None:
        log.info("count %s = %d", evt.color.value, evt.count)

    def _on_fault(self, fault: Fault) -> None:
        log.error("FAULT %s: %s", fault.code, fault.message)
        self.telemetry_log.append(f"{fault.code}: {fault.message}")

    # ---- queries (any thread) ----
    def status(self) -> Dict[str, TaskStatus]:
        return dict(self._status)

    def counts(self) -> Dict[Color, int]:
        return self.store.get_counts()

    def script_for(self, color: Color) -> str:
        return self.config.color_scripts[color]

    # ---- lifecycle ----
    def start(self) -> bool:
        self.store.initialize()
        self.updater.start()
        return self.link.open()

    def close(self) -> None:
        try:
            self.link.close()
            self.updater.close()
        finally:
            self.eventbus.close()
            self.store.dispose()
