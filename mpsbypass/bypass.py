"""Bypass bookkeeping for digital inputs and analog integrator thresholds.

A bypass replaces an input's value (or masks an analog threshold) until a
given time. Expiration times are kept in a priority queue that is polled
periodically; expired bypasses are marked and their state changes are
recorded in a history.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

BYPASS_DIGITAL_INDEX = 100
ANALOG_CHANNEL_MAX_INTEGRATORS_PER_CHANNEL = 4
ANALOG_CHANNEL_INTEGRATORS_SIZE = 8
_MASK_32 = 0xFFFFFFFF


class CentralNodeError(Exception):
    """Raised when bypass configuration or requests are inconsistent."""


class BypassType(Enum):
    DIGITAL = 0
    ANALOG = 1


class BypassStatus(Enum):
    VALID = 0
    EXPIRED = 1


class AnalogIntegratorIndex(IntEnum):
    BPM_X = 0
    BPM_Y = 1
    BPM_TMIT = 2
    INT0 = 0
    INT2 = 1
    INT3 = 2
    INT4 = 3


@dataclass
class DeviceInput:
    """A digital input; fast-evaluated inputs live in firmware."""

    id: int
    fast_evaluation: bool = False
    bypass: InputBypass | None = None


@dataclass
class AnalogDevice:
    """An analog device with one bypass per integrator and a threshold mask."""

    id: int
    evaluation: int = 0
    bypass: dict[int, InputBypass] = field(default_factory=dict)
    bypass_mask: int = _MASK_32


@dataclass(eq=False)
class InputBypass:
    """Bypass state shared by a digital input or one analog integrator."""

    id: int = 0
    device_id: int = 0
    value: int = 0
    type: BypassType = BypassType.DIGITAL
    until: int = 0
    status: BypassStatus = BypassStatus.EXPIRED
    index: int = 0
    analog_device: AnalogDevice | None = None
    config_update: bool = False

    @property
    def history_index(self) -> int:
        if self.type is BypassType.ANALOG:
            return self.index
        return BYPASS_DIGITAL_INDEX


@dataclass
class BypassDatabase:
    """The inputs a bypass manager works on, keyed by device id."""

    device_inputs: dict[int, DeviceInput] = field(default_factory=dict)
    analog_devices: dict[int, AnalogDevice] = field(default_factory=dict)


@dataclass(frozen=True)
class BypassStateRecord:
    device_id: int
    old_status: BypassStatus
    new_status: BypassStatus
    index: int


class BypassHistory:
    """Collects bypass state transitions."""

    def __init__(self) -> None:
        self.records: list[BypassStateRecord] = []
        self._lock = threading.Lock()

    def log_bypass_state(self, device_id, old_status, new_status, index) -> None:
        with self._lock:
            self.records.append(
                BypassStateRecord(device_id, old_status, new_status, index)
            )


def _integrator_bits(index: int) -> int:
    return (0xFF << (index * ANALOG_CHANNEL_INTEGRATORS_SIZE)) & _MASK_32


class BypassManager:
    """Creates, assigns, sets and expires bypasses."""

    def __init__(
        self,
        history: BypassHistory | None = None,
        reload_config: Callable[[], None] | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.history = history if history is not None else BypassHistory()
        self.reload_config = reload_config
        self.poll_interval = poll_interval
        self.bypass_map: dict[int, InputBypass] = {}
        self.refresh_firmware_configuration = False
        self._queue: list[tuple[int, int, InputBypass]] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()
        self._initialized = False
        self._done = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def create_bypass_map(self, db: BypassDatabase) -> None:
        """Create one bypass per digital input and per analog integrator."""
        bypass_map: dict[int, InputBypass] = {}
        bypass_id = 0
        for input_id in sorted(db.device_inputs):
            device_input = db.device_inputs[input_id]
            bypass = InputBypass(
                id=bypass_id,
                device_id=device_input.id,
                type=BypassType.DIGITAL,
                config_update=bool(device_input.fast_evaluation),
            )
            bypass_id += 1
            bypass_map[bypass_id] = bypass
        for analog_id in sorted(db.analog_devices):
            analog = db.analog_devices[analog_id]
            for i in range(ANALOG_CHANNEL_MAX_INTEGRATORS_PER_CHANNEL):
                bypass = InputBypass(
                    id=bypass_id,
                    device_id=analog.id,
                    type=BypassType.ANALOG,
                    index=i,
                    config_update=analog.evaluation != 0,
                )
                bypass_id += 1
                bypass_map[bypass_id] = bypass
        self.bypass_map = bypass_map

    def assign_bypass(self, db: BypassDatabase) -> None:
        """Attach the bypasses to the inputs of ``db``; every input needs one."""
        with self._lock:
            for key in sorted(self.bypass_map):
                bypass = self.bypass_map[key]
                if bypass.type is BypassType.DIGITAL:
                    digital = db.device_inputs.get(bypass.device_id)
                    if digital is None:
                        raise CentralNodeError(
                            f"ERROR: Failed to find FaultInput ({bypass.device_id}) "
                            "when assigning digital bypass"
                        )
                    digital.bypass = bypass
                    if digital.fast_evaluation:
                        bypass.config_update = True
                else:
                    analog = db.analog_devices.get(bypass.device_id)
                    if analog is None:
                        raise CentralNodeError(
                            f"ERROR: Failed to find FaultInput ({bypass.device_id}) "
                            "when assigning analog bypass"
                        )
                    analog.bypass[bypass.index] = bypass
                    bypass.analog_device = analog

            missing_digital = [
                str(db.device_inputs[k].id)
                for k in sorted(db.device_inputs)
                if db.device_inputs[k].bypass is None
            ]
            missing_analog = [
                str(db.analog_devices[k].id)
                for k in sorted(db.analog_devices)
                if not db.analog_devices[k].bypass
            ]
            if missing_digital or missing_analog:
                raise CentralNodeError(
                    "ERROR: Failed to find bypass for FaultInputs ["
                    + ", ".join(missing_digital)
                    + "]; AnalogDevices ["
                    + ", ".join(missing_analog)
                    + "]"
                )
            self._initialized = True

    def check_bypass_queue(self, test_time: int = 0) -> None:
        """Expire queued bypasses due at ``test_time`` (or now when zero)."""
        now = test_time if test_time != 0 else int(time.time())
        with self._lock:
            while self._check_bypass_queue_top(now):
                pass

    def _check_bypass_queue_top(self, now: int) -> bool:
        if not self._queue or self._queue[0][0] > now:
            return False
        queued_until, _, bypass = heapq.heappop(self._queue)
        logger.debug(
            "Bypass for device [%s] expired, type=%s, until=%s sec, now=%s sec, "
            "(actual until=%s)",
            bypass.device_id, bypass.type, queued_until, now, bypass.until,
        )
        if bypass.until > queued_until:
            # The bypass was extended; a later queue entry controls it.
            if bypass.status is not BypassStatus.VALID:
                bypass.status = BypassStatus.VALID
                return False
            return True

        self.history.log_bypass_state(
            bypass.device_id, bypass.status, BypassStatus.EXPIRED, bypass.history_index
        )
        if bypass.type is BypassType.ANALOG and bypass.analog_device is not None:
            device = bypass.analog_device
            device.bypass_mask = (
                device.bypass_mask | _integrator_bits(bypass.index)
            ) & _MASK_32
        if bypass.config_update:
            self.refresh_firmware_configuration = True
        bypass.status = BypassStatus.EXPIRED
        return True

    def set_bypass(self, db, bypass_type, device_id, value, bypass_until, test=False):
        """Set or cancel (``bypass_until == 0``) the bypass of a device."""
        self.set_threshold_bypass(
            db, bypass_type, device_id, value, bypass_until, -1, test
        )

    def set_threshold_bypass(
        self, db, bypass_type, device_id, value, bypass_until, int_index=-1, test=False
    ):
        """Set or cancel the bypass of a device or of one analog integrator."""
        analog: AnalogDevice | None = None
        if bypass_type is BypassType.DIGITAL:
            digital = db.device_inputs.get(device_id)
            if digital is None:
                raise CentralNodeError(
                    f"ERROR: Failed to find DeviceInput[{device_id}] while setting bypass"
                )
            bypass = digital.bypass
        else:
            analog = db.analog_devices.get(device_id)
            if analog is None:
                raise CentralNodeError(
                    f"ERROR: Failed to find AnalogDevice[{device_id}] while setting bypass"
                )
            bypass = analog.bypass.get(int_index)
        if bypass is None:
            raise CentralNodeError(
                f"ERROR: No bypass assigned to device [{device_id}] (index {int_index})"
            )

        masks_threshold = (
            int_index >= 0 and bypass_type is BypassType.ANALOG and analog is not None
        )

        if bypass_until == 0:
            with self._lock:
                self.history.log_bypass_state(
                    bypass.device_id, bypass.status, BypassStatus.EXPIRED,
                    bypass.history_index,
                )
                bypass.status = BypassStatus.EXPIRED
                bypass.until = 0
                if masks_threshold:
                    analog.bypass_mask = (
                        analog.bypass_mask | _integrator_bits(int_index)
                    ) & _MASK_32
                if bypass.config_update:
                    self.refresh_firmware_configuration = True
            logger.debug(
                "Set bypass EXPIRED for device [%s], type=%s", device_id, bypass_type
            )
            return

        now = bypass_until - 1 if test else int(time.time())
        if bypass_until <= now:
            return

        self.history.log_bypass_state(
            bypass.device_id, bypass.status, BypassStatus.VALID, bypass.history_index
        )
        logger.debug(
            "New bypass for device [%s], type=%s, index=%s, until=%s sec, now=%s sec",
            device_id, bypass_type, int_index, bypass_until, now,
        )
        if bypass.config_update:
            self.refresh_firmware_configuration = True
        with self._lock:
            bypass.until = bypass_until
            bypass.status = BypassStatus.VALID
            bypass.value = value
            if masks_threshold:
                analog.bypass_mask &= ~_integrator_bits(int_index) & _MASK_32
            heapq.heappush(self._queue, (bypass_until, next(self._counter), bypass))

    def _queue_lines(self, now: int) -> Iterator[str]:
        with self._lock:
            entries = sorted(self._queue, key=lambda entry: entry[:2])
        if not self._initialized:
            yield "MPS not initialized - no database"
        yield "=== Bypass Queue (orded by expiration date) ==="
        yield f"=== Current time: {now}(s) ==="
        for until, _, bypass in entries:
            stamp = time.strftime("%x %X", time.localtime(until))
            line = f"{stamp} ({until}): deviceId={bypass.device_id}"
            if bypass.type is BypassType.ANALOG:
                line += f" integrator {bypass.index}"
            if bypass.config_update:
                line += " [FW bypass]"
            line += " [VALID]" if bypass.status is BypassStatus.VALID else " [EXPIRED]"
            line += f" BYPV={bypass.value}"
            yield line

    def format_bypass_queue(self, now: int | None = None) -> str:
        """Describe the queued bypasses, earliest expiration first."""
        if now is None:
            now = int(time.time())
        return "".join(f"{line}\n" for line in self._queue_lines(now))

    def print_bypass_queue(self) -> str:
        """Write the queue description for the current time to stdout and return it."""
        now = int(time.time())
        written = []
        for line in self._queue_lines(now):
            text = f"{line}\n"
            sys.stdout.write(text)
            written.append(text)
        sys.stdout.flush()
        return "".join(written)

    def start_bypass_thread(self) -> None:
        """Start polling the queue in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._done.clear()
        self._thread = threading.Thread(
            target=self._bypass_thread, name="BypassThread", daemon=True
        )
        self._thread.start()

    def stop_bypass_thread(self) -> None:
        logger.info("bypassThread stopping...")
        self._done.set()
        if self._thread is not None:
            self._thread.join()
        logger.info("bypassThread stopped...")

    def _bypass_thread(self) -> None:
        logger.info("bypassThread started...")
        while not self._done.is_set():
            self.check_bypass_queue()
            if self.refresh_firmware_configuration:
                if self.reload_config is not None:
                    self.reload_config()
                self.refresh_firmware_configuration = False
            self._done.wait(self.poll_interval)
        logger.info("bypassThread exiting...")