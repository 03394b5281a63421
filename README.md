# mpsbypass

Bypass bookkeeping for the inputs of a machine protection system central
node, and a two-slot buffer for handing data from a producer thread to a
consumer thread. The package has no dependencies outside the standard
library.

## Installation

```
pip install .
```

To install the test tools as well:

```
pip install ".[test]"
```

## Bypasses

The module `mpsbypass.bypass` works on a `BypassDatabase`. This holds two
dictionaries keyed by device id:

- `device_inputs`, which maps to `DeviceInput` objects.
- `analog_devices`, which maps to `AnalogDevice` objects.

`BypassManager.create_bypass_map` creates one `InputBypass` for each
digital input. It also creates four for each analog device, one per
integrator. `assign_bypass` attaches those bypasses to the inputs and
raises `CentralNodeError` if any input is left without one. After that,
`manager.initialized` is `True`.

### How a bypass changes state

- **Becoming valid.** `set_bypass` or `set_threshold_bypass` with an
  expiration time later than now marks the bypass `BypassStatus.VALID`.
  It stores the bypass value and pushes the expiration time onto a
  priority queue. An expiration time that is not later than now is
  ignored. With `test=True`, "now" is taken as one second before the
  expiration time.
- **Expiring.** `check_bypass_queue(test_time)` pops every queue entry
  due at `test_time`, or at the current time when `test_time` is zero.
  It marks each such bypass `BypassStatus.EXPIRED`. If a bypass was
  extended by a later call, the earlier entry does not expire it.
- **Cancelling.** An expiration time of zero cancels the bypass at once.
- **Analog thresholds.** A threshold bypass (`int_index >= 0`) clears the
  matching 8-bit group in the device's `bypass_mask`. The mask starts as
  `0xFFFFFFFF`. The group is set again when the bypass expires or is
  cancelled.

Every status change is appended to the manager's `BypassHistory` as a
`BypassStateRecord`. Digital inputs are recorded with index 100.

Some changes need the firmware configuration reloaded. This is the case
for a change to a fast-evaluated digital input, or to an analog device
with a non-zero `evaluation`. Such a change sets
`refresh_firmware_configuration`.

A request for an unknown device raises `CentralNodeError`. So does a
request for an input that has no bypass assigned.

```python
from mpsbypass.bypass import (
    AnalogDevice, BypassDatabase, BypassManager, BypassType, DeviceInput,
)

db = BypassDatabase(
    device_inputs={1: DeviceInput(1)},
    analog_devices={9: AnalogDevice(9)},
)
manager = BypassManager()
manager.create_bypass_map(db)
manager.assign_bypass(db)

# Bypass digital input 1 with value 1 until t=100
manager.set_bypass(db, BypassType.DIGITAL, 1, 1, 100, True)
# Bypass integrator 0 of analog device 9 until t=300
manager.set_threshold_bypass(db, BypassType.ANALOG, 9, 0, 300, 0, True)
print(hex(db.analog_devices[9].bypass_mask))   # 0xffffff00

manager.check_bypass_queue(200)                 # the digital bypass expires
print(manager.format_bypass_queue(now=200))
manager.check_bypass_queue(300)                 # the threshold bypass expires
print(hex(db.analog_devices[9].bypass_mask))   # 0xffffffff
```

### Reading the queue

`format_bypass_queue(now)` returns the queued entries, earliest first,
as text. `print_bypass_queue()` writes the same text for the current time
to stdout and returns it.

### Background checking

`start_bypass_thread()` starts a daemon thread. Every `poll_interval`
seconds (default 1.0) it checks the queue. When
`refresh_firmware_configuration` is set, the thread calls the
`reload_config` callback given to the manager, if there is one, and then
clears the flag. `stop_bypass_thread()` stops the thread and waits for it
to end.

## Data buffer

`mpsbypass.buffer.DataBuffer(size)` holds two lists of `size` zeros. A
negative size raises `ValueError`.

1. The writer fills `write_buffer()` and calls `done_writing()`.
2. The reader takes `read_buffer()` and calls `done_reading()`.
3. Once both sides are done, the two lists swap.

At the start, the write side is ready and the read side is not.
`is_write_ready()` and `is_read_ready()` report this state.
`wait_until_write_ready(timeout)` and `wait_until_read_ready(timeout)`
block until their side is ready. They return `False` if the timeout runs
out first. `report()` returns a summary of the write and read counts and
the two buffer sizes.

## What the package does not do

The package does not do the following:

- It does not load a protection system database from a file. You build
  the `BypassDatabase` yourself.
- It does not evaluate faults or beam destinations.
- It does not talk to firmware. A configuration reload is only a call to
  the `reload_config` callback you supply.
- It has no command-line program.