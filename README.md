# hypergcode

Building blocks for software that drives HyperGCode-4D printers: machines that
deposit material through a fixed grid of valves instead of moving a print head.

The package provides:

- **`hypergcode.gcode_types`** – coordinates, valve grid positions, valve
  states, colours, layers and the G4D/G4L/G4C/G4S/G4H/G4W/G4P command set,
  with a G-code text rendering and a compact binary encoding.
- **`hypergcode.config_types`** – printer configuration, material profiles and
  print settings, stored as TOML, with validation of the physical parameters.
- **`hypergcode.protocol`** – the JSON message protocol spoken between the
  firmware and a control interface, plus an in-process publish/subscribe
  broker built on `asyncio` queues.
- **`hypergcode.firmware`** – the firmware's state model (thermal, pressure,
  valve and motion state, errors), its internal command record and safety
  checks on incoming commands.
- **`hypergcode.runtime`** – command-line option parsing, logging setup,
  runtime configuration checks and health reporting for a firmware process.
- **`hypergcode.simulation`** – configuration and result records for
  simulation runs.

Python 3.11 or later is required. The only runtime dependency is `tomli-w`,
used to write TOML files.

## Coordinates, valves and commands

```python
from hypergcode.gcode_types import (
    Command,
    Coordinate,
    G4LCommand,
    GridCoordinate,
    ValveState,
    validate_coordinate,
)

a = Coordinate(0.0, 0.0, 0.0)
b = Coordinate(3.0, 4.0, 0.0)
print(a.distance_to(b))          # 5.0

node = GridCoordinate(10, 20)
print(node.to_physical(0.5))     # X5.000 Y10.000 Z0.000

print(ValveState.opened(0))      # V0:O
print(ValveState.closed(1))      # V1:C

cmd = G4LCommand(z_height=1.5, feed_rate=10.0)
print(cmd.to_gcode_text())       # G4L Z1.500 F10.0
assert Command.from_bytes(cmd.to_bytes()) == cmd

validate_coordinate(b, 200.0, 200.0, 150.0)   # raises InvalidCoordinateError if outside
```

`Color.blend` mixes two colours, `WaitType.duration(ms)` builds a timed wait
for `G4WCommand`, and `Layer` collects `NodeValveState` entries and counts
nodes and open valves. Invalid input raises a subclass of `CommandError`.

## Printer configuration

```python
from hypergcode.config_types import BuildVolume, PrinterConfig

config = PrinterConfig.from_file("printer.toml")
config.validate()                 # raises InvalidConfigurationError on bad values
print(config.grid_x_count(), config.grid_y_count())
print(config.model.display_name())
config.to_file("printer-copy.toml")

volume = BuildVolume(200.0, 200.0, 150.0)
print(volume.contains_point(100.0, 100.0, 75.0))   # True
```

`PrinterConfig.from_dict` / `to_dict` convert to and from plain data. Every
configuration problem is reported as a subclass of `ConfigError`
(`ConfigIOError`, `ConfigParseError`, `ConfigSerializationError`,
`InvalidConfigurationError`, `MissingFieldError`). `MaterialProfile` loads
and saves the same way.

## Protocol messages

```python
from hypergcode.protocol import (
    CommandResponse,
    create_status_update,
    deserialize_message,
    serialize_message,
    validate_message,
)

msg = create_status_update("Printing", 50, 100, 10.0, 300, 300)
validate_message(msg)
payload = serialize_message(msg)          # JSON bytes with a timestamp
again = deserialize_message(payload)
print(again.message_type())               # StatusUpdate

reply = CommandResponse.ok("Print started")
```

Each message encodes as `{"type": ..., "data": ...}`; `serialize_message`
adds a `timestamp` in whole seconds since the Unix epoch. `MessageBroker`
hands each subscriber an `asyncio.Queue`; `await broker.publish(msg)`
delivers to every live subscriber and returns how many received it, and a
full queue drops its oldest message.

## Firmware state and safety

`hypergcode.firmware` models what the firmware knows about the machine:
`SystemState` collects `ThermalState`, `PressureState`, `ValveArrayState` and
`MotionState`, switches into the error state when a `SystemError` is added
and back to idle when errors are cleared. `validate_command_safety` raises
`SafetyViolationError` for heating, pressure and Z-motion commands that
exceed a printer's `SafetyLimits`, and `calculate_valve_update_rate` gives the
valve switching rate a layer needs. `FirmwareCommand` has constructors such
as `FirmwareCommand.start_print(path)` and
`FirmwareCommand.set_temperature(zone_id, target)`.

## Runtime helpers

`hypergcode.runtime` offers `build_parser()` and `parse_args(argv)` for the
firmware process's options (`--config`, `--simulate`, `--websocket-port`,
`--api-port`, `--no-network`, `--log-level`, `--log-file`, `--self-test`,
`--calibrate`, `--no-home`, `--print-dir`), `RuntimeConfig.from_args` to load
and validate the printer configuration they name, `RuntimeConfig.validate`
to create the print directory and reject equal ports, `configure_logging`,
`get_health_status` and `validate_firmware_state`.

## What this package does not do

It contains no firmware main loop and drives no hardware: there are no valve,
heater, pressure or Z-axis controllers. It starts no servers – no WebSocket,
REST API or browser control interface – and installs no command; the runtime
helpers parse options and check configuration but do not launch a process.
`hypergcode.simulation` holds only configuration and result records; it does
not run a physics simulation.