"""Firmware-side state tracking, commands and safety checks."""

from __future__ import annotations

import enum
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import ClassVar

from hypergcode.config_types import SafetyLimits
from hypergcode.gcode_types import (
    Command,
    G4HCommand,
    G4LCommand,
    G4PCommand,
    GridCoordinate,
)

FIRMWARE_VERSION = "0.1.0"

TEMP_TOLERANCE = 5.0
"""Default temperature tolerance in degrees Celsius."""

PRESSURE_TOLERANCE = 2.0
"""Default pressure tolerance in PSI."""

STATUS_BROADCAST_INTERVAL_MS = 100
THERMAL_CONTROL_INTERVAL_MS = 100
PRESSURE_CONTROL_INTERVAL_MS = 10
SAFETY_MONITOR_INTERVAL_MS = 1

__all__ = [
    "ErrorSeverity",
    "FirmwareState",
    "PrintStatus",
    "ThermalState",
    "PressureState",
    "ValveArrayState",
    "MotionState",
    "SystemState",
    "SystemError",
    "ValveHealth",
    "SensorReadings",
    "FirmwareCommand",
    "FirmwareError",
    "HardwareInitError",
    "HardwareOperationError",
    "SafetyViolationError",
    "InvalidCommandError",
    "PrintExecutionError",
    "FirmwareFileError",
    "CommunicationError",
    "FirmwareTimeoutError",
    "calculate_valve_update_rate",
    "validate_command_safety",
]


def _fmt_number(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return repr(value)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FirmwareError(Exception):
    """Base error raised by the firmware."""

    prefix: ClassVar[str] = "Firmware error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"{self.prefix}: {detail}")


class HardwareInitError(FirmwareError):
    prefix = "Hardware initialization failed"


class HardwareOperationError(FirmwareError):
    prefix = "Hardware operation failed"


class SafetyViolationError(FirmwareError):
    prefix = "Safety violation"


class InvalidCommandError(FirmwareError):
    prefix = "Invalid command"


class PrintExecutionError(FirmwareError):
    prefix = "Print execution error"


class FirmwareFileError(FirmwareError):
    prefix = "File error"


class CommunicationError(FirmwareError):
    prefix = "Communication error"


class FirmwareTimeoutError(FirmwareError, TimeoutError):
    prefix = "Timeout"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class ErrorSeverity(enum.Enum):
    """How serious a recorded system error is."""

    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"


class FirmwareState(enum.Enum):
    """Operational state of the firmware."""

    INITIALIZING = "Initializing"
    IDLE = "Idle"
    HOMING = "Homing"
    HEATING = "Heating"
    PRINTING = "Printing"
    PAUSED = "Paused"
    ERROR = "Error"
    EMERGENCY_STOPPED = "EmergencyStopped"
    SHUTTING_DOWN = "ShuttingDown"

    def is_error(self) -> bool:
        return self in (FirmwareState.ERROR, FirmwareState.EMERGENCY_STOPPED)

    def is_ready(self) -> bool:
        return self is FirmwareState.IDLE

    def is_printing(self) -> bool:
        return self is FirmwareState.PRINTING


@dataclass
class PrintStatus:
    """Progress of the current print job."""

    file_path: Path
    total_layers: int
    current_layer: int = 0
    z_position: float = 0.0
    progress_percent: float = 0.0
    elapsed_time: timedelta = field(default_factory=timedelta)
    estimated_remaining: timedelta = field(default_factory=timedelta)

    def __post_init__(self) -> None:
        self.file_path = Path(self.file_path)

    def update_progress(self, current_layer: int, z_position: float) -> None:
        self.current_layer = current_layer
        self.z_position = z_position
        if self.total_layers > 0:
            self.progress_percent = current_layer / self.total_layers * 100.0
        else:
            self.progress_percent = 0.0


def _within(reading: tuple[float, float] | None, tolerance: float) -> bool:
    if reading is None:
        return True
    current, target = reading
    return abs(current - target) < tolerance


@dataclass
class ThermalState:
    """Temperatures of all zones as (current, target) pairs."""

    zones: dict[int, tuple[float, float]] = field(default_factory=dict)
    manifold: tuple[float, float] | None = None
    bed: tuple[float, float] | None = None
    chamber: tuple[float, float] | None = None
    all_at_target: bool = False

    def check_at_target(self, tolerance: float) -> bool:
        """Record and return whether every temperature is within tolerance."""
        self.all_at_target = all(
            _within(reading, tolerance)
            for reading in (*self.zones.values(), self.manifold, self.bed, self.chamber)
        )
        return self.all_at_target


@dataclass
class PressureState:
    """Channel pressures as (current, target) pairs and flow rates."""

    channels: dict[int, tuple[float, float]] = field(default_factory=dict)
    flow_rates: dict[int, float] = field(default_factory=dict)
    all_stable: bool = False

    def check_stable(self, tolerance: float) -> bool:
        """Record and return whether every channel is within tolerance."""
        self.all_stable = all(_within(reading, tolerance) for reading in self.channels.values())
        return self.all_stable


@dataclass
class ValveArrayState:
    """Snapshot of the valve array."""

    current_layer: int = 0
    active_nodes: int = 0
    open_valves: int = 0
    pattern_hash: int = 0
    last_update: float = field(default_factory=time.monotonic)


@dataclass
class MotionState:
    """Z-axis motion state."""

    z_position: float = 0.0
    z_homed: bool = False
    z_moving: bool = False
    z_target: float = 0.0


@dataclass
class SystemError:  # noqa: A001 - the firmware's own error record
    """An error recorded against the system, with its context."""

    severity: ErrorSeverity
    code: str
    message: str
    affected_systems: list[str] = field(default_factory=list)
    recovery_action: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SystemState:
    """Combined state of every subsystem."""

    firmware_state: FirmwareState = FirmwareState.INITIALIZING
    print_status: PrintStatus | None = None
    thermal: ThermalState = field(default_factory=ThermalState)
    pressure: PressureState = field(default_factory=PressureState)
    valves: ValveArrayState = field(default_factory=ValveArrayState)
    motion: MotionState = field(default_factory=MotionState)
    errors: list[SystemError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, error: SystemError) -> None:
        self.errors.append(error)
        self.firmware_state = FirmwareState.ERROR

    def clear_errors(self) -> None:
        self.errors.clear()
        if self.firmware_state is FirmwareState.ERROR:
            self.firmware_state = FirmwareState.IDLE


@dataclass
class ValveHealth:
    """Health information for one valve."""

    position: GridCoordinate
    valve_id: int
    cycle_count: int
    avg_response_time_ms: float
    health_score: float  # 0.0 = failed, 1.0 = perfect


@dataclass
class SensorReadings:
    """All sensor values read in one pass."""

    temperatures: dict[int, float] = field(default_factory=dict)
    pressures: dict[int, float] = field(default_factory=dict)
    flow_rates: dict[int, float] = field(default_factory=dict)
    valve_feedbacks: dict[GridCoordinate, list[bool]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Internal commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FirmwareCommand:
    """A command queued for the firmware main loop."""

    class Kind(enum.Enum):
        START_PRINT = "StartPrint"
        PAUSE_PRINT = "PausePrint"
        RESUME_PRINT = "ResumePrint"
        CANCEL_PRINT = "CancelPrint"
        EMERGENCY_STOP = "EmergencyStop"
        SET_TEMPERATURE = "SetTemperature"
        SET_PRESSURE = "SetPressure"
        HOME_AXES = "HomeAxes"

    kind: Kind
    path: Path | None = None
    zone_id: int | None = None
    channel_id: int | None = None
    target: float | None = None

    def __post_init__(self) -> None:
        kind = self.kind
        K = FirmwareCommand.Kind
        if (self.path is not None) != (kind is K.START_PRINT):
            raise InvalidCommandError(f"{kind.value} path mismatch")
        if (self.zone_id is not None) != (kind is K.SET_TEMPERATURE):
            raise InvalidCommandError(f"{kind.value} zone_id mismatch")
        if (self.channel_id is not None) != (kind is K.SET_PRESSURE):
            raise InvalidCommandError(f"{kind.value} channel_id mismatch")
        if (self.target is not None) != (kind in (K.SET_TEMPERATURE, K.SET_PRESSURE)):
            raise InvalidCommandError(f"{kind.value} target mismatch")
        if self.path is not None:
            object.__setattr__(self, "path", Path(self.path))

    @classmethod
    def start_print(cls, path: str | Path) -> FirmwareCommand:
        return cls(cls.Kind.START_PRINT, path=Path(path))

    @classmethod
    def pause_print(cls) -> FirmwareCommand:
        return cls(cls.Kind.PAUSE_PRINT)

    @classmethod
    def resume_print(cls) -> FirmwareCommand:
        return cls(cls.Kind.RESUME_PRINT)

    @classmethod
    def cancel_print(cls) -> FirmwareCommand:
        return cls(cls.Kind.CANCEL_PRINT)

    @classmethod
    def emergency_stop(cls) -> FirmwareCommand:
        return cls(cls.Kind.EMERGENCY_STOP)

    @classmethod
    def set_temperature(cls, zone_id: int, target: float) -> FirmwareCommand:
        return cls(cls.Kind.SET_TEMPERATURE, zone_id=zone_id, target=target)

    @classmethod
    def set_pressure(cls, channel_id: int, target: float) -> FirmwareCommand:
        return cls(cls.Kind.SET_PRESSURE, channel_id=channel_id, target=target)

    @classmethod
    def home_axes(cls) -> FirmwareCommand:
        return cls(cls.Kind.HOME_AXES)


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def calculate_valve_update_rate(layer_time: timedelta | float, valve_count: int) -> float:
    """Valve updates per second needed to switch valve_count valves in layer_time."""
    seconds = (
        layer_time.total_seconds() if isinstance(layer_time, timedelta) else float(layer_time)
    )
    if seconds <= 0 or valve_count == 0:
        return 0.0
    return valve_count / seconds


def validate_command_safety(command: Command, limits: SafetyLimits) -> None:
    """Raise SafetyViolationError if command exceeds the safety limits."""
    match command:
        case G4HCommand(temperature=temp) if temp > limits.max_temperature:
            raise SafetyViolationError(
                f"Temperature {_fmt_number(temp)} exceeds maximum "
                f"{_fmt_number(limits.max_temperature)}"
            )
        case G4PCommand(pressure=pressure) if pressure > limits.max_pressure:
            raise SafetyViolationError(
                f"Pressure {_fmt_number(pressure)} exceeds maximum "
                f"{_fmt_number(limits.max_pressure)}"
            )
        case G4LCommand(feed_rate=feed) if feed is not None and feed > limits.max_z_speed:
            raise SafetyViolationError(
                f"Z speed {_fmt_number(feed)} exceeds maximum {_fmt_number(limits.max_z_speed)}"
            )