"""Printer, material and print-job configuration types, stored as TOML."""

import dataclasses
import enum
import functools
import math
import tomllib
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, TypeVar, Union

import tomli_w

_T = TypeVar("_T")
_NoneType = type(None)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Base error for configuration handling."""

    prefix: ClassVar[str] = "Configuration error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"{self.prefix}: {detail}")


class ConfigIOError(ConfigError):
    prefix = "I/O error"


class ConfigParseError(ConfigError):
    prefix = "Parse error"


class ConfigSerializationError(ConfigError):
    prefix = "Serialization error"


class InvalidConfigurationError(ConfigError):
    prefix = "Invalid configuration"


class MissingFieldError(ConfigError):
    prefix = "Missing required field"


def _fmt_number(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return repr(value)


def _ceil_count(value: float) -> int:
    """Ceil to a non-negative grid count, saturating like an unsigned cast."""
    if math.isnan(value) or value <= 0:
        return 0
    if math.isinf(value):
        return 2**32 - 1
    return min(math.ceil(value), 2**32 - 1)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PrinterModel(enum.Enum):
    HYPER_CUBE_MINI = "HyperCubeMini"
    HYPER_CUBE_STANDARD = "HyperCubeStandard"
    HYPER_CUBE_PRO = "HyperCubePro"
    HYPER_CUBE_INDUSTRIAL = "HyperCubeIndustrial"
    CUSTOM = "Custom"

    def display_name(self) -> str:
        """Human-readable model name."""
        return _MODEL_NAMES[self]


_MODEL_NAMES = {
    PrinterModel.HYPER_CUBE_MINI: "HyperCube-4D Mini",
    PrinterModel.HYPER_CUBE_STANDARD: "HyperCube-4D Standard",
    PrinterModel.HYPER_CUBE_PRO: "HyperCube-4D Pro",
    PrinterModel.HYPER_CUBE_INDUSTRIAL: "HyperCube-4D Industrial",
    PrinterModel.CUSTOM: "Custom HyperGCode-4D Printer",
}


class ValveType(enum.Enum):
    PNEUMATIC_SOLENOID = "PneumaticSolenoid"
    PIEZOELECTRIC = "Piezoelectric"
    ELECTROMAGNETIC = "Electromagnetic"
    MICROFLUIDIC = "Microfluidic"


class ExtruderType(enum.Enum):
    DIRECT_DRIVE = "DirectDrive"
    BOWDEN = "Bowden"
    GEARED = "Geared"


class PressureRegulationType(enum.Enum):
    PNEUMATIC = "Pneumatic"
    HYDRAULIC = "Hydraulic"
    PEDAL_FILAMENT = "PedalFilament"


class MaterialType(enum.Enum):
    PLA = "PLA"
    PETG = "PETG"
    ABS = "ABS"
    TPU = "TPU"
    NYLON = "Nylon"
    PC = "PC"
    ASA = "ASA"
    HIPS = "HIPS"
    PVA = "PVA"
    COMPOSITE_PLA = "CompositePLA"
    COMPOSITE_OTHER = "CompositeOther"
    ENGINEERING = "Engineering"
    EXPERIMENTAL = "Experimental"


class InfillPattern(enum.Enum):
    RECTILINEAR = "Rectilinear"
    GRID = "Grid"
    TRIANGULAR = "Triangular"
    CUBIC = "Cubic"
    GYROID = "Gyroid"
    HONEYCOMB = "Honeycomb"


class PurgeStrategy(enum.Enum):
    TOWER = "Tower"
    INFILL = "Infill"
    WASTE_AREA = "WasteArea"


# ---------------------------------------------------------------------------
# Printer configuration
# ---------------------------------------------------------------------------


@dataclass
class BuildVolume:
    """Build volume dimensions in millimetres."""

    x: float
    y: float
    z: float
    margin: float = 5.0

    def usable_volume(self) -> tuple[float, float, float]:
        return (
            max(self.x - 2.0 * self.margin, 0.0),
            max(self.y - 2.0 * self.margin, 0.0),
            max(self.z - self.margin, 0.0),
        )

    def contains_point(self, x: float, y: float, z: float) -> bool:
        return (
            self.margin <= x <= self.x - self.margin
            and self.margin <= y <= self.y - self.margin
            and 0.0 <= z <= self.z
        )


@dataclass
class InjectionPoint:
    id: int
    x: float
    y: float
    material_channel: int


@dataclass
class ValveArrayConfig:
    grid_spacing: float
    total_nodes: int
    valves_per_node: int
    valve_type: ValveType
    response_time_ms: float
    dead_volume: float
    max_switching_freq: float
    injection_points: list[InjectionPoint] = field(default_factory=list)


@dataclass
class PidParameters:
    kp: float = 20.0
    ki: float = 0.5
    kd: float = 100.0


@dataclass
class ThermalZone:
    id: int
    name: str
    min_temp: float
    max_temp: float
    power_watts: float
    pid: PidParameters = field(default_factory=PidParameters)


@dataclass
class ManifoldHeating:
    power_watts: float
    min_temp: float
    max_temp: float
    pid: PidParameters = field(default_factory=PidParameters)


@dataclass
class ChamberHeating:
    power_watts: float
    max_temp: float
    required: bool


@dataclass
class ThermalConfig:
    zones: list[ThermalZone] = field(default_factory=list)
    manifold: ManifoldHeating | None = None
    chamber: ChamberHeating | None = None


@dataclass
class ExtruderConfig:
    id: int
    material_channel: int
    extruder_type: ExtruderType
    steps_per_mm: float
    max_flow_rate: float
    filament_diameter: float


@dataclass
class PressureSensor:
    id: int
    location: str
    range_psi: tuple[float, float]
    accuracy_percent: float


@dataclass
class PressureConfig:
    min_pressure: float
    max_pressure: float
    regulation_type: PressureRegulationType
    sensors: list[PressureSensor] = field(default_factory=list)


@dataclass
class MaterialSystemConfig:
    channel_count: int
    isolated_channels: bool
    extruders: list[ExtruderConfig]
    pressure: PressureConfig


@dataclass
class ZAxisConfig:
    lead_screw_pitch: float
    screw_count: int
    steps_per_mm: float
    max_speed: float
    max_acceleration: float


@dataclass
class HomingConfig:
    homing_speed: float
    home_to_max: bool
    home_at_startup: bool


@dataclass
class MotionConfig:
    z_axis: ZAxisConfig
    homing: HomingConfig


@dataclass
class SafetyLimits:
    max_temperature: float
    max_pressure: float
    max_valve_rate: float
    max_z_speed: float
    thermal_runaway_rate: float
    pressure_fault_threshold: float


@dataclass
class PrinterMetadata:
    serial_number: str | None = None
    firmware_version: str | None = None
    last_calibration: str | None = None
    notes: str | None = None


@dataclass
class PrinterConfig:
    """Complete description of a printer's hardware capabilities."""

    model: PrinterModel
    build_volume: BuildVolume
    valve_array: ValveArrayConfig
    thermal: ThermalConfig
    materials: MaterialSystemConfig
    motion: MotionConfig
    safety: SafetyLimits
    metadata: PrinterMetadata = field(default_factory=PrinterMetadata)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PrinterConfig":
        return _from_plain(cls, data, "")

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(type(self), self)

    @classmethod
    def from_file(cls, path: str | Path) -> "PrinterConfig":
        return _load_toml(cls, path)

    def to_file(self, path: str | Path) -> None:
        _dump_toml(self, path)

    def validate(self) -> None:
        """Raise InvalidConfigurationError unless values are physically reasonable."""
        volume = self.build_volume
        if volume.x <= 0.0 or volume.y <= 0.0 or volume.z <= 0.0:
            raise InvalidConfigurationError("Build volume dimensions must be positive")

        if self.valve_array.grid_spacing <= 0.0:
            raise InvalidConfigurationError("Valve grid spacing must be positive")

        expected_nodes = self.grid_x_count() * self.grid_y_count()
        if self.valve_array.total_nodes != expected_nodes:
            raise InvalidConfigurationError(
                f"Total valve nodes {self.valve_array.total_nodes} doesn't match "
                f"calculated value {expected_nodes} for grid spacing"
            )

        for zone in self.thermal.zones:
            if zone.min_temp >= zone.max_temp:
                raise InvalidConfigurationError(
                    f"Invalid temperature range for zone {zone.id}: "
                    f"min {_fmt_number(zone.min_temp)} >= max {_fmt_number(zone.max_temp)}"
                )

    def grid_x_count(self) -> int:
        return _ceil_count(self.build_volume.x / self.valve_array.grid_spacing)

    def grid_y_count(self) -> int:
        return _ceil_count(self.build_volume.y / self.valve_array.grid_spacing)


# ---------------------------------------------------------------------------
# Material profiles
# ---------------------------------------------------------------------------


@dataclass
class MaterialProperties:
    density: float
    viscosity: float
    glass_transition_temp: float
    thermal_conductivity: float
    shrinkage: float


@dataclass
class ExtrusionParameters:
    pressure_psi: float
    flow_multiplier: float
    retraction_distance: float
    retraction_speed: float


@dataclass
class PurgeParameters:
    purge_volume_incoming: float
    purge_volume_outgoing: float
    purge_temp: float | None = None


@dataclass
class CoolingParameters:
    min_layer_time: float
    requires_cooling: bool
    initial_fan_speed: float
    regular_fan_speed: float


@dataclass
class MaterialProfile:
    """Material-specific extrusion and deposition parameters."""

    name: str
    material_type: MaterialType
    temp_range: tuple[float, float]
    optimal_temp: float
    bed_temp: float
    properties: MaterialProperties
    extrusion: ExtrusionParameters
    purge: PurgeParameters
    cooling: CoolingParameters

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MaterialProfile":
        return _from_plain(cls, data, "")

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(type(self), self)

    @classmethod
    def from_file(cls, path: str | Path) -> "MaterialProfile":
        return _load_toml(cls, path)

    def to_file(self, path: str | Path) -> None:
        _dump_toml(self, path)


# ---------------------------------------------------------------------------
# Print settings
# ---------------------------------------------------------------------------


@dataclass
class SpeedSettings:
    normal_speed: float
    first_layer_factor: float
    small_perimeter_factor: float


@dataclass
class InfillSettings:
    density: float
    pattern: InfillPattern


@dataclass
class SupportSettings:
    enabled: bool
    material_channel: int | None
    density: float


@dataclass
class PurgeTowerSettings:
    x: float
    y: float
    width: float
    depth: float


@dataclass
class MultiMaterialSettings:
    material_map: dict[str, int]
    purge_strategy: PurgeStrategy
    purge_tower: PurgeTowerSettings | None = None


@dataclass
class PrintSettings:
    layer_height: float
    first_layer_height: float
    speeds: SpeedSettings
    infill: InfillSettings
    supports: SupportSettings
    multi_material: MultiMaterialSettings | None = None


# ---------------------------------------------------------------------------
# Plain-data conversion
# ---------------------------------------------------------------------------


@functools.cache
def _hints(cls: type) -> dict[str, Any]:
    return {f.name: f.type for f in dataclasses.fields(cls)}


def _optional_inner(tp: Any) -> Any | None:
    """Return the wrapped type if tp is ``X | None``, else None."""
    if typing.get_origin(tp) in (Union, types.UnionType):
        args = [a for a in typing.get_args(tp) if a is not _NoneType]
        if len(args) == 1 and len(typing.get_args(tp)) == 2:
            return args[0]
    return None


def _where(path: str) -> str:
    return path or "document"


def _from_plain(tp: Any, value: Any, path: str) -> Any:
    inner = _optional_inner(tp)
    if inner is not None:
        return None if value is None else _from_plain(inner, value, path)

    if dataclasses.is_dataclass(tp):
        if not isinstance(value, Mapping):
            raise ConfigParseError(f"{_where(path)}: expected a table")
        hints = _hints(tp)
        kwargs = {}
        for f in dataclasses.fields(tp):
            sub = f"{path}.{f.name}" if path else f.name
            ftype = hints[f.name]
            if f.name in value:
                kwargs[f.name] = _from_plain(ftype, value[f.name], sub)
            elif _optional_inner(ftype) is not None:
                kwargs[f.name] = None
            else:
                raise MissingFieldError(sub)
        return tp(**kwargs)

    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        try:
            return tp(value)
        except ValueError:
            names = ", ".join(m.value for m in tp)
            raise ConfigParseError(
                f"{_where(path)}: unknown variant {value!r}, expected one of {names}"
            ) from None

    origin = typing.get_origin(tp)
    if origin is list:
        (item,) = typing.get_args(tp)
        if not isinstance(value, list):
            raise ConfigParseError(f"{_where(path)}: expected an array")
        return [_from_plain(item, v, f"{path}[{i}]") for i, v in enumerate(value)]
    if origin is tuple:
        items = typing.get_args(tp)
        if not isinstance(value, (list, tuple)) or len(value) != len(items):
            raise ConfigParseError(f"{_where(path)}: expected an array of {len(items)} items")
        return tuple(_from_plain(t, v, f"{path}[{i}]") for i, (t, v) in enumerate(zip(items, value)))
    if origin is dict:
        key_type, val_type = typing.get_args(tp)
        if not isinstance(value, Mapping):
            raise ConfigParseError(f"{_where(path)}: expected a table")
        return {
            _from_plain(key_type, k, path): _from_plain(val_type, v, f"{path}.{k}")
            for k, v in value.items()
        }

    if tp is bool:
        if isinstance(value, bool):
            return value
        raise ConfigParseError(f"{_where(path)}: expected a boolean")
    if tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ConfigParseError(f"{_where(path)}: expected an integer")
    if tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ConfigParseError(f"{_where(path)}: expected a number")
    if tp is str:
        if isinstance(value, str):
            return value
        raise ConfigParseError(f"{_where(path)}: expected a string")
    raise ConfigParseError(f"{_where(path)}: unsupported type {tp!r}")


def _to_plain(tp: Any, value: Any) -> Any:
    inner = _optional_inner(tp)
    if inner is not None:
        return None if value is None else _to_plain(inner, value)

    if dataclasses.is_dataclass(tp):
        hints = _hints(tp)
        result = {}
        for f in dataclasses.fields(tp):
            item = getattr(value, f.name)
            if item is not None:
                result[f.name] = _to_plain(hints[f.name], item)
        return result
    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        return tp(value).value

    origin = typing.get_origin(tp)
    if origin is list:
        (item,) = typing.get_args(tp)
        return [_to_plain(item, v) for v in value]
    if origin is tuple:
        return [_to_plain(t, v) for t, v in zip(typing.get_args(tp), value)]
    if origin is dict:
        _, val_type = typing.get_args(tp)
        return {str(k): _to_plain(val_type, v) for k, v in value.items()}
    if tp is float:
        return float(value)
    return value


def _load_toml(cls: type[_T], path: str | Path) -> _T:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigIOError(str(exc)) from exc
    try:
        data = tomllib.loads(text)
        return _from_plain(cls, data, "")
    except tomllib.TOMLDecodeError as exc:
        raise ConfigParseError(str(exc)) from exc
    except ConfigParseError:
        raise
    except ConfigError as exc:
        raise ConfigParseError(str(exc)) from exc


def _dump_toml(obj: Any, path: str | Path) -> None:
    try:
        text = tomli_w.dumps(_to_plain(type(obj), obj))
    except (TypeError, ValueError) as exc:
        raise ConfigSerializationError(str(exc)) from exc
    try:
        Path(path).write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ConfigIOError(str(exc)) from exc