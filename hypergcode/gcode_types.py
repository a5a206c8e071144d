"""Core command, coordinate and valve types for HyperGCode-4D."""

from __future__ import annotations

import dataclasses
import enum
import math
import struct
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import ClassVar, TypeVar

_T = TypeVar("_T")


def _fmt_float(value: float) -> str:
    """Format a float the way the wire/text format prints plain numbers."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value == int(value):
        return str(int(value))
    return repr(value)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CommandError(Exception):
    """Base error for command operations."""

    prefix: ClassVar[str] = "Command error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"{self.prefix}: {detail}")


class InvalidCoordinateError(CommandError):
    prefix = "Invalid coordinate"


class InvalidValveStateError(CommandError):
    prefix = "Invalid valve state"


class CommandSerializationError(CommandError):
    prefix = "Serialization error"


class CommandDeserializationError(CommandError):
    prefix = "Deserialization error"


class InvalidParameterError(CommandError):
    prefix = "Invalid parameter"


# ---------------------------------------------------------------------------
# Coordinates and valves
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Coordinate:
    """A position in the build volume, in millimetres."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def is_valid(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.z))

    def distance_to(self, other: Coordinate) -> float:
        return math.dist((self.x, self.y, self.z), (other.x, other.y, other.z))

    def __str__(self) -> str:
        return f"X{self.x:.3f} Y{self.y:.3f} Z{self.z:.3f}"


@dataclass(frozen=True)
class GridCoordinate:
    """A discrete valve-node position in the valve grid."""

    x: int
    y: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise ValueError("grid coordinates must be non-negative")

    def to_physical(self, spacing: float) -> Coordinate:
        return Coordinate(self.x * spacing, self.y * spacing, 0.0)

    def manhattan_distance(self, other: GridCoordinate) -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)


@dataclass(frozen=True)
class ValveState:
    """State of one valve at a grid node."""

    index: int
    open: bool

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 255:
            raise InvalidValveStateError(f"valve index {self.index} out of range [0, 255]")

    @classmethod
    def opened(cls, index: int) -> ValveState:
        return cls(index, True)

    @classmethod
    def closed(cls, index: int) -> ValveState:
        return cls(index, False)

    def __str__(self) -> str:
        return f"V{self.index}:{'O' if self.open else 'C'}"


@dataclass
class NodeValveState:
    """All valve states at a single grid position."""

    position: GridCoordinate
    valves: list[ValveState] = field(default_factory=list)
    material_channel: int | None = None

    def with_material(self, channel: int) -> NodeValveState:
        return dataclasses.replace(self, valves=list(self.valves), material_channel=channel)

    def has_open_valve(self) -> bool:
        return any(v.open for v in self.valves)

    def open_count(self) -> int:
        return sum(1 for v in self.valves if v.open)


@dataclass(frozen=True)
class Color:
    """An RGB colour."""

    r: int
    g: int
    b: int

    BLACK: ClassVar[Color]
    WHITE: ClassVar[Color]
    RED: ClassVar[Color]
    GREEN: ClassVar[Color]
    BLUE: ClassVar[Color]

    def __post_init__(self) -> None:
        for channel in (self.r, self.g, self.b):
            if not 0 <= channel <= 255:
                raise ValueError(f"colour channel {channel} out of range [0, 255]")

    def blend(self, other: Color, factor: float) -> Color:
        """Linear blend; factor 0.0 gives self, 1.0 gives other."""
        factor = min(max(factor, 0.0), 1.0)

        def mix(a: int, b: int) -> int:
            return int(a + (b - a) * factor)

        return Color(mix(self.r, other.r), mix(self.g, other.g), mix(self.b, other.b))

    def __str__(self) -> str:
        return f"R{self.r} G{self.g} B{self.b}"


Color.BLACK = Color(0, 0, 0)
Color.WHITE = Color(255, 255, 255)
Color.RED = Color(255, 0, 0)
Color.GREEN = Color(0, 255, 0)
Color.BLUE = Color(0, 0, 255)


class WaitKind(enum.Enum):
    VALVES = 0
    PRESSURE = 1
    TEMPERATURE = 2
    DURATION = 3


@dataclass(frozen=True)
class WaitType:
    """What a G4W command waits for."""

    kind: WaitKind
    duration_ms: int | None = None

    VALVES: ClassVar[WaitType]
    PRESSURE: ClassVar[WaitType]
    TEMPERATURE: ClassVar[WaitType]

    def __post_init__(self) -> None:
        if self.kind is WaitKind.DURATION:
            if self.duration_ms is None or self.duration_ms < 0:
                raise ValueError("a duration wait needs a non-negative duration_ms")
        elif self.duration_ms is not None:
            raise ValueError(f"{self.kind.name} wait takes no duration")

    @classmethod
    def duration(cls, ms: int) -> WaitType:
        return cls(WaitKind.DURATION, ms)


WaitType.VALVES = WaitType(WaitKind.VALVES)
WaitType.PRESSURE = WaitType(WaitKind.PRESSURE)
WaitType.TEMPERATURE = WaitType(WaitKind.TEMPERATURE)


# ---------------------------------------------------------------------------
# Binary encoding
# ---------------------------------------------------------------------------


class _Writer:
    def __init__(self) -> None:
        self.buf = bytearray()

    def u8(self, v: int) -> None:
        self.buf += struct.pack("<B", v)

    def u32(self, v: int) -> None:
        self.buf += struct.pack("<I", v)

    def u64(self, v: int) -> None:
        self.buf += struct.pack("<Q", v)

    def f32(self, v: float) -> None:
        self.buf += struct.pack("<f", v)

    def bool(self, v: bool) -> None:
        self.u8(1 if v else 0)

    def string(self, v: str) -> None:
        raw = v.encode("utf-8")
        self.u64(len(raw))
        self.buf += raw

    def option(self, v: _T | None, write: Callable[[_T], None]) -> None:
        if v is None:
            self.u8(0)
        else:
            self.u8(1)
            write(v)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise CommandDeserializationError("unexpected end of input")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def f32(self) -> float:
        return struct.unpack("<f", self.take(4))[0]

    def bool(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise CommandDeserializationError(f"invalid bool value {value}")
        return value == 1

    def string(self) -> str:
        raw = self.take(self.u64())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CommandDeserializationError(f"invalid utf-8: {exc}") from exc

    def option(self, read: Callable[[], _T]) -> _T | None:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise CommandDeserializationError(f"invalid option tag {tag}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class Command:
    """Base of all HyperGCode-4D commands."""

    def is_valve_command(self) -> bool:
        return isinstance(self, G4DCommand)

    def is_motion_command(self) -> bool:
        return isinstance(self, G4LCommand)

    def is_thermal_command(self) -> bool:
        return isinstance(self, G4HCommand)

    def to_bytes(self) -> bytes:
        """Encode to the compact little-endian binary format."""
        w = _Writer()
        try:
            _encode(self, w)
        except (struct.error, OverflowError, TypeError, UnicodeEncodeError) as exc:
            raise CommandSerializationError(str(exc)) from exc
        return bytes(w.buf)

    @classmethod
    def from_bytes(cls, data: bytes) -> Command:
        """Decode a command produced by to_bytes."""
        return _decode(_Reader(data))

    def to_gcode_text(self) -> str:
        match self:
            case G4DCommand(position=pos, valves=valves):
                return f"G4D {pos} {' '.join(str(v) for v in valves)}"
            case G4LCommand(z_height=z, feed_rate=None):
                return f"G4L Z{z:.3f}"
            case G4LCommand(z_height=z, feed_rate=f):
                return f"G4L Z{z:.3f} F{f:.1f}"
            case G4CCommand(color=color, material_channel=channel):
                parts = ["G4C"]
                if color is not None:
                    parts.append(f"COLOR {color}")
                if channel is not None:
                    parts.append(f"M{channel}")
                return " ".join(parts)
            case G4SCommand(speed_percentage=speed):
                return f"G4S SPEED {speed:.1f}"
            case G4HCommand(temperature=temp):
                return f"G4H TEMP {temp:.1f}"
            case G4WCommand(wait_type=wait):
                if wait.kind is WaitKind.DURATION:
                    return f"G4W P{wait.duration_ms}"
                return f"G4W {wait.kind.name}"
            case G4PCommand(pressure=pressure):
                return f"G4P PRESSURE {pressure:.1f}"
            case Comment(text=text):
                return f"; {text}"
        raise InvalidParameterError(f"unknown command type {type(self).__name__}")

    def __str__(self) -> str:
        return self.to_gcode_text()


@dataclass
class G4DCommand(Command):
    """4D Deposit: valve configuration at a position."""

    position: Coordinate
    valves: list[ValveState] = field(default_factory=list)
    extrusion: float | None = None


@dataclass
class G4LCommand(Command):
    """Layer Advance: move the Z axis."""

    z_height: float
    feed_rate: float | None = None


@dataclass
class G4CCommand(Command):
    """Colour/material configuration."""

    color: Color | None = None
    material_channel: int | None = None
    mixing_ratios: list[tuple[int, float]] | None = None


@dataclass
class G4SCommand(Command):
    """Speed/flow control."""

    speed_percentage: float
    material_channel: int | None = None


@dataclass
class G4HCommand(Command):
    """Heating control."""

    temperature: float
    zone: int | None = None
    wait: bool = False


@dataclass
class G4WCommand(Command):
    """Wait / synchronisation barrier."""

    wait_type: WaitType
    timeout_ms: int | None = None


@dataclass
class G4PCommand(Command):
    """Pressure control."""

    pressure: float
    material_channel: int | None = None


@dataclass
class Comment(Command):
    """A comment, ignored during execution."""

    text: str


_TAGS: dict[type[Command], int] = {
    G4DCommand: 0,
    G4LCommand: 1,
    G4CCommand: 2,
    G4SCommand: 3,
    G4HCommand: 4,
    G4WCommand: 5,
    G4PCommand: 6,
    Comment: 7,
}


def _encode(cmd: Command, w: _Writer) -> None:
    tag = _TAGS.get(type(cmd))
    if tag is None:
        raise CommandSerializationError(f"unknown command type {type(cmd).__name__}")
    w.u32(tag)
    match cmd:
        case G4DCommand():
            for v in (cmd.position.x, cmd.position.y, cmd.position.z):
                w.f32(v)
            w.u64(len(cmd.valves))
            for valve in cmd.valves:
                w.u8(valve.index)
                w.bool(valve.open)
            w.option(cmd.extrusion, w.f32)
        case G4LCommand():
            w.f32(cmd.z_height)
            w.option(cmd.feed_rate, w.f32)
        case G4CCommand():
            def write_color(c: Color) -> None:
                w.u8(c.r)
                w.u8(c.g)
                w.u8(c.b)

            def write_ratios(ratios: list[tuple[int, float]]) -> None:
                w.u64(len(ratios))
                for channel, ratio in ratios:
                    w.u8(channel)
                    w.f32(ratio)

            w.option(cmd.color, write_color)
            w.option(cmd.material_channel, w.u8)
            w.option(cmd.mixing_ratios, write_ratios)
        case G4SCommand():
            w.f32(cmd.speed_percentage)
            w.option(cmd.material_channel, w.u8)
        case G4HCommand():
            w.f32(cmd.temperature)
            w.option(cmd.zone, w.u8)
            w.bool(cmd.wait)
        case G4WCommand():
            w.u32(cmd.wait_type.kind.value)
            if cmd.wait_type.kind is WaitKind.DURATION:
                w.u32(cmd.wait_type.duration_ms)
            w.option(cmd.timeout_ms, w.u32)
        case G4PCommand():
            w.f32(cmd.pressure)
            w.option(cmd.material_channel, w.u8)
        case Comment():
            w.string(cmd.text)


def _decode(r: _Reader) -> Command:
    tag = r.u32()
    try:
        match tag:
            case 0:
                position = Coordinate(r.f32(), r.f32(), r.f32())
                valves = [ValveState(r.u8(), r.bool()) for _ in range(r.u64())]
                return G4DCommand(position, valves, r.option(r.f32))
            case 1:
                return G4LCommand(r.f32(), r.option(r.f32))
            case 2:
                color = r.option(lambda: Color(r.u8(), r.u8(), r.u8()))
                channel = r.option(r.u8)
                ratios = r.option(lambda: [(r.u8(), r.f32()) for _ in range(r.u64())])
                return G4CCommand(color, channel, ratios)
            case 3:
                return G4SCommand(r.f32(), r.option(r.u8))
            case 4:
                return G4HCommand(r.f32(), r.option(r.u8), r.bool())
            case 5:
                kind_tag = r.u32()
                try:
                    kind = WaitKind(kind_tag)
                except ValueError as exc:
                    raise CommandDeserializationError(f"invalid wait type tag {kind_tag}") from exc
                wait = WaitType.duration(r.u32()) if kind is WaitKind.DURATION else WaitType(kind)
                return G4WCommand(wait, r.option(r.u32))
            case 6:
                return G4PCommand(r.f32(), r.option(r.u8))
            case 7:
                return Comment(r.string())
    except InvalidValveStateError as exc:
        raise CommandDeserializationError(str(exc)) from exc
    raise CommandDeserializationError(f"invalid command tag {tag}")


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


@dataclass
class Layer:
    """The valve activation pattern for one Z height."""

    z_height: float
    layer_number: int
    nodes: list[NodeValveState] = field(default_factory=list)
    primary_material: int | None = None
    estimated_time: float | None = None

    def add_node(self, node: NodeValveState) -> None:
        self.nodes.append(node)

    def node_count(self) -> int:
        return len(self.nodes)

    def open_valve_count(self) -> int:
        return sum(node.open_count() for node in self.nodes)

    def is_multi_material(self) -> bool:
        if not self.nodes:
            return False
        first = self.nodes[0].material_channel
        return any(node.material_channel != first for node in self.nodes)


def validate_coordinate(coord: Coordinate, max_x: float, max_y: float, max_z: float) -> None:
    """Raise InvalidCoordinateError unless coord lies within [0, max] on each axis."""
    if not coord.is_valid():
        raise InvalidCoordinateError("Coordinate contains non-finite values")
    for axis, value, limit in (("X", coord.x, max_x), ("Y", coord.y, max_y), ("Z", coord.z, max_z)):
        if value < 0.0 or value > limit:
            raise InvalidCoordinateError(
                f"{axis} coordinate {_fmt_float(value)} out of bounds [0, {_fmt_float(limit)}]"
            )