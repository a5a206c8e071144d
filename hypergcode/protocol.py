"""Messages exchanged between the firmware and the control interface."""

import asyncio
import dataclasses
import enum
import json
import math
import types
import typing
import weakref
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Union

from hypergcode.config_types import ConfigError, PrinterConfig

PROTOCOL_VERSION = "1.0"
DEFAULT_WEBSOCKET_PORT = 8080
DEFAULT_SERIAL_BAUD = 115200
MAX_MESSAGE_SIZE = 1024 * 1024

_NoneType = type(None)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProtocolError(Exception):
    """Base error for protocol handling."""

    prefix: ClassVar[str] = "Protocol error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"{self.prefix}: {detail}")


class ProtocolSerializationError(ProtocolError):
    prefix = "Serialization error"


class ProtocolDeserializationError(ProtocolError):
    prefix = "Deserialization error"


class ValidationError(ProtocolError):
    prefix = "Validation error"


class MessageTooLargeError(ProtocolError):
    """A message exceeds the allowed size."""

    def __init__(self, size: int, limit: int = MAX_MESSAGE_SIZE) -> None:
        self.size = size
        self.limit = limit
        self.detail = f"{size} bytes (max {limit})"
        Exception.__init__(self, f"Message too large: {size} bytes (max {limit})")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ErrorSeverity(enum.Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"


class AdjustableParameter(enum.Enum):
    FLOW_RATE = "flow_rate"
    TEMPERATURE = "temperature"
    PRESSURE = "pressure"
    SPEED = "speed"


# ---------------------------------------------------------------------------
# Message base
# ---------------------------------------------------------------------------


class ProtocolMessage:
    """Base of every protocol message; encoded as {"type": ..., "data": ...}."""

    def with_timestamp(self) -> "TimestampedMessage":
        return TimestampedMessage(datetime.now(timezone.utc), self)

    def message_type(self) -> str:
        return type(self).__name__

    def is_command(self) -> bool:
        return isinstance(
            self,
            (StartPrint, PausePrint, ResumePrint, CancelPrint, EmergencyStop, AdjustParameter),
        )

    def is_status(self) -> bool:
        return isinstance(self, (StatusUpdate, ThermalUpdate, PressureUpdate, ValveStateUpdate))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.message_type()}
        if dataclasses.fields(self):
            result["data"] = _encode(self)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProtocolMessage":
        if not isinstance(data, Mapping):
            raise ProtocolDeserializationError("expected an object")
        name = data.get("type")
        if name is None:
            raise ProtocolDeserializationError("missing field `type`")
        msg_cls = _MESSAGE_TYPES.get(name)
        if msg_cls is None:
            raise ProtocolDeserializationError(f"unknown message type {name!r}")
        if not issubclass(msg_cls, cls):
            raise ProtocolDeserializationError(f"{name} is not a {cls.__name__}")
        if not dataclasses.fields(msg_cls):
            if data.get("data") is not None:
                raise ProtocolDeserializationError(f"{name} carries no data")
            return msg_cls()
        if "data" not in data:
            raise ProtocolDeserializationError("missing field `data`")
        return _decode(msg_cls, data["data"], "data")


@dataclass
class TimestampedMessage:
    """A message paired with the time it was created."""

    timestamp: datetime
    message: ProtocolMessage

    def to_dict(self) -> dict[str, Any]:
        seconds = math.floor(self.timestamp.timestamp())
        if seconds < 0:
            raise ProtocolSerializationError("timestamp precedes the Unix epoch")
        return {"timestamp": seconds, **self.message.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimestampedMessage":
        if not isinstance(data, Mapping):
            raise ProtocolDeserializationError("expected an object")
        if "timestamp" not in data:
            raise ProtocolDeserializationError("missing field `timestamp`")
        seconds = data["timestamp"]
        if not isinstance(seconds, int) or isinstance(seconds, bool) or seconds < 0:
            raise ProtocolDeserializationError("timestamp must be a non-negative integer")
        try:
            timestamp = datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, ValueError, OSError) as exc:
            raise ProtocolDeserializationError(f"timestamp out of range: {exc}") from exc
        return cls(timestamp, ProtocolMessage.from_dict(data))


# ---------------------------------------------------------------------------
# Status messages (firmware -> control interface)
# ---------------------------------------------------------------------------


@dataclass
class StatusUpdate(ProtocolMessage):
    state: str
    current_layer: int
    total_layers: int
    z_position: float
    progress_percent: float
    elapsed_time: int
    estimated_remaining: int


@dataclass
class ThermalZone:
    id: int
    current: float
    target: float


@dataclass
class ThermalReading:
    current: float
    target: float


@dataclass
class ThermalUpdate(ProtocolMessage):
    zones: list[ThermalZone] = field(default_factory=list)
    manifold: ThermalReading | None = None
    bed: ThermalReading | None = None
    chamber: ThermalReading | None = None


@dataclass
class PressureChannel:
    id: int
    pressure: float
    target: float
    flow_rate: float


@dataclass
class PressureUpdate(ProtocolMessage):
    channels: list[PressureChannel] = field(default_factory=list)


@dataclass
class ValveStateUpdate(ProtocolMessage):
    layer: int
    active_nodes: int
    open_valves: int
    pattern_hash: str


@dataclass
class ErrorEvent(ProtocolMessage):
    severity: ErrorSeverity
    code: str
    message: str
    affected_systems: list[str] = field(default_factory=list)
    recommended_action: str | None = None


# ---------------------------------------------------------------------------
# Commands (control interface -> firmware)
# ---------------------------------------------------------------------------


@dataclass
class StartPrint(ProtocolMessage):
    file_path: str
    start_layer: int | None = None


@dataclass
class PausePrint(ProtocolMessage):
    reason: str


@dataclass
class ResumePrint(ProtocolMessage):
    pass


@dataclass
class CancelPrint(ProtocolMessage):
    pass


@dataclass
class EmergencyStop(ProtocolMessage):
    pass


@dataclass
class AdjustParameter(ProtocolMessage):
    parameter: AdjustableParameter
    channel_or_zone: int | None
    value: float
    unit: str


# ---------------------------------------------------------------------------
# Requests and responses
# ---------------------------------------------------------------------------


@dataclass
class GetStatus(ProtocolMessage):
    status_type: str | None = None


@dataclass
class PrintStatus:
    current_layer: int
    total_layers: int
    z_position: float
    progress_percent: float
    file_path: str


@dataclass
class StatusResponse(ProtocolMessage):
    state: str
    print_status: PrintStatus | None
    thermal: ThermalUpdate
    pressure: PressureUpdate


@dataclass
class GetConfig(ProtocolMessage):
    pass


@dataclass
class ConfigResponse(ProtocolMessage):
    printer_config: PrinterConfig
    firmware_version: str


@dataclass
class CommandResponse(ProtocolMessage):
    success: bool
    message: str
    error: str | None = None

    @classmethod
    def ok(cls, message: str) -> "CommandResponse":
        return cls(True, message, None)

    @classmethod
    def failure(cls, message: str) -> "CommandResponse":
        return cls(False, "", message)


_MESSAGE_TYPES: dict[str, type[ProtocolMessage]] = {
    cls.__name__: cls
    for cls in (
        StatusUpdate,
        ThermalUpdate,
        PressureUpdate,
        ValveStateUpdate,
        ErrorEvent,
        StartPrint,
        PausePrint,
        ResumePrint,
        CancelPrint,
        EmergencyStop,
        AdjustParameter,
        GetStatus,
        StatusResponse,
        GetConfig,
        ConfigResponse,
        CommandResponse,
    )
}


# ---------------------------------------------------------------------------
# Pub/sub
# ---------------------------------------------------------------------------


class MessageBroker:
    """Fans published messages out to every live subscriber queue."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: "weakref.WeakSet[asyncio.Queue[ProtocolMessage]]" = weakref.WeakSet()

    def subscribe(self) -> "asyncio.Queue[ProtocolMessage]":
        queue: "asyncio.Queue[ProtocolMessage]" = asyncio.Queue(maxsize=self._capacity)
        self._subscribers.add(queue)
        return queue

    async def publish(self, msg: ProtocolMessage) -> int:
        """Deliver msg to all subscribers; return how many received it."""
        delivered = 0
        for queue in list(self._subscribers):
            if queue.full():
                # A lagging subscriber loses its oldest message.
                queue.get_nowait()
            queue.put_nowait(msg)
            delivered += 1
        return delivered


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def _optional_inner(tp: Any) -> Any | None:
    if typing.get_origin(tp) in (Union, types.UnionType):
        args = typing.get_args(tp)
        rest = [a for a in args if a is not _NoneType]
        if len(args) == 2 and len(rest) == 1:
            return rest[0]
    return None


def _encode(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, PrinterConfig):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _encode(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    return value


def _decode(tp: Any, value: Any, path: str) -> Any:
    inner = _optional_inner(tp)
    if inner is not None:
        return None if value is None else _decode(inner, value, path)

    if tp is PrinterConfig:
        if not isinstance(value, Mapping):
            raise ProtocolDeserializationError(f"{path}: expected an object")
        try:
            return PrinterConfig.from_dict(value)
        except ConfigError as exc:
            raise ProtocolDeserializationError(f"{path}: {exc}") from exc

    if dataclasses.is_dataclass(tp):
        if not isinstance(value, Mapping):
            raise ProtocolDeserializationError(f"{path}: expected an object")
        kwargs = {}
        for f in dataclasses.fields(tp):
            sub = f"{path}.{f.name}"
            ftype = f.type
            if f.name in value:
                kwargs[f.name] = _decode(ftype, value[f.name], sub)
            elif _optional_inner(ftype) is not None:
                kwargs[f.name] = None
            else:
                raise ProtocolDeserializationError(f"missing field `{sub}`")
        return tp(**kwargs)

    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        try:
            return tp(value)
        except ValueError:
            raise ProtocolDeserializationError(f"{path}: unknown variant {value!r}") from None

    if typing.get_origin(tp) is list:
        (item,) = typing.get_args(tp)
        if not isinstance(value, list):
            raise ProtocolDeserializationError(f"{path}: expected an array")
        return [_decode(item, v, f"{path}[{i}]") for i, v in enumerate(value)]

    if tp is bool:
        if isinstance(value, bool):
            return value
        raise ProtocolDeserializationError(f"{path}: expected a boolean")
    if tp is int:
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        raise ProtocolDeserializationError(f"{path}: expected a non-negative integer")
    if tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ProtocolDeserializationError(f"{path}: expected a number")
    if tp is str:
        if isinstance(value, str):
            return value
        raise ProtocolDeserializationError(f"{path}: expected a string")
    raise ProtocolDeserializationError(f"{path}: unsupported type {tp!r}")


def _reject_constant(name: str) -> Any:
    raise ProtocolDeserializationError(f"invalid number {name}")


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def serialize_message(msg: ProtocolMessage) -> bytes:
    """Encode msg, stamped with the current time, as JSON bytes."""
    try:
        payload = msg.with_timestamp().to_dict()
        return json.dumps(payload, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ProtocolSerializationError(str(exc)) from exc


def deserialize_message(data: bytes | str) -> ProtocolMessage:
    """Decode JSON produced by serialize_message, dropping the timestamp."""
    try:
        document = json.loads(data, parse_constant=_reject_constant)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolDeserializationError(str(exc)) from exc
    return TimestampedMessage.from_dict(document).message


def validate_message(msg: ProtocolMessage) -> None:
    """Raise ValidationError if msg has invalid content."""
    match msg:
        case StartPrint(file_path=path) if not path:
            raise ValidationError("file_path cannot be empty")
        case AdjustParameter(value=value) if not math.isfinite(value):
            raise ValidationError("parameter value must be finite")


def create_status_update(
    state: str,
    current_layer: int,
    total_layers: int,
    z_position: float,
    elapsed_secs: int,
    remaining_secs: int,
) -> StatusUpdate:
    progress = current_layer / total_layers * 100.0 if total_layers > 0 else 0.0
    return StatusUpdate(
        state=str(state),
        current_layer=current_layer,
        total_layers=total_layers,
        z_position=z_position,
        progress_percent=progress,
        elapsed_time=elapsed_secs,
        estimated_remaining=remaining_secs,
    )


def create_thermal_update(zones: Iterable[tuple[int, float, float]]) -> ThermalUpdate:
    return ThermalUpdate(
        zones=[ThermalZone(zone_id, current, target) for zone_id, current, target in zones]
    )


def create_error_event(severity: ErrorSeverity, code: str, message: str) -> ErrorEvent:
    return ErrorEvent(severity=severity, code=str(code), message=str(message))