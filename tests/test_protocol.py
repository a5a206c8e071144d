import asyncio
import json
import math
from datetime import datetime, timezone

import pytest

from hypergcode.config_types import PrinterConfig
from hypergcode.protocol import (
    AdjustableParameter,
    AdjustParameter,
    CancelPrint,
    CommandResponse,
    ConfigResponse,
    EmergencyStop,
    ErrorEvent,
    ErrorSeverity,
    GetConfig,
    GetStatus,
    MessageBroker,
    MessageTooLargeError,
    PausePrint,
    PressureChannel,
    PressureUpdate,
    PrintStatus,
    ProtocolDeserializationError,
    ProtocolMessage,
    ResumePrint,
    StartPrint,
    StatusResponse,
    StatusUpdate,
    ThermalReading,
    ThermalUpdate,
    ThermalZone,
    TimestampedMessage,
    ValidationError,
    ValveStateUpdate,
    create_error_event,
    create_status_update,
    create_thermal_update,
    deserialize_message,
    serialize_message,
    validate_message,
)


def _printer_config_dict():
    return {
        "model": "HyperCubeMini",
        "build_volume": {"x": 100.0, "y": 100.0, "z": 150.0, "margin": 5.0},
        "valve_array": {
            "grid_spacing": 0.5,
            "total_nodes": 40000,
            "valves_per_node": 4,
            "valve_type": "PneumaticSolenoid",
            "response_time_ms": 10.0,
            "dead_volume": 0.5,
            "max_switching_freq": 10.0,
            "injection_points": [],
        },
        "thermal": {"zones": []},
        "materials": {
            "channel_count": 1,
            "isolated_channels": False,
            "extruders": [],
            "pressure": {
                "min_pressure": 20.0,
                "max_pressure": 100.0,
                "regulation_type": "Pneumatic",
                "sensors": [],
            },
        },
        "motion": {
            "z_axis": {
                "lead_screw_pitch": 2.0,
                "screw_count": 1,
                "steps_per_mm": 400.0,
                "max_speed": 10.0,
                "max_acceleration": 100.0,
            },
            "homing": {"homing_speed": 5.0, "home_to_max": False, "home_at_startup": True},
        },
        "safety": {
            "max_temperature": 300.0,
            "max_pressure": 120.0,
            "max_valve_rate": 20.0,
            "max_z_speed": 15.0,
            "thermal_runaway_rate": 10.0,
            "pressure_fault_threshold": 10.0,
        },
        "metadata": {},
    }


def test_message_type_identification():
    status = StatusUpdate(
        state="Printing",
        current_layer=10,
        total_layers=100,
        z_position=2.0,
        progress_percent=10.0,
        elapsed_time=100,
        estimated_remaining=900,
    )
    assert status.is_status()
    assert not status.is_command()
    assert status.message_type() == "StatusUpdate"

    start = StartPrint(file_path="/path/to/file.hg4d", start_layer=None)
    assert start.is_command()
    assert not start.is_status()


@pytest.mark.parametrize(
    "msg, command, status",
    [
        (ResumePrint(), True, False),
        (CancelPrint(), True, False),
        (EmergencyStop(), True, False),
        (PausePrint("user"), True, False),
        (AdjustParameter(AdjustableParameter.SPEED, None, 1.0, "%"), True, False),
        (ThermalUpdate(), False, True),
        (PressureUpdate(), False, True),
        (ValveStateUpdate(1, 2, 3, "abc"), False, True),
        (GetConfig(), False, False),
        (CommandResponse.ok("done"), False, False),
    ],
)
def test_command_and_status_classification(msg, command, status):
    assert msg.is_command() is command
    assert msg.is_status() is status


def test_message_serialization():
    msg = create_status_update("Printing", 50, 100, 10.0, 300, 300)
    data = serialize_message(msg)
    restored = deserialize_message(data)
    assert isinstance(restored, StatusUpdate)
    assert restored.current_layer == msg.current_layer
    assert restored.state == msg.state
    assert restored == msg


def test_serialized_wire_format():
    msg = create_status_update("Printing", 50, 100, 10.0, 300, 300)
    document = json.loads(serialize_message(msg))
    assert document["type"] == "StatusUpdate"
    assert isinstance(document["timestamp"], int)
    assert document["data"] == {
        "state": "Printing",
        "current_layer": 50,
        "total_layers": 100,
        "z_position": 10.0,
        "progress_percent": 50.0,
        "elapsed_time": 300,
        "estimated_remaining": 300,
    }


def test_unit_variant_has_no_data():
    assert EmergencyStop().to_dict() == {"type": "EmergencyStop"}
    assert ProtocolMessage.from_dict({"type": "CancelPrint"}) == CancelPrint()


def test_adjustable_parameter_snake_case():
    msg = AdjustParameter(AdjustableParameter.FLOW_RATE, 2, 95.0, "%")
    assert msg.to_dict()["data"]["parameter"] == "flow_rate"
    assert ProtocolMessage.from_dict(msg.to_dict()) == msg


def test_timestamped_message_encoding():
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    wrapped = TimestampedMessage(stamp, GetConfig())
    assert wrapped.to_dict() == {"timestamp": 1704067200, "type": "GetConfig"}
    assert TimestampedMessage.from_dict(wrapped.to_dict()) == wrapped


def test_with_timestamp_is_recent():
    before = datetime.now(timezone.utc)
    wrapped = GetStatus("thermal").with_timestamp()
    assert wrapped.message == GetStatus("thermal")
    assert before <= wrapped.timestamp <= datetime.now(timezone.utc)


def test_command_response():
    success = CommandResponse.ok("Print started")
    assert success.success
    assert success.error is None

    error = CommandResponse.failure("File not found")
    assert not error.success
    assert error.error == "File not found"
    assert error.message == ""


def test_message_validation():
    validate_message(StartPrint(file_path="/path/to/file.hg4d", start_layer=None))
    with pytest.raises(ValidationError):
        validate_message(StartPrint(file_path="", start_layer=None))


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_adjust_parameter_must_be_finite(value):
    with pytest.raises(ValidationError, match="finite"):
        validate_message(AdjustParameter(AdjustableParameter.PRESSURE, None, value, "psi"))


@pytest.mark.parametrize("level", list(ErrorSeverity))
def test_error_severity_levels(level):
    event = create_error_event(level, "TEST", "Test error")
    assert isinstance(event, ErrorEvent)
    assert event.severity == level
    assert event.affected_systems == []
    assert event.recommended_action is None


def test_error_severity_wire_names():
    event = create_error_event(ErrorSeverity.CRITICAL, "E1", "boom")
    assert event.to_dict()["data"]["severity"] == "Critical"


def test_status_update_zero_total_layers():
    assert create_status_update("Idle", 5, 0, 0.0, 0, 0).progress_percent == 0.0


def test_thermal_update_from_tuples():
    update = create_thermal_update([(0, 200.0, 235.0), (1, 60.0, 60.0)])
    assert update.zones == [ThermalZone(0, 200.0, 235.0), ThermalZone(1, 60.0, 60.0)]
    assert update.manifold is None and update.bed is None and update.chamber is None


def test_status_response_round_trip():
    msg = StatusResponse(
        state="Printing",
        print_status=PrintStatus(3, 10, 0.6, 30.0, "/prints/a.hg4d"),
        thermal=ThermalUpdate([ThermalZone(0, 230.0, 235.0)], bed=ThermalReading(60.0, 60.0)),
        pressure=PressureUpdate([PressureChannel(0, 50.0, 50.0, 1.5)]),
    )
    assert deserialize_message(serialize_message(msg)) == msg


def test_config_response_round_trip():
    config = PrinterConfig.from_dict(_printer_config_dict())
    msg = ConfigResponse(printer_config=config, firmware_version="0.1.0")
    restored = deserialize_message(serialize_message(msg))
    assert isinstance(restored, ConfigResponse)
    assert restored.printer_config.grid_x_count() == 200
    assert restored == msg


def test_missing_optional_fields_default_to_none():
    msg = ProtocolMessage.from_dict({"type": "StartPrint", "data": {"file_path": "a.hg4d"}})
    assert msg == StartPrint("a.hg4d", None)


def test_non_finite_float_cannot_round_trip():
    msg = create_status_update("Printing", 1, 2, math.nan, 0, 0)
    data = serialize_message(msg)
    assert json.loads(data)["data"]["z_position"] is None
    with pytest.raises(ProtocolDeserializationError):
        deserialize_message(data)


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b'{"type": "GetConfig"}',
        b'{"timestamp": 1, "type": "Unknown"}',
        b'{"timestamp": 1, "type": "StartPrint"}',
        b'{"timestamp": 1, "type": "StartPrint", "data": {}}',
        b'{"timestamp": -1, "type": "GetConfig"}',
        b'{"timestamp": 1, "type": "ValveStateUpdate", '
        b'"data": {"layer": -1, "active_nodes": 0, "open_valves": 0, "pattern_hash": ""}}',
        b'{"timestamp": 1, "type": "ErrorEvent", '
        b'"data": {"severity": "Fatal", "code": "x", "message": "y"}}',
    ],
)
def test_deserialize_rejects_bad_input(payload):
    with pytest.raises(ProtocolDeserializationError):
        deserialize_message(payload)


def test_message_too_large_error_text():
    err = MessageTooLargeError(2_000_000, 1_048_576)
    assert str(err) == "Message too large: 2000000 bytes (max 1048576)"
    assert err.size == 2_000_000


@pytest.mark.asyncio
async def test_broker_delivers_to_all_subscribers():
    broker = MessageBroker()
    first = broker.subscribe()
    second = broker.subscribe()
    msg = create_status_update("Printing", 1, 4, 0.2, 1, 3)
    assert await broker.publish(msg) == 2
    assert await asyncio.wait_for(first.get(), 1) == msg
    assert await asyncio.wait_for(second.get(), 1) == msg


@pytest.mark.asyncio
async def test_broker_drops_oldest_when_full():
    broker = MessageBroker(capacity=2)
    queue = broker.subscribe()
    for layer in range(3):
        await broker.publish(create_status_update("Printing", layer, 10, 0.0, 0, 0))
    received = [queue.get_nowait().current_layer for _ in range(queue.qsize())]
    assert received == [1, 2]


@pytest.mark.asyncio
async def test_broker_without_subscribers():
    assert await MessageBroker().publish(GetConfig()) == 0


def test_broker_rejects_zero_capacity():
    with pytest.raises(ValueError):
        MessageBroker(capacity=0)