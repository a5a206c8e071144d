from datetime import timedelta
from pathlib import Path

import pytest

from hypergcode.config_types import SafetyLimits
from hypergcode.firmware import (
    ErrorSeverity,
    FirmwareCommand,
    FirmwareError,
    FirmwareState,
    FirmwareTimeoutError,
    InvalidCommandError,
    PressureState,
    PrintStatus,
    SafetyViolationError,
    SystemError,
    SystemState,
    ThermalState,
    calculate_valve_update_rate,
    validate_command_safety,
)
from hypergcode.gcode_types import (
    Comment,
    Coordinate,
    G4DCommand,
    G4HCommand,
    G4LCommand,
    G4PCommand,
)


@pytest.fixture
def limits():
    return SafetyLimits(
        max_temperature=300.0,
        max_pressure=120.0,
        max_valve_rate=20.0,
        max_z_speed=15.0,
        thermal_runaway_rate=10.0,
        pressure_fault_threshold=10.0,
    )


def test_firmware_state_checks():
    assert FirmwareState.ERROR.is_error()
    assert FirmwareState.EMERGENCY_STOPPED.is_error()
    assert not FirmwareState.IDLE.is_error()
    assert FirmwareState.IDLE.is_ready()
    assert not FirmwareState.PRINTING.is_ready()
    assert FirmwareState.PRINTING.is_printing()
    assert not FirmwareState.IDLE.is_printing()


def test_calculate_valve_update_rate():
    assert calculate_valve_update_rate(timedelta(seconds=1), 1000) == 1000.0
    rate = calculate_valve_update_rate(timedelta(milliseconds=100), 500)
    assert abs(rate - 5000.0) < 0.01


def test_calculate_valve_update_rate_zero_cases():
    assert calculate_valve_update_rate(timedelta(0), 100) == 0.0
    assert calculate_valve_update_rate(timedelta(seconds=2), 0) == 0.0


def test_thermal_state_at_target():
    state = ThermalState()
    state.zones[0] = (235.0, 235.0)
    state.zones[1] = (234.5, 235.0)
    assert state.check_at_target(1.0)
    assert state.all_at_target
    assert not state.check_at_target(0.1)
    assert not state.all_at_target


def test_thermal_state_includes_bed():
    state = ThermalState(bed=(50.0, 60.0))
    assert not state.check_at_target(5.0)
    assert state.check_at_target(11.0)


def test_pressure_state_stable():
    state = PressureState(channels={0: (60.0, 61.0), 1: (59.5, 60.0)})
    assert state.check_stable(2.0)
    assert not state.check_stable(0.9)


def test_print_status_progress():
    status = PrintStatus("model.hg4d", 200)
    assert status.file_path == Path("model.hg4d")
    status.update_progress(50, 10.0)
    assert status.current_layer == 50
    assert status.z_position == 10.0
    assert status.progress_percent == 25.0


def test_print_status_progress_without_layers():
    status = PrintStatus(Path("empty.hg4d"), 0)
    status.update_progress(3, 1.5)
    assert status.progress_percent == 0.0


def test_system_state_errors():
    state = SystemState()
    assert state.firmware_state is FirmwareState.INITIALIZING
    state.add_error(SystemError(ErrorSeverity.ERROR, "E1", "heater fault"))
    assert state.firmware_state is FirmwareState.ERROR
    assert len(state.errors) == 1
    state.clear_errors()
    assert state.errors == []
    assert state.firmware_state is FirmwareState.IDLE


def test_clear_errors_keeps_other_states():
    state = SystemState(firmware_state=FirmwareState.PRINTING)
    state.clear_errors()
    assert state.firmware_state is FirmwareState.PRINTING


def test_safety_temperature(limits):
    with pytest.raises(SafetyViolationError, match="Temperature 350 exceeds maximum 300"):
        validate_command_safety(G4HCommand(350.0), limits)
    assert validate_command_safety(G4HCommand(250.0), limits) is None


def test_safety_pressure(limits):
    with pytest.raises(SafetyViolationError, match="Pressure 150 exceeds maximum 120"):
        validate_command_safety(G4PCommand(150.0), limits)


def test_safety_z_speed(limits):
    with pytest.raises(SafetyViolationError, match="Z speed 20 exceeds maximum 15"):
        validate_command_safety(G4LCommand(1.0, 20.0), limits)
    assert validate_command_safety(G4LCommand(1.0), limits) is None


def test_safety_ignores_other_commands(limits):
    assert validate_command_safety(G4DCommand(Coordinate(1.0, 2.0, 0.0)), limits) is None
    assert validate_command_safety(Comment("hello"), limits) is None


def test_safety_error_is_firmware_error(limits):
    with pytest.raises(FirmwareError) as info:
        validate_command_safety(G4HCommand(400.0), limits)
    assert str(info.value).startswith("Safety violation: ")


def test_firmware_command_constructors():
    cmd = FirmwareCommand.set_temperature(2, 210.0)
    assert cmd.kind is FirmwareCommand.Kind.SET_TEMPERATURE
    assert (cmd.zone_id, cmd.target) == (2, 210.0)
    start = FirmwareCommand.start_print("prints/a.hg4d")
    assert start.path == Path("prints/a.hg4d")
    assert FirmwareCommand.home_axes().kind is FirmwareCommand.Kind.HOME_AXES


def test_firmware_command_rejects_mismatched_fields():
    with pytest.raises(InvalidCommandError):
        FirmwareCommand(FirmwareCommand.Kind.PAUSE_PRINT, target=1.0)
    with pytest.raises(InvalidCommandError):
        FirmwareCommand(FirmwareCommand.Kind.SET_PRESSURE, channel_id=1)


def test_timeout_error_message():
    err = FirmwareTimeoutError("homing")
    assert str(err) == "Timeout: homing"
    assert isinstance(err, TimeoutError)
    assert isinstance(err, FirmwareError)