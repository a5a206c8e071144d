"""Command-line options, runtime configuration and health reporting for the firmware."""

from __future__ import annotations

import argparse
import functools
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from hypergcode.config_types import ConfigError, InvalidConfigurationError, PrinterConfig
from hypergcode.firmware import FIRMWARE_VERSION, FirmwareError, SystemState

DEFAULT_CONFIG_PATH = Path("/etc/hypergcode/printer.toml")
DEFAULT_PRINT_DIR = Path("/var/hypergcode/prints")
DEFAULT_WEBSOCKET_PORT = 8080
DEFAULT_API_PORT = 8081

TRACE = 5
"""Logging level below DEBUG, used for the most verbose output."""

logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_installed_handlers: list[logging.Handler] = []

logger = logging.getLogger(__name__)


def _port(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {text!r}") from None
    if not 0 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range 0-65535: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build the parser for the firmware's command-line options."""
    parser = argparse.ArgumentParser(
        prog="hg4d-firmware",
        description="Real-time firmware for valve-based 3D printers",
    )
    parser.add_argument("--version", action="version", version=FIRMWARE_VERSION)
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        metavar="FILE",
        default=DEFAULT_CONFIG_PATH,
        help="Printer configuration file",
    )
    parser.add_argument(
        "--simulate", action="store_true", help="Run in simulation mode (no hardware access)"
    )
    parser.add_argument(
        "--websocket-port", type=_port, default=DEFAULT_WEBSOCKET_PORT, help="WebSocket server port"
    )
    parser.add_argument(
        "--api-port", type=_port, default=DEFAULT_API_PORT, help="REST API server port"
    )
    parser.add_argument(
        "--no-network", action="store_true", help="Disable network interfaces (local only)"
    )
    parser.add_argument(
        "-l",
        "--log-level",
        default="info",
        help="Log level (error, warn, info, debug, trace)",
    )
    parser.add_argument(
        "--log-file", type=Path, metavar="FILE", default=None, help="Log to file instead of stdout"
    )
    parser.add_argument(
        "--self-test", action="store_true", help="Perform hardware self-test on startup"
    )
    parser.add_argument("--calibrate", action="store_true", help="Run calibration routine")
    parser.add_argument("--no-home", action="store_true", help="Skip homing on startup")
    parser.add_argument(
        "--print-dir",
        type=Path,
        default=DEFAULT_PRINT_DIR,
        help="Print directory for .hg4d files",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments (sys.argv when argv is None)."""
    return build_parser().parse_args(argv)


@dataclass
class RuntimeConfig:
    """Settings the firmware process runs with."""

    printer_config: PrinterConfig
    websocket_port: int = DEFAULT_WEBSOCKET_PORT
    api_port: int = DEFAULT_API_PORT
    network_enabled: bool = True
    simulation_mode: bool = False
    print_directory: Path = DEFAULT_PRINT_DIR

    def __post_init__(self) -> None:
        self.print_directory = Path(self.print_directory)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> RuntimeConfig:
        """Load and validate the printer configuration named by parsed arguments."""
        logger.info("Loading printer configuration from %s", args.config)
        try:
            printer_config = PrinterConfig.from_file(args.config)
        except ConfigError as exc:
            exc.add_note("Failed to load printer configuration")
            raise
        try:
            printer_config.validate()
        except ConfigError as exc:
            exc.add_note("Printer configuration validation failed")
            raise
        return cls(
            printer_config=printer_config,
            websocket_port=args.websocket_port,
            api_port=args.api_port,
            network_enabled=not args.no_network,
            simulation_mode=args.simulate,
            print_directory=Path(args.print_dir),
        )

    def validate(self) -> None:
        """Create the print directory if needed and check the ports differ."""
        if not self.print_directory.exists():
            try:
                self.print_directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                exc.add_note("Failed to create print directory")
                raise
        if self.websocket_port == self.api_port:
            raise InvalidConfigurationError("WebSocket and API ports cannot be the same")


def configure_logging(log_level: str, log_file: str | Path | None = None) -> logging.Handler:
    """Route log records at log_level and above to log_file, or stdout if None."""
    level = _LEVELS.get(str(log_level).strip().lower())
    if level is None:
        raise ValueError(f"Invalid log level: {log_level!r}")

    if log_file is not None:
        try:
            handler: logging.Handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as exc:
            exc.add_note("Failed to open log file")
            raise
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    root = logging.getLogger()
    for old in _installed_handlers:
        root.removeHandler(old)
        old.close()
    _installed_handlers.clear()

    root.addHandler(handler)
    root.setLevel(level)
    _installed_handlers.append(handler)
    return handler


@functools.cache
def _start_time() -> float:
    return time.monotonic()


def _uptime() -> float:
    return time.monotonic() - _start_time()


@dataclass
class HealthStatus:
    """Health summary for monitoring systems."""

    healthy: bool
    state: str
    errors: int
    warnings: int
    uptime_seconds: int


def get_health_status(state: SystemState) -> HealthStatus:
    """Summarise state for a health check."""
    return HealthStatus(
        healthy=not state.firmware_state.is_error(),
        state=state.firmware_state.value,
        errors=len(state.errors),
        warnings=len(state.warnings),
        uptime_seconds=int(_uptime()),
    )


def validate_firmware_state(state: SystemState) -> None:
    """Raise FirmwareError if the firmware is in an error state."""
    if state.firmware_state.is_error():
        raise FirmwareError(f"Firmware in error state: {state.errors!r}")