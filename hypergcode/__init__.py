"""Command types, configuration, protocol messages and firmware state model for HyperGCode-4D printers."""

__version__ = "0.1.0"

__all__ = [
    "config_types",
    "firmware",
    "gcode_types",
    "protocol",
    "runtime",
    "simulation",
]