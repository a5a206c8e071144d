"""Configuration and result types for running simulations without hardware."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SimulationConfig:
    """Simulation parameters."""

    time_step: float = 0.001
    """Simulation time step in seconds."""
    speed_multiplier: float = 1.0
    """Real-time speed multiplier."""
    visualize: bool = True
    analyze: bool = False


@dataclass
class PerformanceMetrics:
    """Performance measured during a simulation run."""

    ops_per_second: float
    memory_used: int
    """Memory usage in bytes."""
    cpu_time: float
    """CPU time in seconds."""


@dataclass
class SimulationResults:
    """Results of a simulation run."""

    total_time: float
    """Total simulated time in seconds."""
    avg_pressure: float
    peak_pressure: float
    material_deposited: float
    """Material deposited in cubic millimetres."""
    valve_operations: int
    performance: PerformanceMetrics | None = None