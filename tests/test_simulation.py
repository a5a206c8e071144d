import dataclasses

from hypergcode.simulation import PerformanceMetrics, SimulationConfig, SimulationResults


def test_default_config_matches_source():
    config = SimulationConfig()
    assert config.time_step == 0.001
    assert config.speed_multiplier == 1.0
    assert config.visualize is True
    assert config.analyze is False


def test_replace_keeps_other_defaults():
    config = dataclasses.replace(SimulationConfig(), speed_multiplier=2.5, analyze=True)
    assert config.speed_multiplier == 2.5
    assert config.analyze is True
    assert config.time_step == SimulationConfig().time_step
    assert config.visualize == SimulationConfig().visualize


def test_config_equality():
    assert SimulationConfig() == SimulationConfig(0.001, 1.0, True, False)
    assert SimulationConfig() != SimulationConfig(visualize=False)


def test_results_without_performance():
    results = SimulationResults(
        total_time=1.0,
        avg_pressure=50.0,
        peak_pressure=60.0,
        material_deposited=10.0,
        valve_operations=1000,
    )
    assert results.performance is None
    assert results.peak_pressure >= results.avg_pressure


def test_results_roundtrip_through_asdict():
    metrics = PerformanceMetrics(ops_per_second=1000.0, memory_used=1024, cpu_time=0.5)
    results = SimulationResults(1.0, 50.0, 60.0, 10.0, 1000, metrics)
    data = dataclasses.asdict(results)
    rebuilt = SimulationResults(
        **{**data, "performance": PerformanceMetrics(**data["performance"])}
    )
    assert rebuilt == results
    assert data["performance"]["memory_used"] == 1024