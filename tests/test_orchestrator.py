"""Unit tests for orchestrator.py module."""

import logging
import math

import pytest

from rq_autotune.clusters import ClusterStatus
from rq_autotune.config import TuningConfig
from rq_autotune.energy import EnergyStatus
from rq_autotune.orchestrator import TickMetrics, TuningOrchestrator
from rq_autotune.parameters import ParameterSet, ParameterStore


class FakeLedger:
    def __init__(self, accept=True):
        self.accept = accept
        self.injections = []

    def record_external_injection(self, amount, tag):
        self.injections.append((tag, amount))
        return self.accept

    def register_radiation(self, amount):
        pass


class FakeEngine:
    """Engine stub with a scripted spectral measurement."""

    def __init__(self, vacuum=100.0, total=100.0, measurement=(4.0, -2.0, "heat_kernel")):
        self.has_graph = True
        self.node_count = 1000
        self._vacuum = vacuum
        self.total_tracked_energy = total
        self.ledger = FakeLedger()
        self.measurement = measurement
        self.fail_pool = False
        self.fail_measure = False
        self.removed = []
        self.weakened = 0

    @property
    def vacuum_pool(self):
        if self.fail_pool:
            raise RuntimeError("pool read failed")
        return self._vacuum

    def measure_spectral_dimension(self):
        if self.fail_measure:
            raise RuntimeError("walkers lost")
        return self.measurement

    def weaken_overcorrelated_edges(self):
        self.weakened += 1
        return 3

    def remove_internal_edges(self, fraction):
        self.removed.append(fraction)
        return 10

    def oversized_clusters(self, min_size):
        return []

    def inject_cluster_noise(self, cluster_id, amplitude):
        pass

    def edge_weights(self):
        return []


def make_metrics(**overrides):
    values = dict(
        spectral_dimension=4.0,
        active_count=300,
        cluster_count=5,
        largest_cluster=100,
        heavy_mass=80.0,
        node_count=1000,
    )
    values.update(overrides)
    return TickMetrics(**values)


def make_orchestrator(engine=None, store=None, **overrides):
    settings = dict(warmup_steps=0, tuning_interval=10, spectral_compute_interval=10, enable_exploration=False)
    settings.update(overrides)
    orchestrator = TuningOrchestrator(TuningConfig(**settings), engine or FakeEngine(), store=store)
    orchestrator.initialize()
    return orchestrator


class TestCadence:
    """Test the conditions under which a tick is skipped."""

    def test_disabled(self):
        """Test that a disabled orchestrator does nothing."""
        orchestrator = make_orchestrator()
        orchestrator.enabled = False
        assert orchestrator.tick(10, make_metrics()) is None
        assert orchestrator.summary() == "Auto-tuning disabled"

    def test_before_warmup(self):
        """Test that ticks before warmup are skipped."""
        orchestrator = make_orchestrator(warmup_steps=200)
        assert orchestrator.tick(150, make_metrics()) is None
        assert orchestrator.last_report is None

    def test_interval(self):
        """Test that ticks closer than the tuning interval are skipped."""
        orchestrator = make_orchestrator()
        assert orchestrator.tick(10, make_metrics()) is not None
        assert orchestrator.tick(15, make_metrics()) is None
        assert orchestrator.tick(20, make_metrics()) is not None

    def test_no_graph_does_not_consume_interval(self):
        """Test that a missing graph skips the tick without side effects."""
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine)
        engine.has_graph = False
        assert orchestrator.tick(10, make_metrics()) is None
        engine.has_graph = True
        assert orchestrator.tick(15, make_metrics()) is not None

    def test_empty_graph(self):
        """Test that a zero node count skips the tick."""
        orchestrator = make_orchestrator()
        assert orchestrator.tick(10, make_metrics(node_count=0)) is None
        assert orchestrator.store.generation == 0

    def test_missing_engine(self):
        """Test that the orchestrator tolerates a missing engine."""
        orchestrator = TuningOrchestrator(TuningConfig(warmup_steps=0), None)
        orchestrator.initialize()
        assert orchestrator.tick(500, make_metrics()) is None


class TestEnergyStage:
    """Test energy handling and the Critical short-circuit."""

    def test_critical_short_circuit(self):
        """Test that a Critical pool publishes and skips all later stages."""
        engine = FakeEngine(vacuum=3.0, total=100.0)
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics())

        assert message is not None
        parts = message.split("; ")
        assert all(part.startswith(("[Energy]", "EdgeProb")) for part in parts)
        assert "[Energy] CRITICAL: 3.0%" in parts
        assert orchestrator.tracker.sample_count == 0
        assert orchestrator.params.edge_trial_prob == pytest.approx(0.002)
        assert orchestrator.store.generation == 1
        assert orchestrator.last_report.short_circuited
        assert orchestrator.last_report.energy_status is EnergyStatus.CRITICAL
        assert engine.ledger.injections[0][0] == "VacuumEmergency"

    def test_critical_short_circuit_with_refused_injection(self):
        """Test that the short-circuit still publishes when the ledger refuses."""
        engine = FakeEngine(vacuum=3.0, total=100.0)
        engine.ledger.accept = False
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics())
        assert "[Energy] injected" not in message
        assert orchestrator.last_report.published

    def test_lazy_energy_initialization(self):
        """Test that energy is initialised on the first tick with a positive pool."""
        engine = FakeEngine(vacuum=0.0, total=0.0)
        orchestrator = make_orchestrator(engine)
        assert orchestrator.energy.initial_pool == 0.0
        engine._vacuum = 80.0
        engine.total_tracked_energy = 80.0
        orchestrator.tick(10, make_metrics())
        assert orchestrator.energy.initial_pool == 80.0

    def test_empty_pool_never_starves_other_stages(self):
        """Test that an engine without a vacuum reference skips only the energy stage."""
        engine = FakeEngine(vacuum=0.0, total=0.0)
        orchestrator = make_orchestrator(engine)
        for step in (10, 20, 30, 40, 50):
            message = orchestrator.tick(step, make_metrics())
            assert "[Energy] skipped (no vacuum reference)" in message
            assert "[d_S]" in message
        assert orchestrator.tracker.sample_count == 5
        assert orchestrator.energy.status is EnergyStatus.HEALTHY
        assert not orchestrator.last_report.short_circuited
        assert engine.ledger.injections == []

    def test_energy_stage_disabled(self):
        """Test that a disabled energy stage never short-circuits."""
        engine = FakeEngine(vacuum=3.0, total=100.0)
        orchestrator = make_orchestrator(engine, enable_energy_stage=False)
        message = orchestrator.tick(10, make_metrics())
        assert "[d_S]" in message
        assert not orchestrator.last_report.short_circuited


class TestCouplingStage:
    """Test coupling adjustments and emergency compaction."""

    def test_hyperbolic_boost(self):
        """Test that a hyperbolic reading raises G by the boost factor."""
        engine = FakeEngine(measurement=(6.0, -3.0, "heat_kernel"))
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics(spectral_dimension=6.0))
        assert orchestrator.params.coupling == pytest.approx(0.1125)
        assert "[G] 0.0500->0.1125 (HYPERBOLIC_CORRECTION)" in message
        assert orchestrator.last_report.coupling_emergency

    def test_emergency_compaction(self):
        """Test the extreme-hyperbolic parameter override."""
        engine = FakeEngine(measurement=(9.0, -4.5, "heat_kernel"))
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics(spectral_dimension=9.0))
        params = orchestrator.params
        assert params.coupling == 0.5
        assert params.edge_trial_prob == 0.001
        assert params.decoherence == pytest.approx(0.002)
        assert "EMERGENCY COMPACTION" in message
        assert engine.ledger.injections == []

    def test_emergency_compaction_injects_when_energy_low(self):
        """Test the hyperbolic emergency injection outside a healthy pool."""
        engine = FakeEngine(vacuum=20.0, total=100.0, measurement=(9.0, -4.5, "heat_kernel"))
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics(spectral_dimension=9.0))
        assert engine.ledger.injections == [("HyperbolicEmergency", pytest.approx(15.0))]
        assert "[Energy] Emergency injection 15.00" in message
        assert "[Energy] LOW: 20.0%" in message

    def test_low_confidence_skips_coupling(self):
        """Test that the coupling stage waits for a confident metric."""
        engine = FakeEngine()
        engine.fail_measure = True
        orchestrator = make_orchestrator(engine)
        message = orchestrator.tick(10, make_metrics(spectral_dimension=6.0))
        assert "[d_S] measurement failed" in message
        assert orchestrator.params.coupling == 0.05


class TestClusterStage:
    """Test cluster-driven adjustments and tunneling."""

    def test_tunneling_surfaces_once(self):
        """Test that persistent extreme clustering raises the tunneling latch."""
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine)
        extreme = make_metrics(largest_cluster=800, cluster_count=1)
        messages = [orchestrator.tick(step, extreme) for step in (10, 20, 30)]

        assert "[TOPOLOGY TUNNELING TRIGGERED]" not in messages[0]
        assert "[TOPOLOGY TUNNELING TRIGGERED]" not in messages[1]
        assert "[TOPOLOGY TUNNELING TRIGGERED]" in messages[2]
        assert engine.removed == [0.30]
        assert "TUNNELING_PENDING" in orchestrator.summary()
        assert orchestrator.tunneling_requested.take() is True
        assert orchestrator.tunneling_requested.take() is False
        assert not orchestrator.clusters.tunneling_requested

    def test_extreme_cluster_reduces_coupling(self):
        """Test the extreme-status coupling and edge multipliers."""
        orchestrator = make_orchestrator()
        orchestrator.tick(10, make_metrics(largest_cluster=800, cluster_count=1))
        params = orchestrator.params
        assert params.decoherence == 0.15
        assert params.coupling < 0.05
        assert params.edge_trial_prob == pytest.approx(0.006)
        assert orchestrator.last_report.cluster_status is ClusterStatus.EXTREME


class TestHeuristicStages:
    """Test activity balance, cluster formation and exploration."""

    def test_hyperactive(self):
        """Test the hyperactive decoherence boost."""
        orchestrator = make_orchestrator()
        message = orchestrator.tick(10, make_metrics(active_count=700))
        assert orchestrator.params.decoherence == pytest.approx(0.0013)
        assert "Hyperactive 70%" in message

    def test_frozen_waits_for_grace_period(self):
        """Test that the frozen rule waits past warmup plus the grace period."""
        early = make_orchestrator()
        assert "Frozen" not in early.tick(10, make_metrics(active_count=10))

        late = make_orchestrator()
        message = late.tick(110, make_metrics(active_count=10))
        assert "Frozen" in message
        assert late.params.decoherence == pytest.approx(0.0007)

    def test_few_clusters_relaxes_threshold(self):
        """Test heavy-cluster threshold relaxation."""
        orchestrator = make_orchestrator()
        message = orchestrator.tick(10, make_metrics(cluster_count=2, heavy_mass=30.0))
        assert orchestrator.params.threshold_sigma == pytest.approx(1.275)
        assert "Few clusters: Threshold 1.50->1.27" in message or "Few clusters: Threshold 1.50->1.28" in message

    def test_exploration_fires_when_healthy(self):
        """Test that a certain exploration perturbs one parameter."""
        orchestrator = make_orchestrator(enable_exploration=True, exploration_probability=1.0)
        message = orchestrator.tick(10, make_metrics())
        assert "Explore:" in message
        assert orchestrator.store.generation == 1

    def test_exploration_disabled_by_probability(self):
        """Test that a healthy tick with nothing to do publishes nothing."""
        orchestrator = make_orchestrator(enable_exploration=True, exploration_probability=0.0)
        message = orchestrator.tick(10, make_metrics())
        assert message == "[d_S] 4.00 (conf=1.00, heat_kernel)"
        assert orchestrator.store.generation == 0
        assert not orchestrator.last_report.published

    def test_nan_metric_uses_cached_value(self):
        """Test that an invalid passed-in metric falls back to the cached one."""
        orchestrator = make_orchestrator(enable_spectral_stage=False)
        message = orchestrator.tick(10, make_metrics(spectral_dimension=float("nan"), active_count=700))
        assert "Hyperactive" in message
        assert orchestrator.last_report.spectral_dimension == 4.0

        other = make_orchestrator(enable_spectral_stage=False)
        assert other.tick(10, make_metrics(spectral_dimension=2.0, active_count=700)) is None


class TestFailureContainment:
    """Test that collaborator failures never escape a tick."""

    def test_failing_pool_read_skips_energy_only(self):
        """Test that a failing pool read skips the energy stage and later stages still run."""
        engine = FakeEngine()
        orchestrator = make_orchestrator(engine)
        engine.fail_pool = True
        message = orchestrator.tick(10, make_metrics(active_count=700))
        assert "[Energy] skipped (vacuum_pool: pool read failed)" in message
        assert orchestrator.tracker.sample_count == 1
        assert "Hyperactive" in message
        assert not orchestrator.last_report.short_circuited

    def test_unexpected_error_is_contained(self, caplog, monkeypatch):
        """Test that an exception inside a tick is logged and swallowed."""
        orchestrator = make_orchestrator()

        def broken_update(sample):
            raise RuntimeError("tracker corrupted")

        monkeypatch.setattr(orchestrator.tracker, "update", broken_update)
        with caplog.at_level(logging.ERROR, logger="rq_autotune.orchestrator"):
            assert orchestrator.tick(10, make_metrics()) is None
        assert "failed" in caplog.text
        assert orchestrator.store.generation == 0

    def test_pinned_metric_warning(self, caplog):
        """Test the pinned-value warning on a d_S stuck at 1.0."""
        engine = FakeEngine(measurement=(1.0, -0.5, "heat_kernel"))
        orchestrator = make_orchestrator(engine)
        with caplog.at_level(logging.WARNING, logger="rq_autotune.orchestrator"):
            orchestrator.tick(10, make_metrics(spectral_dimension=1.0))
        assert "pinned" in caplog.text


class TestHelpers:
    """Test initialization, summary and schedule helpers."""

    def test_initialize_seeds_from_store(self):
        """Test that regulators start from the live parameters."""
        store = ParameterStore(ParameterSet(coupling=0.2, decoherence=0.01))
        orchestrator = make_orchestrator(store=store)
        assert orchestrator.coupling.current == 0.2
        assert orchestrator.clusters.current_decoherence == 0.01
        assert orchestrator.energy.initial_pool == 100.0

    def test_summary(self):
        """Test the one-line status format."""
        orchestrator = make_orchestrator()
        assert orchestrator.summary() == (
            "d_S=4.00 (conf=0.00) | G=0.0500 | Dec=0.0010 | Cluster: HEALTHY | Energy: HEALTHY"
        )

    def test_effective_coupling(self):
        """Test the warmup ramp passthrough."""
        orchestrator = make_orchestrator()
        assert orchestrator.effective_coupling(50, 100, 100) == 0.5
        assert orchestrator.effective_coupling(300, 100, 100) == pytest.approx(0.05)

    def test_annealing_temperature(self):
        """Test exponential annealing from the start temperature."""
        orchestrator = make_orchestrator()
        assert orchestrator.annealing_temperature(0, 10.0, 1000) == pytest.approx(10.0)
        expected = 0.01 + (10.0 - 0.01) * math.exp(-1.0)
        assert orchestrator.annealing_temperature(100, 10.0, 1000) == pytest.approx(expected)
