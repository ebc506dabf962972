"""Top-level auto-tuning loop.

The orchestrator runs on a fixed cadence and polls the regulators in strict
priority order, applying their recommendations to a ``ParameterSet``:

1. Energy: prevent vacuum depletion (Critical short-circuits the tick)
2. Metric: refresh the smoothed spectral dimension
3. Coupling: adjust G toward d_S = 4 (or force emergency compaction)
4. Clusters: decoherence, coupling/edge multipliers, topology tunneling
5. Activity balance: hyperactive or frozen graphs
6. Cluster formation: relax the heavy-cluster threshold
7. Exploration: small random perturbations when everything is healthy

Each applied change is collected into a diagnostic string. The updated
parameters are published as a new snapshot in the ``ParameterStore``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import numpy as np

from . import schedules
from .clusters import ClusterRegulator, ClusterStatus, coupling_multiplier, edge_trial_multiplier
from .config import TuningConfig, require_config
from .coupling import CouplingRegulator
from .energy import EnergyRegulator, EnergyStatus, parameter_multipliers
from .outcomes import (
    CollaboratorResult,
    Failure,
    Latch,
    call_collaborator,
    clamp,
    collaborator_method,
    is_finite,
)
from .parameters import ParameterSet, ParameterStore
from .tracker import MetricTracker, PinnedValueMonitor, SpectralAction, sample_from_engine

logger = logging.getLogger(__name__)

METRIC_REFRESH_CONFIDENCE = 0.3
COUPLING_STAGE_CONFIDENCE = 0.2
HYPERACTIVE_RATIO = 0.6
FROZEN_RATIO = 0.03
FEW_CLUSTERS = 3
LIGHT_HEAVY_MASS = 50.0
THRESHOLD_RELAXATION = 0.85
REPORTED_DECOHERENCE_CHANGE = 0.05


class EnergyLedger(Protocol):
    def record_external_injection(self, amount: float, tag: str) -> bool: ...

    def register_radiation(self, amount: float) -> None: ...


class SimulationEngine(Protocol):
    """Collaborator surface the orchestrator drives.

    Graph-mutating calls may fail; every call goes through
    :func:`~rq_autotune.outcomes.call_collaborator` and a failure counts as
    zero effect.
    """

    has_graph: bool
    node_count: int
    vacuum_pool: float
    total_tracked_energy: float
    ledger: EnergyLedger | None

    def measure_spectral_dimension(self) -> tuple[float, float, str]: ...

    def weaken_overcorrelated_edges(self) -> int: ...

    def remove_internal_edges(self, fraction: float) -> int: ...

    def oversized_clusters(self, min_size: int) -> list[tuple[int, int]]: ...

    def inject_cluster_noise(self, cluster_id: int, amplitude: float) -> None: ...

    def edge_weights(self) -> Iterable[float]: ...


@dataclass(frozen=True)
class TickMetrics:
    """Per-step observations passed in by the simulation loop."""

    spectral_dimension: float
    active_count: int
    cluster_count: int
    largest_cluster: int
    heavy_mass: float
    node_count: int


@dataclass(frozen=True)
class TickReport:
    """What one qualifying tick saw and did (consumed by reporting)."""

    step: int
    diagnostics: tuple[str, ...]
    published: bool
    params: ParameterSet
    spectral_dimension: float
    confidence: float
    energy_status: EnergyStatus
    energy_fraction: float
    cluster_status: ClusterStatus
    coupling_emergency: bool
    short_circuited: bool = False


@dataclass
class _TickContext:
    step: int
    metrics: TickMetrics
    params: ParameterSet
    diagnostics: list[str] = field(default_factory=list)
    changed: bool = False

    def apply(self, **changes: float) -> None:
        self.params = self.params.evolve(**changes)
        self.changed = True

    def note(self, message: str) -> None:
        self.diagnostics.append(message)


def _read_measurement(reading: Any) -> tuple[float, float, str]:
    value, slope, method = reading
    return float(value), float(slope), str(method)


class TuningOrchestrator:
    """Runs the regulators against a simulation engine and publishes parameters."""

    def __init__(
        self,
        config: TuningConfig | None,
        engine: SimulationEngine | None,
        store: ParameterStore | None = None,
    ) -> None:
        self.config = require_config(config, "TuningOrchestrator")
        cfg = self.config
        self.engine = engine
        self.store = store if store is not None else ParameterStore(
            ParameterSet(
                coupling=cfg.base_coupling,
                decoherence=cfg.base_decoherence,
                edge_trial_prob=cfg.base_edge_trial_prob,
            )
        )
        self.tracker = MetricTracker(cfg)
        self.coupling = CouplingRegulator(cfg)
        self.clusters = ClusterRegulator(cfg)
        self.energy = EnergyRegulator(cfg)
        self.pinned = PinnedValueMonitor()
        self.tunneling_requested = Latch()
        self.enabled = True
        self.last_report: TickReport | None = None
        self._reset_loop_state()

    @property
    def cached_spectral_dimension(self) -> float:
        return self._cached_metric

    @property
    def cached_confidence(self) -> float:
        return self._cached_confidence

    @property
    def params(self) -> ParameterSet:
        return self.store.current

    def _reset_loop_state(self) -> None:
        self._rng = np.random.default_rng(self.config.exploration_seed)
        self._last_tune_step = 0
        self._last_metric_step = 0
        self._cached_metric = self.config.target_spectral_dimension
        self._cached_confidence = 0.0
        self.tunneling_requested.clear()

    def initialize(self) -> None:
        """Reset all regulators for a new run, seeding them from the live parameters."""
        self.tracker.reset()
        self.coupling.reset()
        self.clusters.reset()
        self.energy.reset()
        self.pinned.reset()

        params = self.store.current
        self.coupling.initialize(params.coupling)
        self.clusters.initialize(params.decoherence)
        self._initialize_energy()
        self._reset_loop_state()
        self.last_report = None
        logger.debug("Auto-tuning initialized: G=%.4f, decoherence=%.4f", params.coupling, params.decoherence)

    def _read_vacuum_pool(self) -> CollaboratorResult:
        engine = self.engine
        return call_collaborator("vacuum_pool", lambda: float(engine.vacuum_pool))

    def _initialize_energy(self) -> bool:
        if self.engine is None:
            return False
        pool = self._read_vacuum_pool()
        if isinstance(pool, Failure) or not is_finite(pool.value) or pool.value <= 0:
            return False
        self.energy.initialize(pool.value, getattr(self.engine, "total_tracked_energy", None))
        return True

    def tick(self, step: int, metrics: TickMetrics) -> str | None:
        """Run one tuning cycle if ``step`` qualifies.

        Returns the joined stage diagnostics, or None when the tick was skipped
        or produced nothing to report.
        """
        if not self.enabled:
            return None
        cfg = self.config
        if step < cfg.warmup_steps or step - self._last_tune_step < cfg.tuning_interval:
            return None
        try:
            return self._run(step, metrics)
        except Exception:
            logger.exception("Auto-tuning tick at step %d failed; parameters left unchanged", step)
            return None

    def _run(self, step: int, metrics: TickMetrics) -> str | None:
        engine = self.engine
        if engine is None or not getattr(engine, "has_graph", False) or metrics.node_count <= 0:
            return None

        self._last_tune_step = step
        ctx = _TickContext(step=step, metrics=metrics, params=self.store.current)

        critical = self.config.enable_energy_stage and self._energy_stage(ctx)
        if critical:
            self._finish(ctx, metric=self._cached_metric, short_circuited=True)
            return "; ".join(ctx.diagnostics)

        metric = self._metric_stage(ctx)
        self._coupling_stage(ctx, metric)
        self._cluster_stage(ctx)
        self._activity_stage(ctx, metric)
        self._formation_stage(ctx, metric)
        self._exploration_stage(ctx)

        self._finish(ctx, metric=metric)
        return "; ".join(ctx.diagnostics) if ctx.diagnostics else None

    def _finish(self, ctx: _TickContext, metric: float, short_circuited: bool = False) -> None:
        # The Critical short-circuit always marks parameters updated.
        published = ctx.changed or short_circuited
        if published:
            self.store.publish(ctx.params)
        self.last_report = TickReport(
            step=ctx.step,
            diagnostics=tuple(ctx.diagnostics),
            published=published,
            params=ctx.params,
            spectral_dimension=metric,
            confidence=self._cached_confidence,
            energy_status=self.energy.status,
            energy_fraction=self.energy.fraction,
            cluster_status=self.clusters.status,
            coupling_emergency=self.coupling.in_emergency_mode,
            short_circuited=short_circuited,
        )

    # Stages

    def _energy_stage(self, ctx: _TickContext) -> bool:
        """Returns True when the pool is Critical and the tick must stop here."""
        cfg = self.config
        engine = self.engine
        if self.energy.initial_pool <= 0 and not self._initialize_energy():
            # Without a reference energy every fraction would read as Critical.
            ctx.note("[Energy] skipped (no vacuum reference)")
            return False

        pool = self._read_vacuum_pool()
        if isinstance(pool, Failure):
            ctx.note(f"[Energy] skipped ({pool.reason})")
            return False

        ledger = getattr(engine, "ledger", None)
        result = self.energy.update(pool.value, graph=engine, ledger=ledger)

        if result.injected > 0:
            ctx.note(f"[Energy] injected {result.injected:.2f}")
        if result.recycled > 0:
            ctx.note(f"[Energy] recycled {result.recycled:.4f}")

        if not (result.status_changed or result.status is EnergyStatus.CRITICAL):
            return False

        ctx.note(f"[Energy] {result.status.name}: {result.fraction:.1%}")
        multiplier = parameter_multipliers(result.status).edge_trial
        if multiplier < 1.0:
            old = ctx.params.edge_trial_prob
            new = max(cfg.min_edge_trial_prob, old * multiplier)
            ctx.apply(edge_trial_prob=new)
            ctx.note(f"EdgeProb: {old:.4f}->{new:.4f} (energy)")

        if result.status is EnergyStatus.CRITICAL:
            logger.warning("ENERGY CRITICAL at step %d: %s", ctx.step, result.diagnostics)
            return True
        return False

    def _metric_stage(self, ctx: _TickContext) -> float:
        cfg = self.config
        due = ctx.step - self._last_metric_step >= cfg.spectral_compute_interval
        if cfg.enable_spectral_stage and (due or self._cached_confidence < METRIC_REFRESH_CONFIDENCE):
            self._last_metric_step = ctx.step
            measure = collaborator_method(self.engine, "measure_spectral_dimension")
            measured = call_collaborator("measure_spectral_dimension", lambda: _read_measurement(measure()))
            if isinstance(measured, Failure):
                ctx.note(f"[d_S] measurement failed ({measured.reason})")
            else:
                value, slope, method = measured.value
                sample = sample_from_engine(value, slope, ctx.metrics.node_count, method)
                smoothed = self.tracker.update(sample)
                self._cached_metric = smoothed.ema_value
                self._cached_confidence = smoothed.ema_confidence
                ctx.note(f"[d_S] {self._cached_metric:.2f} (conf={self._cached_confidence:.2f}, {sample.method})")

                pinned = self.pinned.observe(value)
                if pinned.suspicious:
                    logger.warning(
                        "d_S pinned at %.3f (%d consecutive, %.0f%% of recent samples); "
                        "walkers may be trapped in isolated chains",
                        self.pinned.pinned_value, pinned.consecutive, pinned.pinned_share * 100,
                    )
                return self._cached_metric

        metric = ctx.metrics.spectral_dimension
        if not is_finite(metric) or metric <= 0:
            return self._cached_metric
        return metric

    def _coupling_stage(self, ctx: _TickContext, metric: float) -> None:
        cfg = self.config
        if not cfg.enable_coupling_stage or self._cached_confidence <= COUPLING_STAGE_CONFIDENCE:
            return

        action = self.tracker.recommended_action()
        if action is SpectralAction.EMERGENCY_COMPACTION:
            self._emergency_compaction(ctx, metric)
            return

        result = self.coupling.compute_adjustment(metric, self._cached_confidence, action)
        if result.changed:
            old = ctx.params.coupling
            ctx.apply(coupling=result.new_value)
            ctx.note(f"[G] {old:.4f}->{result.new_value:.4f} ({result.reason.name})")

    def _emergency_compaction(self, ctx: _TickContext, metric: float) -> None:
        cfg = self.config
        logger.warning("EXTREME HYPERBOLIC: d_S=%.2f, initiating emergency compaction", metric)

        old = ctx.params.coupling
        ctx.apply(
            coupling=cfg.max_coupling,
            edge_trial_prob=cfg.min_edge_trial_prob,
            decoherence=min(cfg.max_decoherence, ctx.params.decoherence * 2.0),
        )
        ctx.note(f"[G] {old:.4f}->{cfg.max_coupling:.4f} (EMERGENCY COMPACTION)")
        ctx.note("[EdgeProb] Minimized (prevent expansion)")
        ctx.note("[Decoherence] Boosted (break structures)")

        if not cfg.enable_energy_stage or self.energy.status is EnergyStatus.HEALTHY:
            return
        total = getattr(self.engine, "total_tracked_energy", 0.0)
        if not is_finite(total) or total <= 0:
            return
        amount = total * cfg.hyperbolic_injection_fraction
        ledger = getattr(self.engine, "ledger", None)
        accepted = call_collaborator(
            "record_external_injection",
            collaborator_method(ledger, "record_external_injection"),
            amount,
            "HyperbolicEmergency",
        )
        if isinstance(accepted, Failure):
            ctx.note(f"[Energy] hyperbolic injection failed ({accepted.reason})")
        elif accepted.value:
            ctx.note(f"[Energy] Emergency injection {amount:.2f}")

    def _cluster_stage(self, ctx: _TickContext) -> None:
        cfg = self.config
        if not cfg.enable_cluster_stage:
            return
        m = ctx.metrics
        result = self.clusters.analyze(m.largest_cluster, m.cluster_count, m.node_count, graph=self.engine)
        if result.changed or result.status_changed:
            old = ctx.params.decoherence
            ctx.apply(decoherence=result.new_value)
            if abs(old - result.new_value) > old * REPORTED_DECOHERENCE_CHANGE:
                ctx.note(f"[Decoherence] {old:.4f}->{result.new_value:.4f} ({result.status.name})")

            g_multiplier = coupling_multiplier(result.status)
            if g_multiplier < 0.9:
                ctx.apply(coupling=max(cfg.min_coupling, ctx.params.coupling * g_multiplier))

            edge_multiplier = edge_trial_multiplier(result.status)
            if abs(edge_multiplier - 1.0) > 0.1:
                ctx.apply(
                    edge_trial_prob=clamp(
                        ctx.params.edge_trial_prob * edge_multiplier,
                        cfg.min_edge_trial_prob,
                        cfg.max_edge_trial_prob,
                    )
                )

        # Decoherence pinned at max leaves the result unchanged, so surface the latch regardless.
        if self.clusters.tunneling_requested:
            self.tunneling_requested.set()
            ctx.note("[TOPOLOGY TUNNELING TRIGGERED]")
            self.clusters.clear_tunneling_request()

    def _activity_stage(self, ctx: _TickContext, metric: float) -> None:
        cfg = self.config
        ratio = ctx.metrics.active_count / max(1, ctx.metrics.node_count)
        decoherence = ctx.params.decoherence

        if ratio > HYPERACTIVE_RATIO and metric >= cfg.warning_spectral_dimension:
            ctx.apply(decoherence=min(cfg.max_decoherence, decoherence * 1.3))
            ctx.note(f"Hyperactive {ratio:.0%}: Decoherence->{ctx.params.decoherence:.4f}")
        elif ratio < FROZEN_RATIO and ctx.step > cfg.warmup_steps + cfg.frozen_grace_steps:
            ctx.apply(decoherence=max(cfg.min_decoherence, decoherence * 0.7))
            ctx.note(f"Frozen {ratio:.0%}: Decoherence->{ctx.params.decoherence:.4f}")

    def _formation_stage(self, ctx: _TickContext, metric: float) -> None:
        cfg = self.config
        m = ctx.metrics
        if (
            m.cluster_count < FEW_CLUSTERS
            and m.heavy_mass < LIGHT_HEAVY_MASS
            and ctx.step > cfg.warmup_steps
            and metric >= cfg.warning_spectral_dimension
        ):
            old = ctx.params.threshold_sigma
            ctx.apply(threshold_sigma=max(cfg.min_threshold_sigma, old * THRESHOLD_RELAXATION))
            ctx.note(f"Few clusters: Threshold {old:.2f}->{ctx.params.threshold_sigma:.2f}")

    def _exploration_stage(self, ctx: _TickContext) -> None:
        cfg = self.config
        if (
            not cfg.enable_exploration
            or ctx.changed
            or not self.tracker.is_healthy()
            or self.clusters.status is not ClusterStatus.HEALTHY
        ):
            return
        if self._rng.random() >= cfg.exploration_probability:
            return

        choice = int(self._rng.integers(3))
        factor = self._rng.uniform(1.0 - cfg.exploration_range, 1.0 + cfg.exploration_range)
        params = ctx.params
        if choice == 0:
            new = clamp(params.coupling * factor, cfg.min_coupling, cfg.max_coupling)
            ctx.apply(coupling=new)
            ctx.note(f"Explore: G {params.coupling:.4f}->{new:.4f}")
        elif choice == 1:
            new = clamp(params.temperature * factor, cfg.min_temperature, cfg.max_temperature)
            ctx.apply(temperature=new)
            ctx.note(f"Explore: Temp {params.temperature:.2f}->{new:.2f}")
        else:
            new = clamp(params.decoherence * factor, cfg.min_decoherence, cfg.max_decoherence)
            ctx.apply(decoherence=new)
            ctx.note(f"Explore: Decoherence {params.decoherence:.4f}->{new:.4f}")

    # Helpers for the simulation loop

    def effective_coupling(self, step: int, warmup_duration: int, transition_duration: int) -> float:
        """Coupling to use at ``step`` including the warmup ramp."""
        return self.coupling.warmup_adjusted(step, warmup_duration, transition_duration)

    def annealing_temperature(self, step: int, start_temperature: float, total_steps: int) -> float:
        return schedules.annealing_temperature(step, start_temperature, total_steps)

    def summary(self) -> str:
        """One-line status for dashboards and logs."""
        if not self.enabled:
            return "Auto-tuning disabled"
        params = self.store.current
        parts = [
            f"d_S={self._cached_metric:.2f} (conf={self._cached_confidence:.2f})",
            f"G={params.coupling:.4f}",
            f"Dec={params.decoherence:.4f}",
            f"Cluster: {self.clusters.status.name}",
            f"Energy: {self.energy.status.name}",
        ]
        if self.coupling.in_emergency_mode:
            parts.append("EMERGENCY_G")
        if self.tunneling_requested.is_set:
            parts.append("TUNNELING_PENDING")
        return " | ".join(parts)
