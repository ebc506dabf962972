"""Adaptive parameter auto-tuning for relational-quantum graph simulations.

The tuning core steers simulation parameters (geometric coupling G,
decoherence rate, edge-trial probability, temperature, adaptive-threshold
sigma) toward a 4D emergent geometry using periodically sampled feedback:
the spectral dimension d_S, cluster-size statistics and a depletable
vacuum-energy pool.

Main Components:
    - TuningConfig: Frozen configuration with all thresholds, rates and bounds
    - MetricTracker: Confidence-weighted EMA of d_S and regime classification
    - CouplingRegulator: PID control of G with emergency overrides
    - ClusterRegulator: Cluster-health state machine driving decoherence
    - EnergyRegulator: Vacuum depletion tracking, recycling and injection
    - TuningOrchestrator: Priority-ordered tuning loop publishing ParameterSets

Quick Start:
    >>> from rq_autotune import TuningConfig, TuningOrchestrator
    >>> from rq_autotune.synthetic_engine import SyntheticEngine
    >>>
    >>> engine = SyntheticEngine(seed=1)
    >>> orchestrator = TuningOrchestrator(TuningConfig.default(), engine)
    >>> orchestrator.initialize()
    >>> for step in range(2000):
    ...     engine.step(orchestrator.params)
    ...     orchestrator.tick(step, engine.metrics())
    >>> print(orchestrator.summary())

Run ``python -m rq_autotune --help`` for the command-line session runner.
"""

from .clusters import ClusterRegulator, ClusterStatus
from .config import PRESETS, TuningConfig
from .coupling import CouplingReason, CouplingRegulator
from .energy import EnergyRegulator, EnergyStatus
from .orchestrator import TickMetrics, TuningOrchestrator
from .outcomes import AdjustmentResult, Latch
from .parameters import ParameterSet, ParameterStore
from .tracker import MetricTracker, SpectralAction, SpectralSample

__all__ = [
    "TuningConfig",
    "PRESETS",
    "MetricTracker",
    "SpectralAction",
    "SpectralSample",
    "CouplingRegulator",
    "CouplingReason",
    "ClusterRegulator",
    "ClusterStatus",
    "EnergyRegulator",
    "EnergyStatus",
    "TuningOrchestrator",
    "TickMetrics",
    "ParameterSet",
    "ParameterStore",
    "AdjustmentResult",
    "Latch",
]
