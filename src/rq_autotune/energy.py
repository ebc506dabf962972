"""Vacuum-energy pool management.

The vacuum pool funds topology changes, pair creation and field fluctuations;
the simulation halts when it is exhausted. This regulator watches the
depletion rate, predicts time to exhaustion, recycles energy from decaying
edges and, when allowed, requests external injections from the ledger.
Injections break strict conservation, so they are opt-in via configuration
and always subject to ledger acceptance.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from .buffers import RingBuffer
from .config import TuningConfig, require_config
from .outcomes import AdjustmentResult, Failure, call_collaborator, collaborator_method, is_finite

logger = logging.getLogger(__name__)

RATE_EPSILON = 1e-10
RECYCLE_CAP_FRACTION = 0.01
PARTIAL_HARVEST = 0.3


class EnergyStatus(Enum):
    HEALTHY = "healthy"
    LOW = "low"
    WARNING = "warning"
    CRITICAL = "critical"


class EnergyAction(Enum):
    REDUCE_EDGE_CREATION = "reduce_edge_creation"
    REDUCE_TOPOLOGY_CHANGES = "reduce_topology_changes"
    RECYCLING = "recycling"
    EMERGENCY_INJECTION = "emergency_injection"
    PROACTIVE_INJECTION = "proactive_injection"


class EnergyReason(Enum):
    NONE = "none"
    INVALID_INPUT = "invalid_input"
    STATUS = "status"


@dataclass(frozen=True)
class EnergyMultipliers:
    edge_trial: float
    topology_change: float
    decoherence: float
    coupling: float


_MULTIPLIERS: dict[EnergyStatus, EnergyMultipliers] = {
    EnergyStatus.CRITICAL: EnergyMultipliers(0.1, 0.1, 0.5, 0.8),
    EnergyStatus.WARNING: EnergyMultipliers(0.5, 0.5, 0.8, 0.9),
    EnergyStatus.LOW: EnergyMultipliers(0.8, 0.8, 0.9, 1.0),
    EnergyStatus.HEALTHY: EnergyMultipliers(1.0, 1.0, 1.0, 1.0),
}

_unmapped = set(EnergyStatus) - set(_MULTIPLIERS)
if _unmapped:
    raise ImportError(f"Energy multiplier table is missing statuses: {sorted(s.name for s in _unmapped)}")


def parameter_multipliers(status: EnergyStatus) -> EnergyMultipliers:
    """Parameter dampening recommended for an energy status."""
    return _MULTIPLIERS[status]


@dataclass(frozen=True)
class EnergyAdjustment(AdjustmentResult):
    """Energy update outcome; ``new_value`` is the tracked pool after actions."""

    status: EnergyStatus = EnergyStatus.HEALTHY
    status_changed: bool = False
    fraction: float = 0.0
    steps_until_depletion: float = math.inf
    actions: tuple[EnergyAction, ...] = field(default_factory=tuple)
    injected: float = 0.0
    recycled: float = 0.0


class EnergyRegulator:
    """Tracks the vacuum pool and recommends dampening or injection."""

    def __init__(self, config: TuningConfig | None) -> None:
        self.config = require_config(config, "EnergyRegulator")
        self._depletion = RingBuffer(self.config.depletion_history_size)
        self.reset()

    @property
    def current_pool(self) -> float:
        return self._pool

    @property
    def initial_pool(self) -> float:
        return self._initial

    @property
    def peak_pool(self) -> float:
        return self._peak

    @property
    def fraction(self) -> float:
        return self._pool / self._initial if self._initial > 0 else 0.0

    @property
    def depletion_rate(self) -> float:
        return self._rate

    @property
    def steps_until_depletion(self) -> float:
        return self._steps_left

    @property
    def status(self) -> EnergyStatus:
        return self._status

    @property
    def total_consumed(self) -> float:
        return self._consumed

    @property
    def total_recycled(self) -> float:
        return self._recycled

    @property
    def total_injected(self) -> float:
        return self._injected

    def initialize(self, initial_pool: float, total_energy: float | None = None) -> None:
        """Set the reference energy that pool fractions are measured against."""
        reference = total_energy if total_energy is not None and is_finite(total_energy) and total_energy > 0 else initial_pool
        self.reset()
        self._initial = max(float(reference), 0.0)
        self._pool = max(float(initial_pool), 0.0)
        self._previous = self._pool
        self._peak = self._pool
        self.last_diagnostics = "Initialized"

    def reset(self) -> None:
        self._initial = 0.0
        self._pool = 0.0
        self._previous = 0.0
        self._peak = 0.0
        self._depletion.clear()
        self._rate = 0.0
        self._steps_left = math.inf
        self._consumed = 0.0
        self._recycled = 0.0
        self._injected = 0.0
        self._status = EnergyStatus.HEALTHY
        self.last_diagnostics = ""

    def classify(self, fraction: float) -> EnergyStatus:
        cfg = self.config
        if fraction <= cfg.critical_energy_fraction:
            return EnergyStatus.CRITICAL
        if fraction <= cfg.warning_energy_fraction:
            return EnergyStatus.WARNING
        if fraction >= cfg.target_energy_fraction:
            return EnergyStatus.HEALTHY
        return EnergyStatus.LOW

    def update(self, current_pool: float, graph: Any = None, ledger: Any = None) -> EnergyAdjustment:
        """Ingest the latest pool reading and act on the resulting status.

        ``graph`` is scanned for harvestable weak edges; ``ledger`` accepts or
        refuses injections and records recycled energy.
        """
        if not is_finite(current_pool) or current_pool < 0:
            note = f"Invalid vacuum pool reading {current_pool!r}, ignoring"
            self.last_diagnostics = note
            return EnergyAdjustment(
                new_value=self._pool,
                changed=False,
                reason=EnergyReason.INVALID_INPUT,
                diagnostics=note,
                status=self._status,
                fraction=self.fraction,
                steps_until_depletion=self._steps_left,
            )

        cfg = self.config
        self._previous = self._pool
        self._pool = float(current_pool)
        self._peak = max(self._peak, self._pool)

        depletion = max(0.0, self._previous - self._pool)
        self._consumed += depletion
        self._depletion.push(depletion)
        self._rate = self._depletion.mean()
        self._steps_left = math.floor(self._pool / self._rate) if self._rate > RATE_EPSILON else math.inf

        fraction = self.fraction
        previous_status = self._status
        self._status = self.classify(fraction)

        actions: list[EnergyAction] = []
        diagnostics = [
            f"Vacuum: {self._pool:.2f}/{self._initial:.2f} ({fraction:.1%})",
            f"Rate: {self._rate:.4f}/step",
        ]
        injected = 0.0
        recycled = 0.0
        managed = cfg.enable_energy_management

        if self._status is EnergyStatus.CRITICAL and managed:
            diagnostics.append("CRITICAL: vacuum nearly depleted")
            if cfg.allow_emergency_injection and ledger is not None:
                injected = self._inject(
                    ledger, self._initial * cfg.emergency_injection_fraction, "VacuumEmergency", diagnostics
                )
                if injected > 0:
                    actions.append(EnergyAction.EMERGENCY_INJECTION)
            actions += [EnergyAction.REDUCE_TOPOLOGY_CHANGES, EnergyAction.REDUCE_EDGE_CREATION]

        elif self._status is EnergyStatus.WARNING and managed:
            diagnostics.append("WARNING: vacuum energy low")
            if (
                cfg.enable_proactive_injection
                and fraction <= cfg.proactive_injection_threshold
                and ledger is not None
            ):
                injected = self._inject(
                    ledger, self._initial * cfg.proactive_injection_fraction, "ProactiveInjection", diagnostics
                )
                if injected > 0:
                    actions.append(EnergyAction.PROACTIVE_INJECTION)
            else:
                actions.append(EnergyAction.REDUCE_EDGE_CREATION)
            recycled = self._recycle(graph, ledger, 1.0, diagnostics)

        elif self._status is EnergyStatus.LOW:
            steps = "inf" if math.isinf(self._steps_left) else str(self._steps_left)
            diagnostics.append(f"Low vacuum, ~{steps} steps remaining")
            recycled = self._recycle(graph, ledger, 0.5, diagnostics)

        if recycled > 0:
            actions.append(EnergyAction.RECYCLING)

        self.last_diagnostics = "; ".join(diagnostics)
        if self._status is not previous_status:
            logger.info("Energy status %s -> %s (%.1f%%)", previous_status.value, self._status.value, fraction * 100)

        return EnergyAdjustment(
            new_value=self._pool,
            changed=injected > 0 or recycled > 0,
            reason=EnergyReason.STATUS,
            diagnostics=self.last_diagnostics,
            status=self._status,
            status_changed=self._status is not previous_status,
            fraction=fraction,
            steps_until_depletion=self._steps_left,
            actions=tuple(actions),
            injected=injected,
            recycled=recycled,
        )

    def _inject(self, ledger: Any, amount: float, tag: str, diagnostics: list[str]) -> float:
        if amount <= 0:
            return 0.0
        accepted = call_collaborator(
            "record_external_injection", collaborator_method(ledger, "record_external_injection"), amount, tag
        )
        if isinstance(accepted, Failure):
            diagnostics.append(f"{tag} injection failed ({accepted.reason})")
            return 0.0
        if not accepted.value:
            diagnostics.append(f"{tag} injection refused by ledger")
            return 0.0
        self._injected += amount
        self._pool += amount
        self._peak = max(self._peak, self._pool)
        diagnostics.append(f"{tag} injection: {amount:.2f}")
        return amount

    def _recycle(self, graph: Any, ledger: Any, intensity: float, diagnostics: list[str]) -> float:
        cfg = self.config
        if graph is None or cfg.energy_recycling_rate <= 0:
            return 0.0
        harvest = call_collaborator("edge_weights", self.harvestable_energy, graph)
        if isinstance(harvest, Failure):
            diagnostics.append("recycling skipped (edge scan failed)")
            return 0.0
        recycled = harvest.value * intensity
        if recycled <= 0:
            return 0.0
        if ledger is not None:
            outcome = call_collaborator(
                "register_radiation", collaborator_method(ledger, "register_radiation"), recycled
            )
            if isinstance(outcome, Failure):
                diagnostics.append("recycling not registered with ledger")
                return 0.0
        self._recycled += recycled
        self._pool += recycled
        self._peak = max(self._peak, self._pool)
        diagnostics.append(f"Recycled: {recycled:.4f}")
        return recycled

    def harvestable_energy(self, graph: Any) -> float:
        """Energy recoverable from very weak edges, capped at 1% of the initial pool."""
        cfg = self.config
        weights = np.asarray(list(collaborator_method(graph, "edge_weights")()), dtype=float)
        if weights.size == 0:
            return 0.0
        weights = weights[np.isfinite(weights)]
        # Candidates sit below the harvest threshold; only the weakest half are harvested.
        weak = weights[(weights > 0) & (weights < cfg.harvest_threshold * 0.5)]
        potential = weak * cfg.edge_creation_cost * cfg.energy_recycling_rate
        total = float(np.sum(potential) * PARTIAL_HARVEST)
        return min(total, self._initial * RECYCLE_CAP_FRACTION)

    def predict(self, steps_ahead: int) -> tuple[float, EnergyStatus]:
        """Linearly extrapolate the pool ``steps_ahead`` steps and classify it."""
        predicted = max(0.0, self._pool - self._rate * max(steps_ahead, 0))
        fraction = predicted / self._initial if self._initial > 0 else 0.0
        return predicted, self.classify(fraction)
