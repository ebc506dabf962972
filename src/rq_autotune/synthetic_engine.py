"""Synthetic simulation engine for exercising the auto-tuning loop.

``SyntheticEngine`` implements the ``SimulationEngine`` collaborator surface
with a small stochastic toy model instead of a real graph:

- d_S relaxes toward a coupling-dependent equilibrium (stronger G compacts)
- the largest-cluster ratio grows with G and shrinks with decoherence
- every attempted edge draws from a finite vacuum pool held by the ledger

It is useful for:
- Testing the orchestrator end to end
- Demonstrating typical controller behaviour from the command line
- Reproducing pathological regimes (fragmentation, giant clusters, depletion)

Note: This is an idealized plant, not a physical simulation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from .orchestrator import TickMetrics
from .parameters import ParameterSet

REFERENCE_COUPLING = 0.05
DIMENSION_RELAXATION = 0.05
CLUSTER_RELAXATION = 0.08


@dataclass
class SyntheticLedger:
    """Energy bookkeeping for the synthetic plant.

    Injections are accepted only while ``accept_injections`` is set, which
    lets tests exercise both outcomes.
    """

    vacuum_pool: float
    accept_injections: bool = True
    injected: float = 0.0
    radiated: float = 0.0
    injections: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def total_tracked_energy(self) -> float:
        return self.vacuum_pool + self.radiated

    def record_external_injection(self, amount: float, tag: str) -> bool:
        if not self.accept_injections or not math.isfinite(amount) or amount <= 0:
            return False
        self.vacuum_pool += amount
        self.injected += amount
        self.injections.append((tag, amount))
        return True

    def register_radiation(self, amount: float) -> None:
        if amount > 0:
            self.vacuum_pool += amount
            self.radiated += amount

    def consume(self, amount: float) -> None:
        self.vacuum_pool = max(0.0, self.vacuum_pool - amount)


class SyntheticEngine:
    """Toy plant whose observables respond to the tuned parameters."""

    def __init__(
        self,
        node_count: int = 500,
        edge_count: int = 2000,
        initial_vacuum: float = 100.0,
        seed: int = 0,
        initial_dimension: float = 4.0,
        initial_cluster_ratio: float = 0.2,
        accept_injections: bool = True,
        noise: float = 0.15,
    ) -> None:
        if node_count <= 0 or edge_count <= 0:
            raise ValueError(
                f"SyntheticEngine needs a non-empty graph.\n"
                f"Got: node_count={node_count}, edge_count={edge_count}"
            )
        self._rng = np.random.default_rng(seed)
        self._node_count = node_count
        self.noise = noise
        self.has_graph = True
        self.ledger = SyntheticLedger(vacuum_pool=initial_vacuum, accept_injections=accept_injections)
        self.dimension = initial_dimension
        self.cluster_ratio = initial_cluster_ratio
        self.active_fraction = 0.3
        self._weights = self._rng.uniform(0.01, 1.0, size=edge_count)
        self.tunneled_edges = 0
        self.noise_injections = 0

    @property
    def node_count(self) -> int:
        return self._node_count

    @property
    def vacuum_pool(self) -> float:
        return self.ledger.vacuum_pool

    @property
    def total_tracked_energy(self) -> float:
        return self.ledger.total_tracked_energy

    @staticmethod
    def equilibrium_dimension(coupling: float) -> float:
        """d_S the plant settles at for a given coupling (4.0 at G = 0.05)."""
        return float(np.clip(4.0 - 2.0 * math.log10(coupling / REFERENCE_COUPLING), 0.5, 12.0))

    @staticmethod
    def equilibrium_cluster_ratio(coupling: float, decoherence: float) -> float:
        return float(np.clip(0.2 + 2.0 * (coupling - REFERENCE_COUPLING) - 3.0 * decoherence, 0.02, 0.98))

    def step(self, params: ParameterSet) -> None:
        """Advance the plant by one simulation step under ``params``."""
        rng = self._rng
        target = self.equilibrium_dimension(params.coupling)
        self.dimension += DIMENSION_RELAXATION * (target - self.dimension)
        self.dimension = max(0.5, self.dimension + rng.normal(0.0, self.noise * 0.1))

        ratio_target = self.equilibrium_cluster_ratio(params.coupling, params.decoherence)
        self.cluster_ratio += CLUSTER_RELAXATION * (ratio_target - self.cluster_ratio)
        self.cluster_ratio = float(np.clip(self.cluster_ratio + rng.normal(0.0, 0.005), 0.01, 1.0))

        self.active_fraction = float(
            np.clip(0.2 + params.temperature / 100.0 - 2.0 * params.decoherence + rng.normal(0.0, 0.01), 0.0, 1.0)
        )

        # Decoherence erodes edges; new edges are drawn with the trial probability.
        self._weights *= 1.0 - params.decoherence
        regrow = rng.random(self._weights.size) < params.edge_trial_prob
        self._weights[regrow] = rng.uniform(0.1, 1.0, size=int(regrow.sum()))

        self.ledger.consume(params.edge_trial_prob * self._node_count * 0.002)

    def metrics(self) -> TickMetrics:
        largest = int(round(self.cluster_ratio * self._node_count))
        cluster_count = max(1, int(round(8 * (1.0 - self.cluster_ratio))))
        return TickMetrics(
            spectral_dimension=self.dimension,
            active_count=int(round(self.active_fraction * self._node_count)),
            cluster_count=cluster_count,
            largest_cluster=largest,
            heavy_mass=largest * 0.5,
            node_count=self._node_count,
        )

    def measure_spectral_dimension(self) -> Tuple[float, float, str]:
        value = max(0.1, self.dimension + self._rng.normal(0.0, self.noise))
        slope = -value / 2.0 + self._rng.normal(0.0, 0.02)
        return value, slope, "synthetic"

    def weaken_overcorrelated_edges(self) -> int:
        strong = self._weights > 0.8
        self._weights[strong] *= 0.9
        self.cluster_ratio = max(0.01, self.cluster_ratio * 0.99)
        return int(strong.sum())

    def remove_internal_edges(self, fraction: float) -> int:
        candidates = np.flatnonzero(self._weights > 0.5)
        count = int(len(candidates) * fraction)
        if count:
            chosen = self._rng.choice(candidates, size=count, replace=False)
            self._weights[chosen] = 0.0
        self.cluster_ratio = max(0.01, self.cluster_ratio * (1.0 - fraction))
        self.tunneled_edges += count
        return count

    def oversized_clusters(self, min_size: int) -> List[Tuple[int, int]]:
        largest = int(round(self.cluster_ratio * self._node_count))
        return [(0, largest)] if largest >= min_size else []

    def inject_cluster_noise(self, cluster_id: int, amplitude: float) -> None:
        if cluster_id != 0:
            raise KeyError(f"Unknown cluster {cluster_id}")
        self.cluster_ratio = max(0.01, self.cluster_ratio * (1.0 - 0.5 * amplitude))
        self.noise_injections += 1

    def edge_weights(self) -> np.ndarray:
        return self._weights.copy()
