"""Live simulation parameters as immutable, versioned snapshots."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, replace


@dataclass(frozen=True)
class ParameterSet:
    """The tunable simulation parameters at one instant.

    Attributes:
        coupling: Geometric coupling strength G.
        decoherence: Decoherence rate applied to over-correlated edges.
        edge_trial_prob: Probability of attempting a new edge per step.
        temperature: Metropolis temperature.
        threshold_sigma: Adaptive heavy-cluster threshold in standard deviations.
    """

    coupling: float = 0.05
    decoherence: float = 0.001
    edge_trial_prob: float = 0.02
    temperature: float = 10.0
    threshold_sigma: float = 1.5

    def evolve(self, **changes) -> "ParameterSet":
        return replace(self, **changes)

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


class ParameterStore:
    """Single-writer holder of the current ``ParameterSet``.

    Readers take ``store.current`` and keep a consistent snapshot; every
    ``publish`` swaps in a whole new instance and bumps ``generation`` so
    consumers can tell when to re-read.
    """

    def __init__(self, initial: ParameterSet | None = None) -> None:
        self._current = initial if initial is not None else ParameterSet()
        self._generation = 0
        self._published_at = time.monotonic()

    @property
    def current(self) -> ParameterSet:
        return self._current

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def published_at(self) -> float:
        return self._published_at

    def publish(self, params: ParameterSet) -> int:
        self._current = params
        self._generation += 1
        self._published_at = time.monotonic()
        return self._generation
