"""Cluster-size health classification and decoherence regulation.

Clusters are correlated subsystems. A healthy graph holds several
medium-sized clusters; a single giant cluster (over-correlation) or no
clusters at all (fragmentation) are both pathological. Decoherence weakens
over-correlated edges and is the main tool against giant clusters, with
topology tunneling (bulk internal edge removal) as the last resort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import TuningConfig, require_config
from .outcomes import (
    AdjustmentResult,
    Failure,
    Latch,
    call_collaborator,
    clamp,
    collaborator_method,
    count_of,
    is_finite,
)

logger = logging.getLogger(__name__)

CHANGE_FRACTION = 0.01
HEALTHY_MIN_CLUSTERS = 3


class ClusterStatus(Enum):
    HEALTHY = "healthy"
    TOO_FEW = "too_few"
    GIANT = "giant"
    EMERGENCY = "emergency"
    EXTREME = "extreme"
    RECOVERING = "recovering"


class ClusterAction(Enum):
    INCREASE_DECOHERENCE = "increase_decoherence"
    BOOST_DECOHERENCE = "boost_decoherence"
    MAX_DECOHERENCE = "max_decoherence"
    REDUCE_DECOHERENCE = "reduce_decoherence"
    APPLY_DECOHERENCE = "apply_decoherence"
    REDUCE_COUPLING = "reduce_coupling"
    TOPOLOGY_TUNNELING = "topology_tunneling"
    INJECT_NOISE = "inject_noise"


class ClusterReason(Enum):
    NONE = "none"
    INVALID_INPUT = "invalid_input"
    STATUS = "status"


# (coupling multiplier, edge-trial multiplier) per status.
_MULTIPLIERS: dict[ClusterStatus, tuple[float, float]] = {
    ClusterStatus.EXTREME: (0.1, 0.3),
    ClusterStatus.EMERGENCY: (0.5, 0.5),
    ClusterStatus.GIANT: (0.8, 0.7),
    ClusterStatus.RECOVERING: (0.9, 1.0),
    ClusterStatus.TOO_FEW: (1.2, 1.5),
    ClusterStatus.HEALTHY: (1.0, 1.0),
}

_unmapped = set(ClusterStatus) - set(_MULTIPLIERS)
if _unmapped:
    raise ImportError(f"Cluster multiplier table is missing statuses: {sorted(s.name for s in _unmapped)}")


def coupling_multiplier(status: ClusterStatus) -> float:
    """Recommended coupling multiplier for a cluster status."""
    return _MULTIPLIERS[status][0]


def edge_trial_multiplier(status: ClusterStatus) -> float:
    """Recommended edge-trial probability multiplier for a cluster status."""
    return _MULTIPLIERS[status][1]


@dataclass(frozen=True)
class ClusterAdjustment(AdjustmentResult):
    """Decoherence recommendation plus cluster status and side-effect requests."""

    status: ClusterStatus = ClusterStatus.HEALTHY
    status_changed: bool = False
    actions: tuple[ClusterAction, ...] = field(default_factory=tuple)
    tunneling_requested: bool = False


class ClusterRegulator:
    """Finite-state regulator mapping cluster ratios to decoherence rates."""

    def __init__(self, config: TuningConfig | None) -> None:
        self.config = require_config(config, "ClusterRegulator")
        self._tunneling = Latch()
        self.reset()

    @property
    def status(self) -> ClusterStatus:
        return self._status

    @property
    def current_decoherence(self) -> float:
        return self._decoherence

    @property
    def cluster_ratio(self) -> float:
        return self._ratio

    @property
    def giant_persistence(self) -> int:
        return self._giant_persistence

    @property
    def extreme_persistence(self) -> int:
        return self._extreme_persistence

    @property
    def tunneling_requested(self) -> bool:
        return self._tunneling.is_set

    def clear_tunneling_request(self) -> None:
        self._tunneling.clear()

    def initialize(self, decoherence: float) -> None:
        cfg = self.config
        self._decoherence = clamp(decoherence, cfg.min_decoherence, cfg.max_decoherence)
        self._giant_persistence = 0
        self._extreme_persistence = 0
        self._tunneling.clear()
        self._status = ClusterStatus.HEALTHY

    def reset(self) -> None:
        self.initialize(self.config.base_decoherence)
        self._ratio = 0.0
        self._largest = 0
        self._cluster_count = 0
        self._node_count = 0
        self.last_diagnostics = ""

    def analyze(
        self,
        largest_cluster: int,
        total_clusters: int,
        node_count: int,
        graph: Any = None,
    ) -> ClusterAdjustment:
        """Classify cluster health and recommend a decoherence rate.

        ``graph`` is the optional collaborator used for edge weakening,
        tunneling and noise injection; without it only the rate is computed.
        """
        if (
            not is_finite(largest_cluster, total_clusters, node_count)
            or node_count <= 0
            or largest_cluster < 0
            or total_clusters < 0
            or largest_cluster > node_count
        ):
            note = f"Invalid cluster input (largest={largest_cluster}, clusters={total_clusters}, N={node_count})"
            self.last_diagnostics = note
            return ClusterAdjustment(
                new_value=self._decoherence,
                changed=False,
                reason=ClusterReason.INVALID_INPUT,
                diagnostics=note,
                status=self._status,
            )

        cfg = self.config
        self._largest = largest_cluster
        self._cluster_count = total_clusters
        self._node_count = node_count
        self._ratio = largest_cluster / node_count

        previous_status = self._status
        self._status = self._classify(self._ratio, total_clusters)

        diagnostics = [f"Clusters: {total_clusters}, Largest: {largest_cluster}/{node_count} ({self._ratio:.0%})"]
        actions: list[ClusterAction] = []
        current = self._decoherence
        status = self._status

        if status is ClusterStatus.EXTREME:
            diagnostics.append(f"EXTREME: persist={self._extreme_persistence}")
            new_value = cfg.max_decoherence
            actions += [ClusterAction.MAX_DECOHERENCE, ClusterAction.REDUCE_COUPLING]
            if self._extreme_persistence >= cfg.tunneling_trigger_count and self._tunneling.set():
                actions.append(ClusterAction.TOPOLOGY_TUNNELING)
                diagnostics.append("TOPOLOGY TUNNELING TRIGGERED")
                weakened = self._graph_call(graph, "weaken_overcorrelated_edges", diagnostics)
                diagnostics.append(f"Weakened {weakened} edges")
                removed = self._graph_call(
                    graph, "remove_internal_edges", diagnostics, cfg.tunneling_removal_fraction
                )
                diagnostics.append(f"Tunneled {removed} edges")
            else:
                weakened = self._graph_call(graph, "weaken_overcorrelated_edges", diagnostics)
                actions.append(ClusterAction.APPLY_DECOHERENCE)
                diagnostics.append(f"Weakened {weakened} edges")

        elif status is ClusterStatus.EMERGENCY:
            diagnostics.append("EMERGENCY cluster detected")
            new_value = min(cfg.max_decoherence, current * cfg.cluster_decoherence_boost + cfg.base_decoherence)
            actions += [ClusterAction.BOOST_DECOHERENCE, ClusterAction.REDUCE_COUPLING, ClusterAction.APPLY_DECOHERENCE]
            weakened = self._graph_call(graph, "weaken_overcorrelated_edges", diagnostics)
            diagnostics.append(f"Weakened {weakened} edges")
            if self._inject_noise(graph, current, diagnostics):
                actions.append(ClusterAction.INJECT_NOISE)

        elif status is ClusterStatus.GIANT:
            diagnostics.append("Giant cluster forming")
            new_value = min(cfg.giant_decoherence_cap, current * 1.5 + cfg.base_decoherence * 0.5)
            actions.append(ClusterAction.INCREASE_DECOHERENCE)
            weakened = self._graph_call(graph, "weaken_overcorrelated_edges", diagnostics)
            if weakened > 0:
                actions.append(ClusterAction.APPLY_DECOHERENCE)
                diagnostics.append(f"Gentle weakening: {weakened} edges")

        elif status is ClusterStatus.RECOVERING:
            diagnostics.append(f"Recovering from giant cluster (persist={self._giant_persistence})")
            new_value = max(cfg.base_decoherence, current * 0.9)

        elif status is ClusterStatus.TOO_FEW:
            diagnostics.append("Too few clusters, easing decoherence")
            new_value = max(cfg.min_decoherence, current * 0.7)
            actions.append(ClusterAction.REDUCE_DECOHERENCE)

        else:
            new_value = current + 0.1 * (cfg.base_decoherence - current)
            self._tunneling.clear()

        new_value = clamp(new_value, cfg.min_decoherence, cfg.max_decoherence)
        changed = abs(new_value - current) > current * CHANGE_FRACTION
        self._decoherence = new_value
        self.last_diagnostics = "; ".join(diagnostics)

        if status is not previous_status:
            logger.info("Cluster status %s -> %s (ratio=%.2f)", previous_status.value, status.value, self._ratio)

        return ClusterAdjustment(
            new_value=new_value,
            changed=changed,
            reason=ClusterReason.STATUS,
            diagnostics=self.last_diagnostics,
            status=status,
            status_changed=status is not previous_status,
            actions=tuple(actions),
            tunneling_requested=self._tunneling.is_set,
        )

    def _classify(self, ratio: float, total_clusters: int) -> ClusterStatus:
        cfg = self.config
        if ratio >= cfg.extreme_cluster_threshold:
            self._extreme_persistence += 1
            self._giant_persistence += 1
            return ClusterStatus.EXTREME
        if ratio >= cfg.emergency_cluster_threshold:
            self._extreme_persistence = 0
            self._giant_persistence += 1
            return ClusterStatus.EMERGENCY
        if ratio >= cfg.giant_cluster_threshold:
            self._extreme_persistence = 0
            self._giant_persistence += 1
            return ClusterStatus.GIANT
        if ratio < cfg.giant_cluster_threshold * 0.5:
            self._giant_persistence = 0
            self._extreme_persistence = 0
            return ClusterStatus.HEALTHY if total_clusters >= HEALTHY_MIN_CLUSTERS else ClusterStatus.TOO_FEW
        # Borderline: let persistence decay slowly.
        self._giant_persistence = max(0, self._giant_persistence - 1)
        self._extreme_persistence = 0
        return ClusterStatus.RECOVERING

    @staticmethod
    def _graph_call(graph: Any, method: str, diagnostics: list[str], *args) -> int:
        if graph is None:
            return 0
        result = call_collaborator(method, collaborator_method(graph, method), *args)
        if isinstance(result, Failure):
            diagnostics.append(f"{method} failed ({result.reason})")
        return count_of(result)

    def _inject_noise(self, graph: Any, current: float, diagnostics: list[str]) -> bool:
        if graph is None:
            return False
        min_size = int(self._node_count * self.config.emergency_cluster_threshold)
        lookup = collaborator_method(graph, "oversized_clusters")
        found = call_collaborator(
            "oversized_clusters", lambda size: [(cid, int(n)) for cid, n in lookup(size)], min_size
        )
        if isinstance(found, Failure):
            diagnostics.append(f"noise injection skipped ({found.reason})")
            return False

        amplitude = clamp(current * 10.0, 0.05, 0.25)
        injected = False
        for cluster_id, size in found.value:
            outcome = call_collaborator(
                "inject_cluster_noise", collaborator_method(graph, "inject_cluster_noise"), cluster_id, amplitude
            )
            if isinstance(outcome, Failure):
                diagnostics.append(f"noise injection failed for cluster {cluster_id}")
                continue
            injected = True
            diagnostics.append(f"Noise injected into cluster size {size} (amp={amplitude:.3f})")
        return injected
