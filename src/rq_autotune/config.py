"""Configuration primitives for the RQ auto-tuning core."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class TuningConfig:
    """Holds every threshold, rate and bound used by the auto-tuning loop.

    This frozen dataclass is owned by the caller. Regulators keep a reference
    and never mutate it; a changed configuration means a new instance
    (see :meth:`with_overrides`). Key parameter groups:

    **Spectral Dimension:**
    - target_spectral_dimension, spectral_tolerance: healthy band (4 ± 0.5)
    - critical/warning/high/extreme_spectral_dimension: regime boundaries
    - spectral_smoothing_alpha: EMA base rate (0 = frozen, 1 = no memory)

    **Geometric Coupling (G):**
    - base/min/max_coupling: starting point and hard bounds
    - coupling_kp/ki/kd: PID gains, integral_limit: anti-windup bound
    - coupling_adjustment_rate: closer to 1 means slower PID moves

    **Decoherence and Clusters:**
    - giant/emergency/extreme_cluster_threshold: largest-cluster ratios
    - tunneling_trigger_count: consecutive extreme calls before tunneling

    **Vacuum Energy:**
    - critical/warning/target_energy_fraction: pool fraction thresholds
    - emergency/proactive_injection_fraction: injection sizes

    **Timing and Exploration:**
    - tuning_interval, spectral_compute_interval, warmup_steps
    - exploration_probability, exploration_range, exploration_seed
    """

    # Spectral dimension targets
    target_spectral_dimension: float = 4.0
    spectral_tolerance: float = 0.5
    critical_spectral_dimension: float = 1.5
    warning_spectral_dimension: float = 2.5
    high_spectral_dimension: float = 5.5
    extreme_spectral_dimension: float = 8.0
    spectral_confidence_threshold: float = 0.7
    spectral_smoothing_alpha: float = 0.3
    spectral_history_size: int = 20

    # Geometric coupling
    base_coupling: float = 0.05
    min_coupling: float = 0.0005
    max_coupling: float = 0.5
    coupling_adjustment_rate: float = 0.8
    coupling_suppression_factor: float = 0.2
    coupling_boost_factor: float = 1.5
    coupling_kp: float = 0.3
    coupling_ki: float = 0.05
    coupling_kd: float = 0.1
    integral_limit: float = 5.0
    coupling_history_size: int = 10
    stable_threshold: int = 5
    restoration_rate: float = 0.02
    min_coupling_confidence: float = 0.3
    warmup_coupling: float = 0.5

    # Decoherence and cluster dynamics
    base_decoherence: float = 0.001
    min_decoherence: float = 0.0001
    max_decoherence: float = 0.15
    giant_cluster_threshold: float = 0.3
    emergency_cluster_threshold: float = 0.5
    extreme_cluster_threshold: float = 0.70
    cluster_decoherence_boost: float = 3.0
    giant_decoherence_cap: float = 0.05
    tunneling_trigger_count: int = 3
    tunneling_removal_fraction: float = 0.30

    # Vacuum energy management
    enable_energy_management: bool = True
    critical_energy_fraction: float = 0.05
    warning_energy_fraction: float = 0.15
    target_energy_fraction: float = 0.25
    energy_recycling_rate: float = 0.6
    allow_emergency_injection: bool = True
    emergency_injection_fraction: float = 0.2
    enable_proactive_injection: bool = True
    proactive_injection_threshold: float = 0.12
    proactive_injection_fraction: float = 0.08
    depletion_history_size: int = 20
    harvest_threshold: float = 0.1
    edge_creation_cost: float = 0.1
    hyperbolic_injection_fraction: float = 0.15

    # Edge dynamics and temperature
    base_edge_trial_prob: float = 0.02
    min_edge_trial_prob: float = 0.001
    max_edge_trial_prob: float = 0.5
    min_temperature: float = 0.01
    max_temperature: float = 20.0
    min_threshold_sigma: float = 0.3

    # Tuning intervals and timing
    tuning_interval: int = 100
    spectral_compute_interval: int = 200
    warmup_steps: int = 200
    frozen_grace_steps: int = 100

    # Exploration
    enable_exploration: bool = True
    exploration_probability: float = 0.05
    exploration_range: float = 0.05
    exploration_seed: int = 42

    # Stage enable flags
    enable_spectral_stage: bool = True
    enable_coupling_stage: bool = True
    enable_cluster_stage: bool = True
    enable_energy_stage: bool = True

    def __post_init__(self) -> None:
        for low, base, high in (
            ("min_coupling", "base_coupling", "max_coupling"),
            ("min_decoherence", "base_decoherence", "max_decoherence"),
            ("min_edge_trial_prob", "base_edge_trial_prob", "max_edge_trial_prob"),
        ):
            lo, mid, hi = getattr(self, low), getattr(self, base), getattr(self, high)
            if not (0.0 < lo <= mid <= hi):
                raise ValueError(
                    f"Bounds must satisfy 0 < {low} <= {base} <= {high}.\n"
                    f"Got: {low}={lo}, {base}={mid}, {high}={hi}\n"
                    f"Regulators clamp every output into [{low}, {high}]."
                )

        if not (0.0 < self.min_temperature <= self.max_temperature):
            raise ValueError(
                f"Temperature bounds must satisfy 0 < min_temperature <= max_temperature.\n"
                f"Got: min_temperature={self.min_temperature}, max_temperature={self.max_temperature}"
            )

        spectral = (
            self.critical_spectral_dimension,
            self.warning_spectral_dimension,
            self.target_spectral_dimension,
            self.high_spectral_dimension,
            self.extreme_spectral_dimension,
        )
        if not (spectral[0] <= spectral[1] < spectral[2] < spectral[3] < spectral[4]):
            raise ValueError(
                f"Spectral thresholds must be ordered critical <= warning < target < high < extreme.\n"
                f"Got: {spectral}\n"
                f"Regime classification depends on this ordering."
            )

        if not (0.0 < self.giant_cluster_threshold < self.emergency_cluster_threshold
                < self.extreme_cluster_threshold <= 1.0):
            raise ValueError(
                f"Cluster thresholds must be ordered 0 < giant < emergency < extreme <= 1.\n"
                f"Got: giant={self.giant_cluster_threshold}, "
                f"emergency={self.emergency_cluster_threshold}, "
                f"extreme={self.extreme_cluster_threshold}"
            )

        if not (0.0 <= self.critical_energy_fraction < self.warning_energy_fraction
                < self.target_energy_fraction <= 1.0):
            raise ValueError(
                f"Energy fractions must be ordered 0 <= critical < warning < target <= 1.\n"
                f"Got: critical={self.critical_energy_fraction}, "
                f"warning={self.warning_energy_fraction}, target={self.target_energy_fraction}"
            )

        for name in (
            "spectral_smoothing_alpha",
            "coupling_adjustment_rate",
            "restoration_rate",
            "min_coupling_confidence",
            "spectral_confidence_threshold",
            "energy_recycling_rate",
            "emergency_injection_fraction",
            "proactive_injection_fraction",
            "hyperbolic_injection_fraction",
            "tunneling_removal_fraction",
            "exploration_probability",
            "exploration_range",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(
                    f"{name} must lie in [0, 1], got {value}.\n"
                    f"Rates and fractions are applied multiplicatively per tuning cycle."
                )

        for name in (
            "spectral_history_size",
            "coupling_history_size",
            "depletion_history_size",
            "tunneling_trigger_count",
            "tuning_interval",
            "spectral_compute_interval",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}.")

        if self.warmup_steps < 0 or self.frozen_grace_steps < 0:
            raise ValueError(
                f"warmup_steps and frozen_grace_steps must be non-negative.\n"
                f"Got: warmup_steps={self.warmup_steps}, frozen_grace_steps={self.frozen_grace_steps}"
            )

    @property
    def spectral_band(self) -> tuple[float, float]:
        """Healthy spectral-dimension band [target - tolerance, target + tolerance]."""
        return (
            self.target_spectral_dimension - self.spectral_tolerance,
            self.target_spectral_dimension + self.spectral_tolerance,
        )

    def with_overrides(self, **overrides) -> "TuningConfig":
        """Return a copy with the given fields replaced (validated again)."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise TypeError(f"Unknown TuningConfig field(s): {', '.join(unknown)}")
        return replace(self, **overrides)

    @classmethod
    def default(cls) -> "TuningConfig":
        """Default configuration aimed at 4D emergence."""
        return cls()

    @classmethod
    def aggressive(cls) -> "TuningConfig":
        """Faster cadence and stronger corrections for quick convergence."""
        return cls(
            tuning_interval=50,
            spectral_compute_interval=100,
            coupling_adjustment_rate=0.5,
            cluster_decoherence_boost=5.0,
            exploration_probability=0.02,
            spectral_smoothing_alpha=0.5,
        )

    @classmethod
    def conservative(cls) -> "TuningConfig":
        """Slow, stable evolution without emergency injection."""
        return cls(
            tuning_interval=200,
            spectral_compute_interval=500,
            coupling_adjustment_rate=0.9,
            cluster_decoherence_boost=2.0,
            exploration_probability=0.01,
            spectral_smoothing_alpha=0.2,
            allow_emergency_injection=False,
        )

    @classmethod
    def long_run(cls) -> "TuningConfig":
        """Sparse tuning for very long simulations."""
        return cls(
            tuning_interval=500,
            spectral_compute_interval=1000,
            coupling_adjustment_rate=0.95,
            energy_recycling_rate=0.7,
            target_energy_fraction=0.25,
        )


PRESETS = {
    "default": TuningConfig.default,
    "aggressive": TuningConfig.aggressive,
    "conservative": TuningConfig.conservative,
    "long_run": TuningConfig.long_run,
}


def require_config(config: TuningConfig | None, owner: str) -> TuningConfig:
    """Reject a missing configuration at construction time."""
    if config is None:
        raise ValueError(
            f"{owner} requires a TuningConfig, got None.\n"
            f"Pass TuningConfig() or one of the presets: {', '.join(PRESETS)}."
        )
    if not isinstance(config, TuningConfig):
        raise TypeError(f"{owner} expects a TuningConfig, got {type(config).__name__}.")
    return config
