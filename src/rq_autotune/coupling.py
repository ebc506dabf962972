"""Geometric coupling (G) regulation driven by spectral-dimension feedback.

High G drives strong curvature flow and collapses the graph (d_S falls toward
low values only after over-compaction); low G lets the graph fragment. The
regulator combines:

1. emergency overrides for fragmentation and hyperbolic regimes,
2. a PID step when d_S is outside the tolerance band,
3. slow restoration toward the cached target when stable,
4. a moving-average low-pass filter outside emergencies.
"""

from __future__ import annotations

import logging
from enum import Enum

from .buffers import RingBuffer
from .config import TuningConfig, require_config
from .outcomes import AdjustmentResult, clamp, is_finite
from .schedules import linear_ramp
from .tracker import SpectralAction

logger = logging.getLogger(__name__)

MIN_SMOOTHING_SAMPLES = 3
CHANGE_FRACTION = 0.01


class CouplingReason(Enum):
    NONE = "none"
    INVALID_INPUT = "invalid_input"
    DIMENSION_TOO_LOW = "dimension_too_low"
    DIMENSION_TOO_HIGH = "dimension_too_high"
    FRAGMENTATION_PREVENTION = "fragmentation_prevention"
    EMERGENCY_FRAGMENTATION = "emergency_fragmentation"
    HYPERBOLIC_CORRECTION = "hyperbolic_correction"
    EXTREME_HYPERBOLIC = "extreme_hyperbolic"
    RESTORATION = "restoration"


class CouplingRegulator:
    """PID-style regulator for the geometric coupling strength."""

    def __init__(self, config: TuningConfig | None) -> None:
        self.config = require_config(config, "CouplingRegulator")
        self._history = RingBuffer(self.config.coupling_history_size)
        self.reset()

    @property
    def current(self) -> float:
        return self._current

    @property
    def target(self) -> float:
        return self._target

    @property
    def in_emergency_mode(self) -> bool:
        return self._emergency

    @property
    def stable_steps(self) -> int:
        return self._stable_steps

    @property
    def integral_error(self) -> float:
        return self._integral

    @property
    def last_reason(self) -> CouplingReason:
        return self._last_reason

    def initialize(self, starting: float) -> None:
        """Start regulating from ``starting`` (e.g. the live coupling value)."""
        cfg = self.config
        value = clamp(starting, cfg.min_coupling, cfg.max_coupling) if is_finite(starting) else cfg.base_coupling
        self._current = value
        self._target = value
        self._previous = value
        self._integral = 0.0
        self._previous_error = 0.0
        self._emergency = False
        self._stable_steps = 0
        self._history.clear()

    def update_target(self, value: float) -> None:
        if is_finite(value):
            self._target = clamp(value, self.config.min_coupling, self.config.max_coupling)

    def reset(self) -> None:
        self.initialize(self.config.base_coupling)
        self._last_reason = CouplingReason.NONE
        self.last_diagnostics = ""

    def _unchanged(self, reason: CouplingReason, note: str) -> AdjustmentResult:
        self._last_reason = reason
        self.last_diagnostics = note
        return AdjustmentResult(new_value=self._current, changed=False, reason=reason, diagnostics=note)

    def compute_adjustment(
        self,
        metric_value: float,
        confidence: float,
        action: SpectralAction,
    ) -> AdjustmentResult:
        """Compute the next coupling value from the smoothed spectral dimension."""
        cfg = self.config
        if not is_finite(metric_value, confidence) or metric_value <= 0:
            return self._unchanged(
                CouplingReason.INVALID_INPUT,
                f"Invalid input (d_S={metric_value!r}, conf={confidence!r}), skipping adjustment",
            )
        if confidence < cfg.min_coupling_confidence:
            return self._unchanged(CouplingReason.NONE, f"Low confidence ({confidence:.2f}), skipping adjustment")

        self._previous = self._current
        new_value = self._current
        error = metric_value - cfg.target_spectral_dimension
        diagnostics = [
            f"d_S={metric_value:.2f}, target={cfg.target_spectral_dimension:.1f}, error={error:.2f}"
        ]

        if action is SpectralAction.EMERGENCY_RECOVERY:
            new_value = cfg.min_coupling
            reason = CouplingReason.EMERGENCY_FRAGMENTATION
            self._enter_emergency()
            diagnostics.append("EMERGENCY: fragmentation detected, G -> minimum")
        elif metric_value <= cfg.critical_spectral_dimension:
            new_value = max(self._current * cfg.coupling_suppression_factor, cfg.min_coupling)
            reason = CouplingReason.FRAGMENTATION_PREVENTION
            self._enter_emergency()
            diagnostics.append(f"Critical d_S={metric_value:.2f}, suppressing G")
        elif metric_value >= cfg.high_spectral_dimension:
            if metric_value >= cfg.extreme_spectral_dimension:
                new_value = cfg.max_coupling
                reason = CouplingReason.EXTREME_HYPERBOLIC
                diagnostics.append(f"EXTREME hyperbolic d_S={metric_value:.2f}, G -> maximum")
            else:
                excess = metric_value - cfg.target_spectral_dimension
                boost = cfg.coupling_boost_factor * (1.0 + min(excess / 4.0, 2.0))
                new_value = min(self._current * boost, cfg.max_coupling)
                reason = CouplingReason.HYPERBOLIC_CORRECTION
                diagnostics.append(f"Hyperbolic d_S={metric_value:.2f}, boosting G (factor={boost:.2f})")
            self._enter_emergency()
        else:
            new_value, reason = self._normal_step(error, diagnostics)

        new_value = clamp(new_value, cfg.min_coupling, cfg.max_coupling)

        self._history.push(new_value)
        if not self._emergency and len(self._history) >= MIN_SMOOTHING_SAMPLES:
            new_value = clamp(self._history.mean(), cfg.min_coupling, cfg.max_coupling)

        changed = abs(new_value - self._previous) > self._previous * CHANGE_FRACTION
        self._current = new_value
        self._last_reason = reason
        self.last_diagnostics = "; ".join(diagnostics)
        if self._emergency:
            logger.info("Coupling %s: %s", reason.value, self.last_diagnostics)
        return AdjustmentResult(new_value=new_value, changed=changed, reason=reason, diagnostics=self.last_diagnostics)

    def _enter_emergency(self) -> None:
        self._emergency = True
        self._stable_steps = 0

    def _normal_step(self, error: float, diagnostics: list[str]) -> tuple[float, CouplingReason]:
        cfg = self.config
        self._emergency = False
        new_value = self._current

        if abs(error) > cfg.spectral_tolerance:
            self._integral = clamp(self._integral + error, -cfg.integral_limit, cfg.integral_limit)
            derivative = error - self._previous_error

            # Higher d_S needs lower G, hence the negative sign.
            p_term = -cfg.coupling_kp * error
            i_term = -cfg.coupling_ki * self._integral
            d_term = -cfg.coupling_kd * derivative
            control = p_term + i_term + d_term

            factor = clamp(1.0 + control * (1.0 - cfg.coupling_adjustment_rate), 0.5, 2.0)
            new_value = self._current * factor
            reason = CouplingReason.DIMENSION_TOO_HIGH if error > 0 else CouplingReason.DIMENSION_TOO_LOW
            diagnostics.append(f"PID: P={p_term:.3f}, I={i_term:.3f}, D={d_term:.3f}")
            diagnostics.append(f"Control factor: {factor:.3f}")
            self._stable_steps = 0
        else:
            self._stable_steps += 1
            if self._stable_steps > cfg.stable_threshold:
                new_value = self._current + cfg.restoration_rate * (self._target - self._current)
                reason = CouplingReason.RESTORATION
                diagnostics.append(f"Stable for {self._stable_steps} steps, restoring toward target")
            else:
                reason = CouplingReason.NONE
                diagnostics.append("Within tolerance, maintaining")

        self._previous_error = error
        return new_value, reason

    def warmup_adjusted(self, step: int, warmup_duration: int, transition_duration: int) -> float:
        """Coupling to apply at ``step``: fixed during warmup, then a linear ramp."""
        return linear_ramp(step, warmup_duration, transition_duration, self.config.warmup_coupling, self._current)
