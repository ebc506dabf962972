"""Spectral-dimension tracking: confidence-weighted smoothing and regime classification.

The spectral dimension d_S characterises the effective dimensionality of the
emergent geometry through the random-walk return probability P(t) ~ t^(-d_S/2).
Individual estimates are noisy, so this module keeps an exponential moving
average weighted by a per-sample confidence and classifies the smoothed value
into a recommended coupling action:

    critical-low  -> EMERGENCY_RECOVERY   (graph fragmenting)
    warning-low   -> REDUCE
    extreme-high  -> EMERGENCY_COMPACTION (far above the hyperbolic bound)
    high          -> INCREASE
    within band   -> MAINTAIN
    otherwise     -> SLIGHTLY_REDUCE / SLIGHTLY_INCREASE by sign of deviation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .buffers import RingBuffer
from .config import TuningConfig, require_config
from .outcomes import clamp, is_finite

logger = logging.getLogger(__name__)

MIN_NODES_FOR_ESTIMATE = 10


class SpectralAction(Enum):
    """Recommended coupling action, ordered by severity."""

    MAINTAIN = "maintain"
    SLIGHTLY_REDUCE = "slightly_reduce"
    SLIGHTLY_INCREASE = "slightly_increase"
    REDUCE = "reduce"
    INCREASE = "increase"
    EMERGENCY_RECOVERY = "emergency_recovery"
    EMERGENCY_COMPACTION = "emergency_compaction"


@dataclass(frozen=True)
class SpectralSample:
    """One raw spectral-dimension observation.

    Attributes:
        value: Estimated spectral dimension.
        confidence: Reliability of the estimate in [0, 1].
        method: Estimator tag reported by the engine (e.g. "heat_kernel").
        slope: Log-log slope of the return probability (negative for diffusion).
        sample_count: Number of time points used by the estimator.
    """

    value: float
    confidence: float
    method: str = "unknown"
    slope: float = 0.0
    sample_count: int = 0


@dataclass(frozen=True)
class SmoothedMetric:
    ema_value: float
    ema_confidence: float
    sample_count: int


def estimate_confidence(dimension: float, slope: float, node_count: int) -> float:
    """Derive a confidence in [0, 1] for a raw spectral-dimension estimate.

    Penalises implausible values (outside [1.5, 6] lightly, outside [1, 8]
    heavily) and flat or positive slopes; rewards values in the physically
    expected range [1.8, 4.5] and larger graphs.
    """
    if not is_finite(dimension, slope) or dimension <= 0:
        return 0.0

    conf = 1.0
    if dimension < 1.5 or dimension > 6.0:
        conf *= 0.7
    if dimension < 1.0 or dimension > 8.0:
        conf *= 0.5
    if 1.8 <= dimension <= 4.5:
        conf *= 1.1

    # Diffusive return probability decays, so the slope should be negative.
    if abs(slope) < 0.1:
        conf *= 0.7
    if slope >= 0:
        conf *= 0.3

    if node_count >= 100:
        conf *= 1.1
    if node_count >= 500:
        conf *= 1.1

    return clamp(conf, 0.0, 1.0)


def sample_from_engine(
    value: float,
    slope: float,
    node_count: int,
    method: str = "hybrid",
    sample_count: int = 0,
) -> SpectralSample:
    """Build a ``SpectralSample`` from raw estimator output.

    Graphs too small for a meaningful estimate yield a fixed low-confidence
    fallback sample.
    """
    if node_count < MIN_NODES_FOR_ESTIMATE:
        return SpectralSample(value=2.0, confidence=0.1, method="fallback_small", slope=0.0, sample_count=0)
    confidence = estimate_confidence(value, slope, node_count)
    return SpectralSample(value=value, confidence=confidence, method=method, slope=slope, sample_count=sample_count)


class MetricTracker:
    """Confidence-weighted EMA of the spectral dimension plus regime queries."""

    def __init__(self, config: TuningConfig | None) -> None:
        self.config = require_config(config, "MetricTracker")
        self._history = RingBuffer(self.config.spectral_history_size)
        self._ema_value = self.config.target_spectral_dimension
        self._ema_confidence = 0.0
        self._count = 0
        self._last_sample: SpectralSample | None = None
        self.last_diagnostics = ""

    @property
    def current(self) -> float:
        return self._ema_value

    @property
    def confidence(self) -> float:
        return self._ema_confidence

    @property
    def sample_count(self) -> int:
        return self._count

    @property
    def last_sample(self) -> SpectralSample | None:
        return self._last_sample

    def smoothed(self) -> SmoothedMetric:
        return SmoothedMetric(self._ema_value, self._ema_confidence, self._count)

    def history(self) -> np.ndarray:
        """Raw sample values, oldest first (diagnostics only)."""
        return self._history.values()

    def update(self, sample: SpectralSample) -> SmoothedMetric:
        if not is_finite(sample.value, sample.confidence) or sample.value <= 0:
            self.last_diagnostics = f"rejected sample value={sample.value!r} conf={sample.confidence!r}"
            logger.debug("MetricTracker %s", self.last_diagnostics)
            return self.smoothed()

        confidence = clamp(sample.confidence, 0.0, 1.0)
        alpha = self.config.spectral_smoothing_alpha
        self._history.push(sample.value)

        if self._count == 0:
            self._ema_value = sample.value
            self._ema_confidence = confidence
        else:
            effective_alpha = alpha * confidence
            self._ema_value = effective_alpha * sample.value + (1.0 - effective_alpha) * self._ema_value
            self._ema_confidence = alpha * confidence + (1.0 - alpha) * self._ema_confidence

        self._count += 1
        self._last_sample = sample
        self.last_diagnostics = (
            f"d_S={sample.value:.2f} ({sample.method}), slope={sample.slope:.3f}, "
            f"conf={confidence:.2f} -> ema={self._ema_value:.2f}"
        )
        return self.smoothed()

    def deviation(self) -> float:
        """Signed distance from target: positive is hyperbolic, negative is fragmenting."""
        return self._ema_value - self.config.target_spectral_dimension

    def is_healthy(self) -> bool:
        return (
            abs(self.deviation()) <= self.config.spectral_tolerance
            and self._ema_confidence >= self.config.spectral_confidence_threshold
        )

    def is_fragmenting(self) -> bool:
        return self._ema_value <= self.config.critical_spectral_dimension

    def is_hyperbolic(self) -> bool:
        return self._ema_value >= self.config.high_spectral_dimension

    def recommended_action(self) -> SpectralAction:
        cfg = self.config
        value = self._ema_value
        if value <= cfg.critical_spectral_dimension:
            return SpectralAction.EMERGENCY_RECOVERY
        if value <= cfg.warning_spectral_dimension:
            return SpectralAction.REDUCE
        if value >= cfg.extreme_spectral_dimension:
            return SpectralAction.EMERGENCY_COMPACTION
        if value >= cfg.high_spectral_dimension:
            return SpectralAction.INCREASE
        if abs(self.deviation()) <= cfg.spectral_tolerance:
            return SpectralAction.MAINTAIN
        if value < cfg.target_spectral_dimension:
            return SpectralAction.SLIGHTLY_REDUCE
        return SpectralAction.SLIGHTLY_INCREASE

    def reset(self) -> None:
        self._history.clear()
        self._ema_value = self.config.target_spectral_dimension
        self._ema_confidence = 0.0
        self._count = 0
        self._last_sample = None
        self.last_diagnostics = ""


@dataclass(frozen=True)
class PinnedStatus:
    value: float
    suspicious: bool
    consecutive: int
    pinned_share: float


class PinnedValueMonitor:
    """Flags a metric that sits suspiciously on one exact number.

    A spectral dimension pinned at 1.0 usually means random walkers are trapped
    in isolated chains. This is an alerting aid only and never gates control.
    """

    def __init__(
        self,
        pinned_value: float = 1.0,
        tolerance: float = 0.001,
        window: int = 100,
        consecutive_limit: int = 10,
        share_limit: float = 0.8,
    ) -> None:
        self.pinned_value = pinned_value
        self.tolerance = tolerance
        self.consecutive_limit = consecutive_limit
        self.share_limit = share_limit
        self._recent = RingBuffer(window)
        self._consecutive = 0

    def observe(self, value: float) -> PinnedStatus:
        if not is_finite(value):
            return PinnedStatus(value, False, self._consecutive, self._share())
        pinned = abs(value - self.pinned_value) < self.tolerance
        self._consecutive = self._consecutive + 1 if pinned else 0
        self._recent.push(value)
        share = self._share()
        suspicious = self._consecutive >= self.consecutive_limit or share >= self.share_limit
        return PinnedStatus(value, suspicious, self._consecutive, share)

    def _share(self) -> float:
        recent = self._recent.values()
        if recent.size == 0:
            return 0.0
        return float(np.mean(np.abs(recent - self.pinned_value) < self.tolerance))

    def reset(self) -> None:
        self._recent.clear()
        self._consecutive = 0
