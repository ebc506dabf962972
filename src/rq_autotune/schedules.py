"""Time-based parameter schedules (warmup ramps and annealing)."""

from __future__ import annotations

import math

DEFAULT_ANNEALING_FRACTION = 0.1
FINAL_ANNEALING_TEMPERATURE = 0.01


def linear_ramp(step: int, warmup: int, transition: int, start: float, end: float) -> float:
    """Hold ``start`` during warmup, interpolate to ``end`` over ``transition`` steps."""
    if step < warmup:
        return start
    if transition <= 0 or step >= warmup + transition:
        return end
    t = (step - warmup) / transition
    return start + t * (end - start)


def annealing_time_constant(total_steps: int, fraction: float = DEFAULT_ANNEALING_FRACTION) -> float:
    """Time constant tau scaled to the run length, so cooling completes before the end."""
    return max(total_steps * fraction, 1.0)


def annealing_temperature(
    step: int,
    start_temperature: float,
    total_steps: int,
    final_temperature: float = FINAL_ANNEALING_TEMPERATURE,
) -> float:
    """Exponential annealing T(t) = T_f + (T_0 - T_f) * exp(-t / tau)."""
    tau = annealing_time_constant(total_steps)
    return final_temperature + (start_temperature - final_temperature) * math.exp(-step / tau)
