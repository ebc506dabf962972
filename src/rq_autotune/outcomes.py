"""Result values shared by the regulators and the orchestrator."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AdjustmentResult:
    """Outcome of one regulator call. Immutable once returned.

    Attributes:
        new_value: Regulated value after clamping (always inside its bounds).
        changed: True when the value moved by more than 1% of the previous one.
        reason: Regulator-specific enum member explaining the move.
        diagnostics: Human-readable trace of the decision.
    """

    new_value: float
    changed: bool
    reason: Enum
    diagnostics: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    reason: str


CollaboratorResult = Union[Ok[T], Failure]


def call_collaborator(label: str, fn: Callable[..., T], *args, **kwargs) -> CollaboratorResult:
    """Run a collaborator call, turning any raised error into a ``Failure``."""
    try:
        return Ok(fn(*args, **kwargs))
    except Exception as exc:  # collaborator boundary: never propagate
        logger.warning("%s failed: %s", label, exc)
        return Failure(f"{label}: {exc}")


def collaborator_method(collaborator: Any, name: str) -> Callable[..., Any]:
    """Look up ``name`` on a collaborator; a missing method raises only when called."""
    method = getattr(collaborator, name, None)
    if callable(method):
        return method

    def _missing(*_args, **_kwargs):
        raise AttributeError(f"{type(collaborator).__name__} has no '{name}'")

    return _missing


def count_of(result: CollaboratorResult) -> int:
    """Effect count of a collaborator call; a ``Failure`` counts as zero."""
    if isinstance(result, Failure):
        return 0
    try:
        return max(int(result.value or 0), 0)
    except (TypeError, ValueError):
        return 0


class Latch:
    """One-shot event flag with ``set`` / ``take`` semantics.

    ``set`` reports whether it actually fired (False when already set), so a
    persistent condition raises the latch exactly once until it is cleared.
    """

    __slots__ = ("_set",)

    def __init__(self) -> None:
        self._set = False

    def __bool__(self) -> bool:
        return self._set

    @property
    def is_set(self) -> bool:
        return self._set

    def set(self) -> bool:
        if self._set:
            return False
        self._set = True
        return True

    def take(self) -> bool:
        """Return the current state and clear it."""
        fired, self._set = self._set, False
        return fired

    def clear(self) -> None:
        self._set = False


def is_finite(*values: float) -> bool:
    for value in values:
        try:
            if not math.isfinite(value):
                return False
        except TypeError:
            return False
    return True


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)
