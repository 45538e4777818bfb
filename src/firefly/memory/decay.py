"""Strength arithmetic: clamping, importance mapping and decay.

Everything here is pure. Callers pass `now` explicitly so results are
reproducible.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .models import MAX_STRENGTH, MIN_STRENGTH

SECONDS_PER_DAY = 86400.0
DEFAULT_HALF_LIFE_DAYS = 60.0
DEFAULT_IMPORTANCE = 5


def clamp_strength(value: float) -> float:
    """Clamp a strength into [MIN_STRENGTH, MAX_STRENGTH]."""
    return max(MIN_STRENGTH, min(MAX_STRENGTH, value))


def importance_to_strength(importance: int | None) -> float:
    """Map extraction importance (1..10) onto an initial strength in [1, 3]."""
    imp = DEFAULT_IMPORTANCE if importance is None else importance
    return max(1.0, min(3.0, 0.5 + imp / 4))


def decay(
    strength: float,
    last_reinforced_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    *,
    now: datetime,
) -> float:
    """Exponential half-life decay.

    Args:
        strength: Current strength.
        last_reinforced_at: Start of the elapsed window.
        half_life_days: Days after which strength halves.
        now: Evaluation time.

    Returns:
        The decayed strength, clamped to the valid range.
    """
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")

    elapsed_days = max(0.0, (now - last_reinforced_at).total_seconds() / SECONDS_PER_DAY)
    factor = 0.5 ** (elapsed_days / half_life_days)
    return clamp_strength(strength * factor)


def incremental_decay(strength: float, factor: float = 0.98, floor: float = 0.5) -> float:
    """Gentle per-sweep decay for frequent runs; never drops below `floor`."""
    return max(floor, strength * factor)


class DecayPolicy(Protocol):
    """A named decay rule the batch job can apply."""

    name: str

    def apply(self, strength: float, last_reinforced_at: datetime, now: datetime) -> float:
        ...


@dataclass(frozen=True)
class HalfLifeDecay:
    """Time-based exponential decay."""

    half_life_days: float = DEFAULT_HALF_LIFE_DAYS
    name: str = "half_life"

    def __post_init__(self) -> None:
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")

    def apply(self, strength: float, last_reinforced_at: datetime, now: datetime) -> float:
        return decay(strength, last_reinforced_at, self.half_life_days, now=now)


@dataclass(frozen=True)
class IncrementalDecay:
    """Fixed-factor decay per sweep, ignoring elapsed time."""

    factor: float = 0.98
    floor: float = 0.5
    name: str = "incremental"

    def apply(self, strength: float, last_reinforced_at: datetime, now: datetime) -> float:
        return incremental_decay(strength, self.factor, self.floor)
