# ═══════════════════════════════════════════════════════════════════════════════
# PART 2: DAEMON PHASOR
# Phase on the golden-angle lattice
# ═══════════════════════════════════════════════════════════════════════════════

"""
Each occurrence carries a phase independent of its position on S³.

Successive tokens are placed 2π/φ² apart so adjacent words never cluster in
phase. Coupling and interference operate on these angles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from dae.core.manifold import GOLDEN_ANGLE


TWO_PI = 2 * np.pi


def wrap_angle(theta: float) -> float:
    """Reduce theta into [0, 2pi)."""
    wrapped = float(theta) % TWO_PI
    # -1e-17 % 2pi rounds up to exactly 2pi
    if wrapped >= TWO_PI:
        return 0.0
    return wrapped


def angular_difference(a: float, b: float) -> float:
    """Signed shortest difference a - b, in (-pi, pi]."""
    diff = (float(a) - float(b)) % TWO_PI
    if diff > np.pi:
        diff -= TWO_PI
    return diff


def circular_mean(thetas: Iterable[float]) -> Optional[float]:
    """Mean direction via atan2 of mean sin/cos. None for an empty group."""
    arr = np.fromiter(thetas, dtype=float)
    if arr.size == 0:
        return None
    return float(np.arctan2(np.mean(np.sin(arr)), np.mean(np.cos(arr))))


def plasticity(activation_count: int) -> float:
    """Frequently-activated occurrences resist phase change."""
    return 1.0 / (1.0 + np.log(1.0 + activation_count))


@dataclass
class Phasor:
    theta: float = 0.0

    def __post_init__(self):
        self.theta = wrap_angle(self.theta)

    @classmethod
    def from_index(cls, index: int, base_theta: float = 0.0) -> Phasor:
        return cls(base_theta + index * GOLDEN_ANGLE)

    def interference(self, other: Phasor) -> float:
        """+1 fully constructive, -1 fully destructive."""
        return float(np.cos(self.theta - other.theta))

    def slerp(self, other: Phasor, t: float) -> Phasor:
        """Move fraction t along the shortest signed arc toward other."""
        return Phasor(self.theta + t * angular_difference(other.theta, self.theta))

    def shifted(self, delta: float) -> Phasor:
        return Phasor(self.theta + delta)
