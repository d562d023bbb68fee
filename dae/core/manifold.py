# ═══════════════════════════════════════════════════════════════════════════════
# PART 1: MANIFOLD PRIMITIVES
# Points on S³ as unit quaternions
# ═══════════════════════════════════════════════════════════════════════════════

"""
Memory lives on a closed manifold (S³) with fixed total mass M=1.
Adding content increases resolution (more occurrences), never volume.

Every derived point is renormalized. Degenerate results collapse to the
identity quaternion instead of propagating NaN.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


PHI = (1 + np.sqrt(5)) / 2
GOLDEN_ANGLE = (2 * np.pi) / (PHI * PHI)   # ≈ 137.5°, phyllotaxis spacing
NEIGHBORHOOD_RADIUS = np.pi / PHI          # ≈ 111°
THRESHOLD = 0.5                            # anchoring / vividness threshold
TOTAL_MASS = 1.0
EPSILON = 1e-10

# Above this |dot| slerp degenerates to normalized lerp
SLERP_LINEAR_THRESHOLD = 0.9995


@dataclass
class Quaternion:
    """A point on S³. Components are (w, x, y, z)."""
    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    # ── Conversion ─────────────────────────────────────────────────────────

    @property
    def components(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, arr: Sequence[float]) -> Quaternion:
        return cls(float(arr[0]), float(arr[1]), float(arr[2]), float(arr[3]))

    def to_list(self) -> list:
        return [float(self.w), float(self.x), float(self.y), float(self.z)]

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self.components))

    # ── Algebra ────────────────────────────────────────────────────────────

    def normalize(self) -> Quaternion:
        """Unit-length copy. Falls back to identity when the norm vanishes."""
        q = self.components
        n = np.linalg.norm(q)
        if not np.isfinite(n) or n < EPSILON:
            return Quaternion()
        return Quaternion.from_array(q / n)

    def dot(self, other: Quaternion) -> float:
        return float(np.dot(self.components, other.components))

    def multiply(self, other: Quaternion) -> Quaternion:
        """Hamilton product self * other."""
        a, b = self, other
        return Quaternion(
            a.w * b.w - a.x * b.x - a.y * b.y - a.z * b.z,
            a.w * b.x + a.x * b.w + a.y * b.z - a.z * b.y,
            a.w * b.y - a.x * b.z + a.y * b.w + a.z * b.x,
            a.w * b.z + a.x * b.y - a.y * b.x + a.z * b.w,
        )

    def geodesic_distance(self, other: Quaternion) -> float:
        """Angle between the rotations, in [0, pi]. q and -q are the same point."""
        d = min(1.0, max(-1.0, abs(self.dot(other))))
        return 2.0 * float(np.arccos(d))

    def slerp(self, other: Quaternion, t: float) -> Quaternion:
        """
        Spherical linear interpolation along the short arc.

        t <= 0 returns self, t >= 1 returns other. Nearly identical endpoints
        use normalized linear interpolation to avoid dividing by sin(~0).
        """
        if t <= 0:
            return self
        if t >= 1:
            return other

        p = self.components
        q = other.components
        d = float(np.dot(p, q))
        if d < 0:
            q = -q
            d = -d

        if d > SLERP_LINEAR_THRESHOLD:
            return Quaternion.from_array(p + t * (q - p)).normalize()

        theta = np.arccos(min(1.0, d))
        sin_theta = np.sin(theta)
        s0 = np.sin((1 - t) * theta) / sin_theta
        s1 = np.sin(t * theta) / sin_theta
        return Quaternion.from_array(s0 * p + s1 * q).normalize()

    # ── Sampling ───────────────────────────────────────────────────────────

    @classmethod
    def random(cls) -> Quaternion:
        """Uniform sample on S³ (Shoemake's construction, no rejection)."""
        u1, u2, u3 = np.random.uniform(0.0, 1.0, 3)
        t1 = 2 * np.pi * u2
        t2 = 2 * np.pi * u3
        r1 = np.sqrt(1 - u1)
        r2 = np.sqrt(u1)
        return cls(
            r1 * np.sin(t1),
            r1 * np.cos(t1),
            r2 * np.sin(t2),
            r2 * np.cos(t2),
        ).normalize()

    @classmethod
    def random_near(cls, center: Quaternion, angular_radius: float) -> Quaternion:
        """
        Sample within angular_radius of center.

        Rotates center by a small rotation about a Gaussian-distributed axis.
        sqrt(u) spreads samples over the cap instead of bunching at the centre.
        """
        axis = np.random.randn(3)
        axis_norm = np.linalg.norm(axis)
        if axis_norm < EPSILON:
            return center
        axis = axis / axis_norm

        angle = angular_radius * np.sqrt(np.random.uniform(0.0, 1.0))
        half = angle / 2
        sin_half = np.sin(half)
        rotation = cls(np.cos(half), *(axis * sin_half))
        return rotation.multiply(center).normalize()
