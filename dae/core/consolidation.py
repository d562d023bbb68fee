# ═══════════════════════════════════════════════════════════════════════════════
# PART 5: CONSOLIDATION STRATEGIES
# Pairwise O(n²) for small working sets, centroid O(n) for large ones
# ═══════════════════════════════════════════════════════════════════════════════

"""
Occurrences activated together drift toward each other on S³ so the next
query retrieves them as a cluster.

Strategies only ever see mobile occurrences (drift rate > 0). Anchored ones
are filtered out by the caller and never move.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from dae.core.manifold import EPSILON, THRESHOLD, Quaternion
from dae.core.memory import Occurrence


WordWeightFn = Callable[[str], float]


@dataclass
class ConsolidationConfig:
    """Empirical constants. Kept configurable, not derived."""
    batch_threshold: int = 200      # >= this many mobile occurrences → centroid
    pairwise_step: float = THRESHOLD
    centroid_damping: float = 0.5


class ConsolidationStrategy(ABC):
    """Moves mobile occurrences toward their co-activated peers."""

    name = "abstract"

    def __init__(self, word_weight: WordWeightFn, config: Optional[ConsolidationConfig] = None):
        self.word_weight = word_weight
        self.config = config or ConsolidationConfig()

    @abstractmethod
    def consolidate(
        self,
        mobile: List[Occurrence],
        container_activations: Dict[str, int],
    ) -> None:
        """Mutate positions (and phases) in place."""

    @staticmethod
    def _rate(occ: Occurrence, container_activations: Dict[str, int]) -> float:
        return occ.drift_rate(container_activations.get(occ.neighborhood_id, 0))


class PairwiseConsolidation(ConsolidationStrategy):
    """
    Every unordered pair meets at a weighted midpoint.

    t_k = drift_rate_k * word_weight_k. The meeting point sits t_i/(t_i+t_j)
    of the way from i to j; each side steps t_k * pairwise_step toward it.
    Phases move toward the partner's pre-update phase by the same fraction.
    """

    name = "pairwise"

    def consolidate(self, mobile, container_activations):
        step = self.config.pairwise_step
        rates = [
            self._rate(occ, container_activations) * self.word_weight(occ.word)
            for occ in mobile
        ]

        for i in range(len(mobile)):
            occ1, t1 = mobile[i], rates[i]
            for j in range(i + 1, len(mobile)):
                occ2, t2 = mobile[j], rates[j]
                total = t1 + t2
                if total <= 0:
                    continue

                meeting = occ1.position.slerp(occ2.position, t1 / total)
                phase1, phase2 = occ1.phasor, occ2.phasor

                if t1 > 0:
                    occ1.position = occ1.position.slerp(meeting, t1 * step)
                    occ1.phasor = phase1.slerp(phase2, t1 * step)
                if t2 > 0:
                    occ2.position = occ2.position.slerp(meeting, t2 * step)
                    occ2.phasor = phase2.slerp(phase1, t2 * step)


class CentroidConsolidation(ConsolidationStrategy):
    """
    Each occurrence moves toward the word-weighted centroid of everyone else.

    The centroid sum is computed once; each target subtracts the occurrence's
    own contribution. Step = drift_rate * word_weight * centroid_damping.
    """

    name = "centroid"

    def leave_one_out_targets(
        self,
        mobile: List[Occurrence],
        weights: np.ndarray,
    ) -> List[Optional[Quaternion]]:
        """Normalized centroid of all other occurrences. None if degenerate."""
        positions = np.array([occ.position.components for occ in mobile])
        weighted_sum = weights @ positions
        total_weight = float(np.sum(weights))

        targets: List[Optional[Quaternion]] = []
        for i in range(len(mobile)):
            remaining = total_weight - weights[i]
            if remaining < EPSILON:
                targets.append(None)
                continue
            target = (weighted_sum - positions[i] * weights[i]) / remaining
            norm = np.linalg.norm(target)
            if norm < EPSILON:
                targets.append(None)
                continue
            targets.append(Quaternion.from_array(target / norm))
        return targets

    def consolidate(self, mobile, container_activations):
        weights = np.array([self.word_weight(occ.word) for occ in mobile], dtype=float)
        targets = self.leave_one_out_targets(mobile, weights)

        for occ, w, target in zip(mobile, weights, targets):
            if target is None:
                continue
            factor = self._rate(occ, container_activations) * w * self.config.centroid_damping
            if factor > 0:
                occ.position = occ.position.slerp(target, factor)


class ConsolidationPolicy:
    """Batch-size switch between the two strategies."""

    def __init__(self, word_weight: WordWeightFn, config: Optional[ConsolidationConfig] = None):
        self.config = config or ConsolidationConfig()
        self.pairwise = PairwiseConsolidation(word_weight, self.config)
        self.centroid = CentroidConsolidation(word_weight, self.config)

    def strategy_for(self, n_mobile: int) -> ConsolidationStrategy:
        if n_mobile >= self.config.batch_threshold:
            return self.centroid
        return self.pairwise
