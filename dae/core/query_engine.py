# ═══════════════════════════════════════════════════════════════════════════════
# PART 6: QUERY ENGINE
# Activation → drift → interference/coupling → surfacing
# ═══════════════════════════════════════════════════════════════════════════════

"""
A query is processed in four synchronous steps:

1. Activation   - exact word matches bump activation counters system-wide,
                  split into subconscious (episodes) and conscious.
2. Drift        - mobile co-activated occurrences consolidate on S³.
3. Interference - per shared word, subconscious phases are compared to the
                  conscious circular mean, then Kuramoto coupling pulls the
                  two groups toward synchrony.
4. Surfacing    - constructive or novel occurrences are reported, promoted to
                  whole neighborhoods/episodes when enough of them light up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from dae.core.consolidation import ConsolidationConfig, ConsolidationPolicy
from dae.core.manifold import THRESHOLD
from dae.core.memory import Episode, Neighborhood, Occurrence, tokenize
from dae.core.phasor import angular_difference, circular_mean, plasticity
from dae.core.system import DAESystem


# ── Data Classes ──────────────────────────────────────────────────────────────


@dataclass
class Activation:
    subconscious: List[Occurrence] = field(default_factory=list)
    conscious: List[Occurrence] = field(default_factory=list)

    @property
    def conscious_words(self) -> Set[str]:
        return {o.word.lower() for o in self.conscious}

    @property
    def is_empty(self) -> bool:
        return not self.subconscious and not self.conscious


@dataclass
class InterferenceRecord:
    occurrence: Occurrence      # subconscious side
    reference: Occurrence       # first conscious occurrence of the same word
    value: float                # cos(θ_sub - mean θ_con)

    @property
    def constructive(self) -> bool:
        return self.value > 0


@dataclass
class WordGroup:
    word: str
    subconscious: List[Occurrence]
    conscious: List[Occurrence]


@dataclass
class SurfaceResult:
    fragments: List[Occurrence] = field(default_factory=list)
    vivid_neighborhoods: List[Neighborhood] = field(default_factory=list)
    vivid_episodes: List[Episode] = field(default_factory=list)


@dataclass
class QueryResult:
    activation: Activation
    interference: List[InterferenceRecord]
    surface: SurfaceResult


# ── Configuration ─────────────────────────────────────────────────────────────


@dataclass
class QueryEngineConfig:
    large_query_tokens: int = 50        # above this, drift is weight-floored
    weight_floor_fraction: float = 0.1
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)


# ── Query Engine ──────────────────────────────────────────────────────────────


class QueryEngine:

    def __init__(self, system: DAESystem, config: Optional[QueryEngineConfig] = None):
        self.system = system
        self.config = config or QueryEngineConfig()
        self.policy = ConsolidationPolicy(system.word_weight, self.config.consolidation)

    # ── Activation ──────────────────────────────────────────────────────────

    def activate(self, query: str) -> Activation:
        """Activate each unique token once. Only counters are mutated."""
        result = Activation()
        for token in dict.fromkeys(t.lower() for t in tokenize(query)):
            subconscious, conscious = self.system.activate_word(token)
            result.subconscious.extend(subconscious)
            result.conscious.extend(conscious)
        return result

    # ── Drift ───────────────────────────────────────────────────────────────

    def drift_and_consolidate(self, activated: List[Occurrence]) -> int:
        """Consolidate the mobile subset. Returns how many occurrences moved."""
        if len(activated) < 2:
            return 0

        container_activations: Dict[str, int] = {}
        for occ in activated:
            if occ.neighborhood_id not in container_activations:
                neighborhood = self.system.neighborhood_for(occ)
                container_activations[occ.neighborhood_id] = (
                    neighborhood.total_activation if neighborhood else 0
                )

        mobile = [
            occ for occ in activated
            if occ.drift_rate(container_activations.get(occ.neighborhood_id, 0)) > 0
        ]
        if len(mobile) < 2:
            return 0

        self.policy.strategy_for(len(mobile)).consolidate(mobile, container_activations)
        return len(mobile)

    def weight_floor(self) -> float:
        """Scale-proportional cutoff: over-common words skip the drift step."""
        denom = int(np.floor(self.system.neighborhood_count * self.config.weight_floor_fraction))
        return 1.0 / max(1, denom)

    def filter_by_weight(self, occurrences: List[Occurrence], floor: float) -> List[Occurrence]:
        return [o for o in occurrences if self.system.word_weight(o.word) >= floor]

    # ── Interference & Coupling ─────────────────────────────────────────────

    def compute_interference(
        self,
        subconscious: List[Occurrence],
        conscious: List[Occurrence],
    ) -> List[InterferenceRecord]:
        sub_by_word: Dict[str, List[Occurrence]] = {}
        for occ in subconscious:
            sub_by_word.setdefault(occ.word.lower(), []).append(occ)

        con_by_word: Dict[str, List[Occurrence]] = {}
        for occ in conscious:
            con_by_word.setdefault(occ.word.lower(), []).append(occ)

        results: List[InterferenceRecord] = []
        groups: List[WordGroup] = []

        for word, sub_occs in sub_by_word.items():
            con_occs = con_by_word.get(word)
            if not con_occs:
                continue

            mean_con = circular_mean(o.phasor.theta for o in con_occs)
            for occ in sub_occs:
                results.append(InterferenceRecord(
                    occurrence=occ,
                    reference=con_occs[0],
                    value=float(np.cos(angular_difference(occ.phasor.theta, mean_con))),
                ))

            groups.append(WordGroup(word, sub_occs, con_occs))

        self.apply_kuramoto_coupling(groups)
        return results

    def coupling_constants(self) -> Tuple[float, float]:
        """(K_CON, K_SUB): each side is pulled in proportion to the other's mass."""
        n_total = self.system.N or 1
        n_con = self.system.conscious_episode.count or 1
        n_sub = max(1, self.system.N - n_con)
        return n_sub / n_total, n_con / n_total

    def apply_kuramoto_coupling(self, groups: List[WordGroup]) -> None:
        if not groups:
            return

        k_con, k_sub = self.coupling_constants()

        for group in groups:
            w = self.system.word_weight(group.word)
            coupling = w * w

            mean_sub = circular_mean(o.phasor.theta for o in group.subconscious)
            mean_con = circular_mean(o.phasor.theta for o in group.conscious)
            if mean_sub is None or mean_con is None:
                continue

            sin_diff = np.sin(angular_difference(mean_con, mean_sub))
            delta_sub = k_con * coupling * sin_diff
            delta_con = -k_sub * coupling * sin_diff

            for occ in group.subconscious:
                occ.phasor = occ.phasor.shifted(delta_sub * plasticity(occ.activation_count))
            for occ in group.conscious:
                occ.phasor = occ.phasor.shifted(delta_con * plasticity(occ.activation_count))

    # ── Surfacing ───────────────────────────────────────────────────────────

    def compute_surface(
        self,
        activation: Activation,
        interference: List[InterferenceRecord],
    ) -> SurfaceResult:
        n_total = self.system.N
        result = SurfaceResult()

        # Dict keeps first-surfaced order and dedupes by identity
        surfaced: Dict[int, Occurrence] = {}
        for record in interference:
            if record.constructive:
                surfaced.setdefault(id(record.occurrence), record.occurrence)

        conscious_words = activation.conscious_words
        for occ in activation.subconscious:
            if occ.word.lower() not in conscious_words:
                surfaced.setdefault(id(occ), occ)

        per_neighborhood: Dict[str, int] = {}
        for occ in surfaced.values():
            per_neighborhood[occ.neighborhood_id] = per_neighborhood.get(occ.neighborhood_id, 0) + 1

        vivid_neighborhood_ids: Set[str] = set()
        vivid_episode_ids: Set[str] = set()

        for episode in self.system.episodes:
            episode_surfaced = 0
            for neighborhood in episode.neighborhoods:
                n_surfaced = per_neighborhood.get(neighborhood.id, 0)
                episode_surfaced += n_surfaced
                if neighborhood.count > 0 and n_surfaced / neighborhood.count > THRESHOLD:
                    result.vivid_neighborhoods.append(neighborhood)
                    vivid_neighborhood_ids.add(neighborhood.id)

            if episode.count > 0 and n_total > 0:
                if (episode_surfaced / episode.count > THRESHOLD
                        and episode.mass(n_total) > THRESHOLD):
                    result.vivid_episodes.append(episode)
                    vivid_episode_ids.add(episode.id)

        for occ in surfaced.values():
            if occ.neighborhood_id in vivid_neighborhood_ids:
                continue
            episode = self.system.episode_for(occ)
            if episode is not None and episode.id in vivid_episode_ids:
                continue
            result.fragments.append(occ)

        return result

    # ── Pipeline ────────────────────────────────────────────────────────────

    def process_query(self, query: str) -> QueryResult:
        activation = self.activate(query)

        if len(tokenize(query)) > self.config.large_query_tokens:
            floor = self.weight_floor()
            self.drift_and_consolidate(self.filter_by_weight(activation.subconscious, floor))
            self.drift_and_consolidate(self.filter_by_weight(activation.conscious, floor))
        else:
            self.drift_and_consolidate(activation.subconscious)
            self.drift_and_consolidate(activation.conscious)

        interference = self.compute_interference(activation.subconscious, activation.conscious)
        surface = self.compute_surface(activation, interference)

        return QueryResult(activation=activation, interference=interference, surface=surface)
