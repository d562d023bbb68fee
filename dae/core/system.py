# ═══════════════════════════════════════════════════════════════════════════════
# PART 4: DAE SYSTEM
# All episodes + the conscious manifold + derived indices
# ═══════════════════════════════════════════════════════════════════════════════

"""
The system owns every episode plus exactly one conscious episode (content the
agent itself marked salient).

Indices are derived data. Any structural change marks them stale; the next
read rebuilds all four maps from scratch. Nothing is ever patched in place.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Set, Tuple

from dae.core.manifold import TOTAL_MASS
from dae.core.memory import Episode, Neighborhood, Occurrence, tokenize


class ManifoldIndex:
    """word → neighborhoods/occurrences, neighborhood id → neighborhood/episode."""

    def __init__(self):
        self.stale = True
        self.word_neighborhoods: Dict[str, Set[str]] = {}
        self.word_occurrences: Dict[str, List[Occurrence]] = {}
        self.neighborhoods: Dict[str, Neighborhood] = {}
        self.neighborhood_episodes: Dict[str, Episode] = {}
        self.rebuild_count = 0

    def invalidate(self) -> None:
        self.stale = True

    def rebuild(self, episodes: List[Episode]) -> None:
        """Total recomputation in one pass over every episode."""
        self.word_neighborhoods.clear()
        self.word_occurrences.clear()
        self.neighborhoods.clear()
        self.neighborhood_episodes.clear()

        for ep in episodes:
            for n in ep.neighborhoods:
                self.neighborhoods[n.id] = n
                self.neighborhood_episodes[n.id] = ep
                for occ in n.occurrences:
                    w = occ.word.lower()
                    self.word_neighborhoods.setdefault(w, set()).add(n.id)
                    self.word_occurrences.setdefault(w, []).append(occ)

        self.stale = False
        self.rebuild_count += 1

    def ensure(self, episodes: List[Episode]) -> None:
        if self.stale:
            self.rebuild(episodes)


class DAESystem:
    """
    Closed memory manifold.

    Total mass is fixed at 1: N (occurrence count) only increases resolution.
    N and total activation are summed on demand so they can never go stale.
    """

    def __init__(self, agent_name: str = "DAE"):
        self.episodes: List[Episode] = []
        self.conscious_episode = Episode(name="conscious", is_conscious=True)
        self.agent_name = agent_name
        self.index = ManifoldIndex()

    # ── Structure ───────────────────────────────────────────────────────────

    def add_episode(self, episode: Episode) -> None:
        self.episodes.append(episode)
        self.index.invalidate()

    def add_neighborhood(self, episode: Episode, neighborhood: Neighborhood) -> None:
        episode.add_neighborhood(neighborhood)
        self.index.invalidate()

    def add_to_conscious(self, text: str) -> Neighborhood:
        """Conscious content starts known: every occurrence pre-activated once."""
        neighborhood = Neighborhood.from_tokens(tokenize(text), source_text=text)
        for occ in neighborhood.occurrences:
            occ.activate()
        self.add_neighborhood(self.conscious_episode, neighborhood)
        return neighborhood

    def all_episodes(self) -> List[Episode]:
        return [*self.episodes, self.conscious_episode]

    def all_occurrences(self) -> Iterator[Occurrence]:
        for ep in self.all_episodes():
            yield from ep.all_occurrences()

    # ── Aggregates ──────────────────────────────────────────────────────────

    @property
    def N(self) -> int:
        return sum(ep.count for ep in self.all_episodes())

    @property
    def total_activation(self) -> int:
        return sum(ep.total_activation for ep in self.all_episodes())

    @property
    def mass(self) -> float:
        return TOTAL_MASS

    @property
    def neighborhood_count(self) -> int:
        return sum(len(ep.neighborhoods) for ep in self.all_episodes())

    # ── Index lookups ───────────────────────────────────────────────────────

    def _ensure_index(self) -> ManifoldIndex:
        self.index.ensure(self.all_episodes())
        return self.index

    def word_weight(self, word: str) -> float:
        """Inverse neighborhood frequency: 1/k for a word in k neighborhoods."""
        nids = self._ensure_index().word_neighborhoods.get(word.lower())
        return 1.0 / max(1, len(nids) if nids else 0)

    def neighborhood_for(self, occ: Occurrence) -> Optional[Neighborhood]:
        return self._ensure_index().neighborhoods.get(occ.neighborhood_id)

    def episode_for(self, occ: Occurrence) -> Optional[Episode]:
        return self._ensure_index().neighborhood_episodes.get(occ.neighborhood_id)

    def activate_word(self, word: str) -> Tuple[List[Occurrence], List[Occurrence]]:
        """Activate every occurrence of word. Returns (subconscious, conscious)."""
        index = self._ensure_index()
        subconscious: List[Occurrence] = []
        conscious: List[Occurrence] = []

        for occ in index.word_occurrences.get(word.lower(), []):
            occ.activate()
            ep = index.neighborhood_episodes.get(occ.neighborhood_id)
            if ep is not None and ep.is_conscious:
                conscious.append(occ)
            else:
                subconscious.append(occ)

        return subconscious, conscious
