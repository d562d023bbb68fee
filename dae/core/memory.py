# ═══════════════════════════════════════════════════════════════════════════════
# PART 3: MEMORY HIERARCHY
# Occurrence → Neighborhood → Episode
# ═══════════════════════════════════════════════════════════════════════════════

"""
Occurrence:    one token instance on S³ with a phase and activation history.
Neighborhood:  one ingested chunk (≈3 sentences). Owns its occurrences.
Episode:       one document or conversation. Owns its neighborhoods.

Occurrences point back at their neighborhood by id only. Lookups go through
the system index, so the hierarchy stays acyclic and serializes as a tree.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional

from dae.core.manifold import NEIGHBORHOOD_RADIUS, THRESHOLD, TOTAL_MASS, Quaternion
from dae.core.phasor import Phasor, plasticity


CHUNK_SIZE = 3

_NON_WORD = re.compile(r"[^\w\s']")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


# ── Tokenization ─────────────────────────────────────────────────────────────


def tokenize(text: str) -> List[str]:
    """Lower-case word tokens. Interior apostrophes survive (don't, it's)."""
    tokens = []
    for raw in _NON_WORD.sub(" ", text).lower().split():
        token = raw.strip("'")
        if token:
            tokens.append(token)
    return tokens


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_END.split(text) if s.strip()]


# ── Occurrence ───────────────────────────────────────────────────────────────


@dataclass(eq=False)
class Occurrence:
    word: str
    position: Quaternion
    phasor: Phasor
    activation_count: int = 0
    neighborhood_id: Optional[str] = None

    def activate(self) -> None:
        self.activation_count += 1

    @property
    def plasticity(self) -> float:
        return plasticity(self.activation_count)

    def drift_rate(self, container_activation: float) -> float:
        """
        0 when the container is silent or this occurrence is anchored,
        otherwise share/THRESHOLD in (0, 1].
        """
        if container_activation == 0:
            return 0.0
        share = self.activation_count / container_activation
        if share > THRESHOLD:
            return 0.0
        return share / THRESHOLD

    def is_anchored(self, container_activation: float) -> bool:
        if container_activation == 0:
            return False
        return self.activation_count / container_activation > THRESHOLD

    def mass(self, n_total: int) -> float:
        return (self.activation_count / n_total) * TOTAL_MASS if n_total > 0 else 0.0


# ── Neighborhood ─────────────────────────────────────────────────────────────


@dataclass(eq=False)
class Neighborhood:
    seed: Quaternion
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    text: str = ""
    occurrences: List[Occurrence] = field(default_factory=list)

    @classmethod
    def from_tokens(
        cls,
        tokens: List[str],
        seed: Optional[Quaternion] = None,
        source_text: str = "",
    ) -> Neighborhood:
        """Scatter tokens around the seed, phases on the golden-angle lattice."""
        if seed is None:
            seed = Quaternion.random()
        neighborhood = cls(seed=seed, text=source_text)
        for i, token in enumerate(tokens):
            neighborhood.occurrences.append(Occurrence(
                word=token,
                position=Quaternion.random_near(neighborhood.seed, NEIGHBORHOOD_RADIUS),
                phasor=Phasor.from_index(i),
                neighborhood_id=neighborhood.id,
            ))
        return neighborhood

    @property
    def count(self) -> int:
        return len(self.occurrences)

    @property
    def total_activation(self) -> int:
        return sum(o.activation_count for o in self.occurrences)

    def mass(self, n_total: int) -> float:
        return (self.count / n_total) * TOTAL_MASS if n_total > 0 else 0.0

    @property
    def words(self) -> List[str]:
        return [o.word for o in self.occurrences]

    def recall_text(self) -> str:
        """Stored chunk text, or the occurrence words in order."""
        return self.text or " ".join(self.words)

    def activate_word(self, word: str) -> List[Occurrence]:
        word_lower = word.lower()
        activated = []
        for occ in self.occurrences:
            if occ.word.lower() == word_lower:
                occ.activate()
                activated.append(occ)
        return activated


# ── Episode ──────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class Episode:
    name: str = "Untitled"
    is_conscious: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    neighborhoods: List[Neighborhood] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        if self.is_conscious:
            return "Conscious"
        try:
            ts = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        except ValueError:
            return self.name
        hour = ts.hour % 12 or 12
        return (
            f"{self.name} ({ts.month}/{ts.day}/{ts:%y} "
            f"{hour}:{ts:%M} {'AM' if ts.hour < 12 else 'PM'})"
        )

    def add_neighborhood(self, neighborhood: Neighborhood) -> None:
        """Append without touching any index. Use DAESystem.add_neighborhood
        once the episode belongs to a system."""
        self.neighborhoods.append(neighborhood)

    @property
    def count(self) -> int:
        return sum(n.count for n in self.neighborhoods)

    @property
    def total_activation(self) -> int:
        return sum(n.total_activation for n in self.neighborhoods)

    def mass(self, n_total: int) -> float:
        return (self.count / n_total) * TOTAL_MASS if n_total > 0 else 0.0

    def all_occurrences(self) -> Iterator[Occurrence]:
        for n in self.neighborhoods:
            yield from n.occurrences

    def activate_word(self, word: str) -> List[Occurrence]:
        activated = []
        for n in self.neighborhoods:
            activated.extend(n.activate_word(word))
        return activated


# ── Ingestion ────────────────────────────────────────────────────────────────


def ingest_text(
    text: str,
    name: Optional[str] = None,
    chunk_size: int = CHUNK_SIZE,
) -> Episode:
    """One neighborhood per group of chunk_size sentences."""
    episode = Episode(name=name or "Untitled")
    sentences = split_sentences(text)

    for i in range(0, len(sentences), chunk_size):
        chunk = " ".join(sentences[i:i + chunk_size])
        tokens = tokenize(chunk)
        if tokens:
            episode.add_neighborhood(Neighborhood.from_tokens(tokens, source_text=chunk))

    return episode
