# ═══════════════════════════════════════════════════════════════════════════════
# PART 7: CONTEXT COMPOSITION
# Ranked, labeled memory context for a stateless LLM
# ═══════════════════════════════════════════════════════════════════════════════

"""
At most four fragments, in fixed priority:

1. CONSCIOUS RECALL     - best conscious neighborhood
2. SUBCONSCIOUS RECALL  - next two best subconscious neighborhoods
3. NOVEL CONNECTION     - one weak, rare, not-yet-anchored word bridge

Score = Σ word_weight × activation_count over a neighborhood's activated
occurrences. A category with no candidates is left out entirely.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from dae.core.memory import Episode, Neighborhood
from dae.core.phasor import plasticity
from dae.core.query_engine import Activation, InterferenceRecord, SurfaceResult
from dae.core.system import DAESystem


CONSCIOUS_LABEL = "Previously marked salient"
MAX_SUBCONSCIOUS = 2
MAX_NOVEL_ACTIVATED = 2

_SALIENT = re.compile(r"<salient>(.*?)</salient>", re.DOTALL)
_SALIENT_TAG = re.compile(r"</?salient>")


# ── Data Classes ──────────────────────────────────────────────────────────────


@dataclass
class ContextMetrics:
    conscious: int = 0
    subconscious: int = 0
    novel: int = 0
    # surfacing detail for logs
    fragments: int = 0
    vivid_neighborhoods: int = 0
    constructive: int = 0

    @property
    def total(self) -> int:
        return self.conscious + self.subconscious + self.novel

    def summary(self) -> str:
        return f"con:{self.conscious} sub:{self.subconscious} novel:{self.novel}"

    def detail(self) -> str:
        return f"frags:{self.fragments} vivid:{self.vivid_neighborhoods} constructive:{self.constructive}"


@dataclass
class ContextFragment:
    kind: str               # "conscious" | "subconscious" | "novel"
    label: str
    text: str
    neighborhood_id: str
    score: float


@dataclass
class ContextResult:
    context: str
    metrics: ContextMetrics
    fragments: List[ContextFragment] = field(default_factory=list)


@dataclass
class _Candidate:
    neighborhood: Neighborhood
    episode: Optional[Episode]
    score: float = 0.0
    activated_count: int = 0
    max_word_weight: float = 0.0
    max_plasticity: float = 0.0
    words: Set[str] = field(default_factory=set)

    @property
    def novelty(self) -> float:
        return self.max_word_weight * self.max_plasticity / self.activated_count


# ── Composition ───────────────────────────────────────────────────────────────


def _score_neighborhoods(system: DAESystem, occurrences, require_episode: bool) -> Dict[str, _Candidate]:
    candidates: Dict[str, _Candidate] = {}
    for occ in occurrences:
        if occ.neighborhood_id not in candidates:
            neighborhood = system.neighborhood_for(occ)
            episode = system.episode_for(occ)
            if neighborhood is None or (require_episode and episode is None):
                continue
            candidates[occ.neighborhood_id] = _Candidate(neighborhood, episode)

        word = occ.word.lower()
        weight = system.word_weight(word)
        entry = candidates[occ.neighborhood_id]
        entry.score += weight * occ.activation_count
        entry.words.add(word)
        entry.activated_count += 1
        entry.max_word_weight = max(entry.max_word_weight, weight)
        entry.max_plasticity = max(entry.max_plasticity, plasticity(occ.activation_count))
    return candidates


def _ranked(candidates, exclude: Set[str]) -> List[_Candidate]:
    # sorted() is stable: ties keep first-activated order
    return sorted(
        (c for c in candidates if c.neighborhood.id not in exclude),
        key=lambda c: c.score,
        reverse=True,
    )


def _source_label(episode: Optional[Episode]) -> str:
    if episode is None:
        return "Memory"
    return episode.display_name or episode.name or "Memory"


def compose_context(
    system: DAESystem,
    surface: SurfaceResult,
    activation: Activation,
    interference: List[InterferenceRecord],
) -> ContextResult:
    metrics = ContextMetrics(
        fragments=len(surface.fragments),
        vivid_neighborhoods=len(surface.vivid_neighborhoods),
        constructive=sum(1 for r in interference if r.constructive),
    )
    selected: List[ContextFragment] = []
    selected_ids: Set[str] = set()

    conscious = _score_neighborhoods(system, activation.conscious, require_episode=False)
    subconscious = _score_neighborhoods(system, activation.subconscious, require_episode=True)
    conscious_words = activation.conscious_words

    # 1. Conscious recall
    con_ranked = _ranked(conscious.values(), selected_ids)
    if con_ranked:
        best = con_ranked[0]
        selected_ids.add(best.neighborhood.id)
        selected.append(ContextFragment(
            "conscious", CONSCIOUS_LABEL, best.neighborhood.recall_text(),
            best.neighborhood.id, best.score,
        ))
        metrics.conscious = 1

    # 2. Subconscious recall
    for entry in _ranked(subconscious.values(), selected_ids)[:MAX_SUBCONSCIOUS]:
        selected_ids.add(entry.neighborhood.id)
        selected.append(ContextFragment(
            "subconscious", _source_label(entry.episode), entry.neighborhood.recall_text(),
            entry.neighborhood.id, entry.score,
        ))
        metrics.subconscious += 1

    # 3. Novel connection
    novel_candidates = [
        entry for entry in subconscious.values()
        if entry.neighborhood.id not in selected_ids
        and entry.activated_count <= MAX_NOVEL_ACTIVATED
        and not (entry.words & conscious_words)
    ]
    if novel_candidates:
        novel = max(novel_candidates, key=lambda c: c.novelty)
        selected_ids.add(novel.neighborhood.id)
        selected.append(ContextFragment(
            "novel", _source_label(novel.episode), novel.neighborhood.recall_text(),
            novel.neighborhood.id, novel.novelty,
        ))
        metrics.novel = 1

    return ContextResult(context=render_context(selected, metrics), metrics=metrics, fragments=selected)


def render_context(fragments: List[ContextFragment], metrics: ContextMetrics) -> str:
    parts: List[str] = []
    sub_index = 0
    for fragment in fragments:
        if fragment.kind == "conscious":
            header = "CONSCIOUS RECALL:"
        elif fragment.kind == "subconscious":
            sub_index += 1
            header = f"SUBCONSCIOUS RECALL {sub_index}:"
        else:
            header = "NOVEL CONNECTION:"
        if parts:
            header = "\n" + header
        parts.append(header)
        parts.append(f"[Source: {fragment.label}]")
        parts.append(f'"{fragment.text}"')

    if metrics.total > 0:
        parts.append(
            f"\n[Activated: {metrics.total} neighborhoods | conscious:{metrics.conscious} "
            f"subconscious:{metrics.subconscious} novel:{metrics.novel}]"
        )
    return "\n".join(parts)


# ── System Prompt ─────────────────────────────────────────────────────────────


SYSTEM_PROMPT_TEMPLATE = """You have a persistent memory system called DAE (Daemon Attention Engine). It stores content from past conversations and documents as episodes on a mathematical manifold. When a query arrives, the most relevant memories are surfaced into your context.

WHAT YOU'LL SEE:

CONSCIOUS RECALL - Text you previously marked as important using <salient> tags. This is your own prior judgment about what mattered. Trust it and build on it.

SUBCONSCIOUS RECALL - Text from past conversations or documents that strongly matches the current query. It is the system finding connections for you.

NOVEL CONNECTION - Text surfaced through a single unexpected word bridge. It may offer a useful reframing or it may be irrelevant. Consider it, don't force it.

HOW TO USE MEMORIES:
- Reference and build on surfaced content naturally, don't just acknowledge it
- Absence of a recall type means nothing matched for that category. Do not fabricate it

MARKING MEMORIES:
When you produce a genuine insight, an important synthesis, or information worth remembering across conversations, wrap it in <salient>content</salient> tags. This stores it in your conscious memory for future recall. Be selective. Routine responses, pleasantries, and restatements of the user's own words should never be marked salient.

If any recall section (CONSCIOUS, SUBCONSCIOUS, NOVEL) is absent from your context below, it does not exist for this query. Do not reconstruct or infer what it might have contained.

{context}"""


def build_system_prompt(context: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(context=context)


# ── Salient Extraction ────────────────────────────────────────────────────────


def extract_salient(system: DAESystem, text: str) -> int:
    """Store every <salient>…</salient> span as conscious memory."""
    spans = _SALIENT.findall(text)
    for span in spans:
        system.add_to_conscious(span)
    return len(spans)


def strip_salient(text: str) -> str:
    return _SALIENT_TAG.sub("", text).strip()
