# ═══════════════════════════════════════════════════════════════════════════════
# DAE BRIDGE
# Manifold memory as a sidecar to a stateless LLM
# ═══════════════════════════════════════════════════════════════════════════════

"""
One conversation turn:

1. Query      - activate/drift/couple/surface, compose the memory context
2. Generate   - system prompt + bounded conversation window → LLM
3. Response   - <salient> spans become conscious memory; the reply's own
                words activate the manifold and drift (weight-floored)
4. Episodes   - every episode_threshold exchanges become a new episode

The bridge is single-threaded; callers must not overlap turns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dae.core.context import ContextMetrics, build_system_prompt, compose_context, extract_salient
from dae.core.llm_clients import DEFAULT_MAX_TOKENS, LLMClient
from dae.core.memory import Episode, Neighborhood, tokenize
from dae.core.query_engine import Activation, QueryEngine, QueryResult
from dae.core.system import DAESystem


MIN_SEED_TEXT = 10


# ── Data Classes ──────────────────────────────────────────────────────────────


@dataclass
class ExchangeContext:
    system_prompt: str
    window: List[Dict[str, str]]
    metrics: ContextMetrics
    activation: Activation
    query_result: QueryResult


@dataclass
class ResponseResult:
    salient_count: int
    activation: Activation


@dataclass
class TurnResult:
    reply: str
    metrics: ContextMetrics
    salient_count: int
    new_episode: Optional[Episode] = None


@dataclass
class SeedResult:
    items_read: int = 0
    occurrences_ingested: int = 0
    episodes: List[Episode] = field(default_factory=list)


# ── Configuration ─────────────────────────────────────────────────────────────


@dataclass
class DAEBridgeConfig:
    conversation_window: int = 5        # exchanges (2 messages each)
    episode_threshold: int = 5
    episode_prefix: str = "Moltbook"
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = 0.7


# ── Bridge ────────────────────────────────────────────────────────────────────


class DAEBridge:

    def __init__(
        self,
        system: DAESystem,
        llm_client: Optional[LLMClient] = None,
        config: Optional[DAEBridgeConfig] = None,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        conversation_buffer: Optional[List[List[str]]] = None,
    ):
        self.system = system
        self.llm_client = llm_client
        self.config = config or DAEBridgeConfig()
        self.engine = QueryEngine(system)
        self.conversation_history: List[Dict[str, str]] = list(conversation_history or [])
        self.conversation_buffer: List[List[str]] = list(conversation_buffer or [])
        self.total_exchanges = 0

    # ── Main Interaction ──────────────────────────────────────────────────────

    def process_exchange(self, query: str) -> ExchangeContext:
        result = self.engine.process_query(query)
        composed = compose_context(
            self.system, result.surface, result.activation, result.interference,
        )
        return ExchangeContext(
            system_prompt=build_system_prompt(composed.context),
            window=self.conversation_window(),
            metrics=composed.metrics,
            activation=result.activation,
            query_result=result,
        )

    def process_response(self, reply: str) -> ResponseResult:
        """
        Feed the reply back: salient spans first, so the reply's own
        activation already sees them as conscious.
        """
        salient_count = extract_salient(self.system, reply)
        activation = self.engine.activate(reply)

        floor = self.engine.weight_floor()
        self.engine.drift_and_consolidate(
            self.engine.filter_by_weight(activation.subconscious, floor)
        )
        self.engine.drift_and_consolidate(
            self.engine.filter_by_weight(activation.conscious, floor)
        )
        self.engine.compute_interference(activation.subconscious, activation.conscious)

        return ResponseResult(salient_count=salient_count, activation=activation)

    def conversation_turn(self, query: str) -> TurnResult:
        if self.llm_client is None:
            raise RuntimeError("conversation_turn requires an llm_client")

        exchange = self.process_exchange(query)
        reply = self.llm_client.complete(
            prompt=query,
            system_prompt=exchange.system_prompt,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            messages=exchange.window or None,
        )
        response = self.process_response(reply)

        self.conversation_history.append({"role": "user", "content": query})
        self.conversation_history.append({"role": "assistant", "content": reply})
        self.conversation_buffer.append([query, reply])
        self.total_exchanges += 1

        return TurnResult(
            reply=reply,
            metrics=exchange.metrics,
            salient_count=response.salient_count,
            new_episode=self.maybe_close_episode(),
        )

    def conversation_window(self) -> List[Dict[str, str]]:
        n = self.config.conversation_window * 2
        if n <= 0:
            return []
        return [dict(m) for m in self.conversation_history[-n:]]

    # ── Episodes ──────────────────────────────────────────────────────────────

    def maybe_close_episode(self) -> Optional[Episode]:
        """One neighborhood per buffered exchange once the threshold is hit."""
        if len(self.conversation_buffer) < self.config.episode_threshold:
            return None

        episode = Episode(name=f"{self.config.episode_prefix} {len(self.system.episodes) + 1}")
        for user_msg, assistant_msg in self.conversation_buffer:
            combined = f"{user_msg} {assistant_msg}"
            tokens = tokenize(combined)
            if tokens:
                episode.add_neighborhood(Neighborhood.from_tokens(tokens, source_text=combined))
        self.system.add_episode(episode)
        self.conversation_buffer = []
        return episode

    # ── Seeding ───────────────────────────────────────────────────────────────

    def seed_from_board(self, board, submolts: List[str], pages: int) -> SeedResult:
        """
        Read-only ingestion: each post and comment becomes one neighborhood
        in a "Seed: <submolt>" episode. No LLM calls.
        """
        result = SeedResult()

        for submolt in submolts:
            episode = Episode(name=f"Seed: {submolt}")
            for page in range(1, pages + 1):
                posts = board.get_posts_page(submolt, page)
                if not posts:
                    break
                for post in posts:
                    text = f"{post.get('title') or ''} {post.get('content') or post.get('body') or ''}".strip()
                    if self._seed_neighborhood(episode, text):
                        result.items_read += 1

                    post_id = post.get("id") or post.get("_id")
                    if not post_id:
                        continue
                    for comment in board.get_post_comments(post_id):
                        c_text = comment.get("content") or comment.get("body") or ""
                        if self._seed_neighborhood(episode, c_text):
                            result.items_read += 1

            if episode.neighborhoods:
                self.system.add_episode(episode)
                result.occurrences_ingested += episode.count
                result.episodes.append(episode)

        return result

    @staticmethod
    def _seed_neighborhood(episode: Episode, text: str) -> bool:
        if len(text) < MIN_SEED_TEXT:
            return False
        tokens = tokenize(text)
        if not tokens:
            return False
        episode.add_neighborhood(Neighborhood.from_tokens(tokens, source_text=text))
        return True
