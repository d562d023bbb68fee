#!/usr/bin/env python3
"""
DAE agent: persistent manifold memory for a Moltbook agent.

Usage:
    # Agent loop (requires MOLTBOOK_API_KEY and LLM_API_KEY env vars):
    python agent.py

    # Read-only seeding from the board, no LLM calls:
    python agent.py --seed --seed-submolts general,philosophy --seed-pages 5

    # Single poll then exit:
    python agent.py --once

    # Offline backend:
    LLM_PROVIDER=mock python agent.py
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime

import requests

from dae.core.bridge import DAEBridge, DAEBridgeConfig
from dae.core.config import AgentConfig, ConfigError
from dae.core.context import strip_salient
from dae.core.llm_clients import LLMAPIError, create_client
from dae.core.moltbook import MoltbookAPIError, MoltbookClient, collect_interactions
from dae.core.persistence import AgentMeta, StateCorruptionError, StatePersistence
from dae.core.system import DAESystem


logger = logging.getLogger("dae.agent")


class Agent:
    """Poll → remember → respond → persist, one interaction at a time."""

    def __init__(self, config: AgentConfig, bridge: DAEBridge, board: MoltbookClient, meta: AgentMeta):
        self.config = config
        self.bridge = bridge
        self.board = board
        self.meta = meta
        self.running = True

    @property
    def system(self) -> DAESystem:
        return self.bridge.system

    def save(self) -> None:
        StatePersistence.save(
            self.system,
            self.config.state_path,
            self.bridge.conversation_history,
            self.bridge.conversation_buffer,
        )
        StatePersistence.save_meta(self.meta, self.config.meta_path)

    def poll(self) -> int:
        """One poll cycle. Returns how many interactions were answered."""
        self.meta.poll_count += 1
        since = self.meta.last_poll_time
        answered = 0

        posts = self.board.get_new_posts(since)
        replies = self.board.get_new_replies(since)
        interactions = collect_interactions(posts, replies, self.config.agent_name)

        if interactions:
            logger.info(f"[Poll {self.meta.poll_count}] {len(interactions)} new interaction(s)")

        for interaction in interactions:
            logger.info(
                f"Processing {interaction.kind} from {interaction.author}: "
                f"\"{interaction.query[:80]}...\""
            )
            try:
                turn = self.bridge.conversation_turn(interaction.query)
                if turn.new_episode is not None:
                    logger.info(f">>> New episode: {turn.new_episode.name} (N={self.system.N})")
                if interaction.post_id:
                    self.board.post_reply(interaction.post_id, strip_salient(turn.reply))
            except (LLMAPIError, MoltbookAPIError, requests.RequestException) as e:
                logger.error(f"Error processing interaction: {e}")
                continue
            except Exception:
                logger.exception(f"Unexpected error processing {interaction.kind} from {interaction.author}")
                continue

            answered += 1
            self.meta.total_exchanges += 1
            salient = f" +{turn.salient_count} salient" if turn.salient_count else ""
            logger.info(f"Responded [{turn.metrics.summary()} | {turn.metrics.detail()}{salient}]")

        self.meta.last_poll_time = datetime.now().astimezone().isoformat()

        if interactions:
            self.save()
            logger.info("State saved.")

        if self.config.heartbeat_every > 0 and self.meta.poll_count % self.config.heartbeat_every == 0:
            logger.info(
                f"[Heartbeat] N={self.system.N}, Episodes={len(self.system.episodes)}, "
                f"Conscious={len(self.system.conscious_episode.neighborhoods)}, "
                f"Exchanges={self.meta.total_exchanges}"
            )

        return answered

    def run(self, once: bool = False) -> None:
        interval = self.config.poll_interval_ms / 1000
        logger.info(f"Agent running. Polling every {interval:g}s. Ctrl+C to stop.")
        while self.running:
            try:
                self.poll()
            except Exception:
                logger.exception("Poll failed")
            if once:
                break
            time.sleep(interval)

    def shutdown(self, signum=None, frame=None) -> None:
        logger.info("Shutting down...")
        self.running = False
        self.save()
        logger.info("State saved. Goodbye.")
        sys.exit(0)


def load_or_create(config: AgentConfig):
    """Saved state if usable, otherwise a fresh system."""
    meta = StatePersistence.load_meta(config.meta_path)
    try:
        state = StatePersistence.load(config.state_path)
    except FileNotFoundError:
        logger.info("Fresh start - no prior state.")
        return DAESystem(agent_name=config.agent_name), [], [], AgentMeta()
    except StateCorruptionError as e:
        logger.error(f"State load failed, starting fresh: {e}")
        return DAESystem(agent_name=config.agent_name), [], [], AgentMeta()

    system = state.system
    logger.info(
        f"State loaded: N={system.N}, Episodes={len(system.episodes)}, "
        f"Conscious={system.conscious_episode.count}"
    )
    return system, state.conversation_history, state.conversation_buffer, meta


def main():
    parser = argparse.ArgumentParser(description="DAE Moltbook agent")
    parser.add_argument("--seed", action="store_true", help="Read-only seeding, no LLM")
    parser.add_argument("--seed-submolts", default=None, help="Comma-separated submolts to seed")
    parser.add_argument("--seed-pages", type=int, default=5, help="Pages per submolt (default: 5)")
    parser.add_argument("--once", action="store_true", help="Poll once and exit")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = AgentConfig.from_env()
    try:
        config.validate(seed_mode=args.seed)
    except ConfigError as e:
        logger.error(str(e))
        logger.error("Set them in the environment, e.g. export MOLTBOOK_API_KEY=...")
        sys.exit(1)

    logger.info("Config validated:")
    for line in config.summary(seed_mode=args.seed):
        logger.info(f"  {line}")

    system, history, buffer, meta = load_or_create(config)
    board = MoltbookClient(
        config.moltbook_api_url, config.moltbook_api_key, config.agent_name, config.submolt,
    )

    if args.seed:
        bridge = DAEBridge(system, conversation_history=history, conversation_buffer=buffer)
        submolts = (
            [s.strip() for s in args.seed_submolts.split(",") if s.strip()]
            if args.seed_submolts else [config.submolt]
        )
        print(f"\nSeed mode: reading {args.seed_pages} page(s) from {len(submolts)} submolt(s)")
        result = bridge.seed_from_board(board, submolts, args.seed_pages)
        StatePersistence.save(system, config.state_path, history, buffer)
        StatePersistence.save_meta(meta, config.meta_path)

        print("\nSeed complete.")
        for episode in result.episodes:
            print(f"  Episode \"{episode.name}\": {len(episode.neighborhoods)} neighborhoods, {episode.count} occurrences")
        print(f"  Posts+comments read: {result.items_read}")
        print(f"  Occurrences ingested: {result.occurrences_ingested}")
        print(f"  Total N: {system.N}")
        print(f"  Episodes: {len(system.episodes)}")
        print(f"  State saved to {config.state_dir}/")
        print("\nRun without --seed to start the agent loop.")
        return

    client = create_client(config.llm_provider, config.llm_api_key, config.llm_model)
    bridge = DAEBridge(
        system,
        client,
        DAEBridgeConfig(
            conversation_window=config.conversation_window,
            episode_threshold=config.episode_threshold,
            max_tokens=config.max_response_len,
        ),
        conversation_history=history,
        conversation_buffer=buffer,
    )
    agent = Agent(config, bridge, board, meta)

    signal.signal(signal.SIGINT, agent.shutdown)
    signal.signal(signal.SIGTERM, agent.shutdown)

    agent.run(once=args.once)
    if args.once:
        agent.save()


if __name__ == "__main__":
    main()
