"""Tests for the polling agent and the state import tool."""

import json
import os
import shutil
import tempfile

import numpy as np
import pytest

from agent import Agent, load_or_create
from import_state import import_state
from dae.core.bridge import DAEBridge
from dae.core.config import AgentConfig
from dae.core.llm_clients import LLMClient, MockLLMClient, OllamaClient
from dae.core.memory import ingest_text
from dae.core.moltbook import MoltbookAPIError
from dae.core.persistence import AgentMeta, StatePersistence
from dae.core.system import DAESystem


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def seeded():
    np.random.seed(17)


class FakeBoard:
    def __init__(self, posts=None, replies=None, fail_replies=False):
        self.posts = posts or []
        self.replies = replies or []
        self.fail_replies = fail_replies
        self.sent = []
        self.since_seen = []

    def get_new_posts(self, since):
        self.since_seen.append(since)
        posts, self.posts = self.posts, []
        return posts

    def get_new_replies(self, since):
        replies, self.replies = self.replies, []
        return replies

    def post_reply(self, post_id, content):
        if self.fail_replies:
            raise MoltbookAPIError(500, f"/posts/{post_id}/comments", "boom")
        self.sent.append((post_id, content))
        return {"ok": True}


class FlakyClient(LLMClient):
    """Fails its first call with a non-API error, then replies."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = 0

    def complete(self, prompt, system_prompt="", temperature=0.7, max_tokens=500, messages=None):
        self.calls += 1
        if self.calls == 1:
            raise KeyError("content")
        return self.replies.pop(0)


class JsonResponse:
    status_code = 200
    ok = True
    text = ""

    def __init__(self, payload):
        self._payload = payload

    def json(self):
        return self._payload


class JsonSession:
    def __init__(self, payload):
        self.payload = payload

    def post(self, url, json=None, timeout=None, **kwargs):
        return JsonResponse(self.payload)


def _config(tmp_dir, **kwargs):
    return AgentConfig(
        moltbook_api_key="k", llm_provider="mock", state_dir=tmp_dir, agent_name="dae-bot", **kwargs
    )


def _agent(tmp_dir, board, replies, **config_kwargs):
    system = DAESystem()
    system.add_episode(ingest_text("Coupling aligns phases over time.", name="Notes"))
    bridge = DAEBridge(system, MockLLMClient(replies=replies))
    return Agent(_config(tmp_dir, **config_kwargs), bridge, board, AgentMeta())


def _post(i, author="alice"):
    return {"id": f"p{i}", "title": "", "content": f"question {i} about coupling", "author": {"name": author}}


# ── Poll cycle ───────────────────────────────────────────────────────────────


def test_poll_answers_and_saves(tmp_dir):
    board = FakeBoard(posts=[_post(1), _post(2, author="dae-bot")])
    agent = _agent(tmp_dir, board, ["Sure. <salient>coupling aligns phases</salient>"])

    answered = agent.poll()

    assert answered == 1
    assert board.sent == [("p1", "Sure. coupling aligns phases")]
    assert agent.meta.total_exchanges == 1
    assert agent.meta.poll_count == 1
    assert agent.meta.last_poll_time is not None
    assert os.path.exists(agent.config.state_path)
    assert os.path.exists(agent.config.meta_path)

    state = StatePersistence.load(agent.config.state_path)
    assert len(state.system.conscious_episode.neighborhoods) == 1
    assert len(state.conversation_history) == 2


def test_poll_passes_last_poll_time(tmp_dir):
    board = FakeBoard()
    agent = _agent(tmp_dir, board, [])
    agent.poll()
    first_poll_time = agent.meta.last_poll_time
    agent.poll()
    assert board.since_seen[0] is None
    assert board.since_seen[1] == first_poll_time


def test_quiet_poll_does_not_save(tmp_dir):
    agent = _agent(tmp_dir, FakeBoard(), [])
    assert agent.poll() == 0
    assert not os.path.exists(agent.config.state_path)


def test_reply_failure_is_skipped(tmp_dir):
    board = FakeBoard(posts=[_post(1)], fail_replies=True)
    agent = _agent(tmp_dir, board, ["reply"])

    assert agent.poll() == 0
    assert agent.meta.total_exchanges == 0
    # The exchange itself was still remembered
    assert len(agent.bridge.conversation_history) == 2


def test_unexpected_error_skips_interaction(tmp_dir):
    board = FakeBoard(posts=[_post(1), _post(2)])
    agent = _agent(tmp_dir, board, [])
    agent.bridge.llm_client = FlakyClient(["second answer"])

    assert agent.poll() == 1
    assert board.sent == [("p2", "second answer")]
    assert agent.meta.total_exchanges == 1
    assert os.path.exists(agent.config.state_path)


def test_ollama_bad_body_does_not_stop_poll(tmp_dir):
    board = FakeBoard(posts=[_post(1), _post(2)])
    agent = _agent(tmp_dir, board, [])
    agent.bridge.llm_client = OllamaClient(session=JsonSession({}))

    assert agent.poll() == 2
    assert board.sent == [("p1", ""), ("p2", "")]
    assert os.path.exists(agent.config.state_path)


def test_run_survives_poll_failure(tmp_dir):
    class BrokenBoard(FakeBoard):
        def get_new_posts(self, since):
            raise KeyError("posts")

    agent = _agent(tmp_dir, BrokenBoard(), [])
    agent.run(once=True)
    assert agent.meta.poll_count == 1


def test_run_once(tmp_dir):
    board = FakeBoard(posts=[_post(1)])
    agent = _agent(tmp_dir, board, ["answer"])
    agent.run(once=True)
    assert board.sent == [("p1", "answer")]


def test_episode_rollover_through_agent(tmp_dir):
    board = FakeBoard(posts=[_post(1), _post(2)])
    agent = _agent(tmp_dir, board, ["a1", "a2"])
    agent.bridge.config.episode_threshold = 2
    agent.poll()
    assert [e.name for e in agent.system.episodes] == ["Notes", "Moltbook 2"]


# ── Startup ──────────────────────────────────────────────────────────────────


def test_load_or_create_fresh(tmp_dir):
    system, history, buffer, meta = load_or_create(_config(tmp_dir))
    assert system.N == 0
    assert history == [] and buffer == []
    assert meta == AgentMeta()


def test_load_or_create_existing(tmp_dir):
    config = _config(tmp_dir)
    saved = DAESystem()
    saved.add_episode(ingest_text("Saved words here."))
    StatePersistence.save(saved, config.state_path, [{"role": "user", "content": "x"}], [["x", "y"]])
    StatePersistence.save_meta(AgentMeta(poll_count=9), config.meta_path)

    system, history, buffer, meta = load_or_create(config)
    assert system.N == 3
    assert history == [{"role": "user", "content": "x"}]
    assert buffer == [["x", "y"]]
    assert meta.poll_count == 9


def test_load_or_create_corrupt_starts_fresh(tmp_dir):
    config = _config(tmp_dir)
    with open(config.state_path, "w") as f:
        f.write("{broken")
    system, _, _, meta = load_or_create(config)
    assert system.N == 0
    assert meta.poll_count == 0


def test_load_or_create_bad_phase_starts_fresh(tmp_dir):
    config = _config(tmp_dir)
    saved = DAESystem()
    saved.add_episode(ingest_text("Saved words here."))
    doc = StatePersistence.to_document(saved)
    doc["system"]["episodes"][0]["neighborhoods"][0]["occurrences"][0]["phasor"] = "abc"
    with open(config.state_path, "w") as f:
        json.dump(doc, f)

    system, _, _, _ = load_or_create(config)
    assert system.N == 0


# ── Import tool ──────────────────────────────────────────────────────────────


def test_import_state(tmp_dir):
    system = DAESystem(agent_name="imported")
    system.add_episode(ingest_text("Exported memory content."))
    system.add_to_conscious("keep this")
    export_path = os.path.join(tmp_dir, "export.json")
    with open(export_path, "w") as f:
        json.dump(StatePersistence.to_document(system), f)

    state_dir = os.path.join(tmp_dir, "state")
    assert import_state(export_path, state_dir) == 0

    restored = StatePersistence.load(os.path.join(state_dir, "dae-state.json")).system
    assert restored.N == system.N
    assert restored.agent_name == "imported"

    meta = StatePersistence.load_meta(os.path.join(state_dir, "meta.json"))
    assert meta.imported_from == export_path
    assert meta.imported_at is not None


def test_import_rejects_invalid(tmp_dir):
    bad = os.path.join(tmp_dir, "bad.json")
    with open(bad, "w") as f:
        json.dump({"version": "1.0"}, f)
    assert import_state(bad, os.path.join(tmp_dir, "state")) == 1
    assert not os.path.exists(os.path.join(tmp_dir, "state"))

    assert import_state(os.path.join(tmp_dir, "missing.json"), tmp_dir) == 1
