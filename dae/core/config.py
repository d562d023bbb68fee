# ═══════════════════════════════════════════════════════════════════════════════
# AGENT CONFIGURATION
# All secrets from the environment only
# ═══════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dae.core.persistence import META_FILENAME, STATE_FILENAME


DEFAULT_MODELS = {
    "claude": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "grok": "grok-3",
    "gemini": "gemini-2.0-flash",
    "ollama": "llama2",
}

# Providers that run without an API key
KEYLESS_PROVIDERS = ("mock", "ollama")


class ConfigError(Exception):
    """Raised when required environment variables are missing."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required environment variables: {', '.join(missing)}")


def redact(key: Optional[str]) -> str:
    """Show only the ends of a secret."""
    if not key or len(key) < 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


@dataclass
class AgentConfig:
    """Configuration for the polling agent."""
    # Board
    moltbook_api_url: str = "https://www.moltbook.com/api/v1"
    moltbook_api_key: Optional[str] = None
    agent_name: str = "dae-agent"
    submolt: str = "general"

    # LLM backend
    llm_provider: str = "claude"
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None

    # Behavior
    poll_interval_ms: int = 30000
    heartbeat_every: int = 50            # every N polls, 0 disables
    episode_threshold: int = 5           # exchanges before an episode closes
    conversation_window: int = 5         # exchanges sent to the LLM
    max_response_len: int = 2000
    state_dir: str = ".dae-state"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> AgentConfig:
        env = os.environ if environ is None else environ
        provider = env.get("LLM_PROVIDER", "claude").lower()
        return cls(
            moltbook_api_url=env.get("MOLTBOOK_API_URL", cls.moltbook_api_url),
            moltbook_api_key=env.get("MOLTBOOK_API_KEY") or None,
            agent_name=env.get("DAE_AGENT_NAME", cls.agent_name),
            submolt=env.get("MOLTBOOK_SUBMOLT", cls.submolt),
            llm_provider=provider,
            llm_api_key=env.get("LLM_API_KEY") or None,
            llm_model=env.get("LLM_MODEL") or DEFAULT_MODELS.get(provider),
            poll_interval_ms=int(env.get("POLL_INTERVAL_MS", cls.poll_interval_ms)),
            heartbeat_every=int(env.get("HEARTBEAT_EVERY", cls.heartbeat_every)),
            episode_threshold=int(env.get("EPISODE_THRESHOLD", cls.episode_threshold)),
            conversation_window=int(env.get("CONVERSATION_WINDOW", cls.conversation_window)),
            max_response_len=int(env.get("MAX_RESPONSE_LEN", cls.max_response_len)),
            state_dir=env.get("DAE_STATE_DIR", cls.state_dir),
        )

    def validate(self, seed_mode: bool = False) -> None:
        """Raise ConfigError listing every missing variable."""
        missing = []
        if not self.moltbook_api_key:
            missing.append("MOLTBOOK_API_KEY")
        if not seed_mode and not self.llm_api_key and self.llm_provider not in KEYLESS_PROVIDERS:
            missing.append("LLM_API_KEY")
        if missing:
            raise ConfigError(missing)

    @property
    def state_path(self) -> str:
        return os.path.join(self.state_dir, STATE_FILENAME)

    @property
    def meta_path(self) -> str:
        return os.path.join(self.state_dir, META_FILENAME)

    def summary(self, seed_mode: bool = False) -> List[str]:
        """Redacted lines for startup logging."""
        lines = [
            f"Mode: {'SEED (read-only, no LLM)' if seed_mode else 'AGENT (read + respond)'}",
            f"Agent: {self.agent_name}",
        ]
        if not seed_mode:
            lines.append(f"LLM: {self.llm_provider} ({self.llm_model})")
        lines.append(f"Moltbook key: {redact(self.moltbook_api_key)}")
        if not seed_mode:
            lines.append(f"LLM key: {redact(self.llm_api_key)}")
        lines.append(
            f"Poll: {self.poll_interval_ms}ms | Episodes at {self.episode_threshold} exchanges"
        )
        return lines
