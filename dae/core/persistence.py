# ═══════════════════════════════════════════════════════════════════════════════
# PART 8: PERSISTENCE
# Versioned state document with explicit default-filling on load
# ═══════════════════════════════════════════════════════════════════════════════

"""
The whole manifold serializes to one JSON document:

    { version, timestamp,
      system: { episodes, consciousEpisode, N, totalActivation, agentName },
      conversationHistory, conversationBuffer }

Older exports may lack activationCount or store the phase as "theta"; those
are filled explicitly. Missing structural fields are rejected outright.

Writes go to a temp file and are swapped into place. The previous good file
is kept as <name>.bak so a crash mid-write never costs more than one poll.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from dae.core.memory import Episode, Neighborhood, Occurrence
from dae.core.manifold import Quaternion
from dae.core.phasor import Phasor
from dae.core.system import DAESystem


logger = logging.getLogger(__name__)

STATE_VERSION = "1.0"
SUPPORTED_MAJOR_VERSIONS = ("0", "1")

STATE_FILENAME = "dae-state.json"
META_FILENAME = "meta.json"
BACKUP_SUFFIX = ".bak"


# ── Exceptions ───────────────────────────────────────────────────────────────


class PersistenceError(Exception):
    """Base class for persistence errors."""
    pass


class StateCorruptionError(PersistenceError):
    """Raised when saved state is malformed or missing required fields."""
    pass


# ── Result / Info Dataclasses ────────────────────────────────────────────────


@dataclass
class LoadedState:
    system: DAESystem
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    conversation_buffer: List[List[str]] = field(default_factory=list)
    version: str = STATE_VERSION
    timestamp: Optional[str] = None
    source_path: Optional[str] = None


@dataclass
class SaveResult:
    path: str
    timestamp: str
    size_bytes: int
    n_occurrences: int
    backed_up: bool


@dataclass
class VerificationResult:
    valid: bool
    version: str = ""
    n_occurrences: int = 0
    n_episodes: int = 0
    error: Optional[str] = None


@dataclass
class AgentMeta:
    last_poll_time: Optional[str] = None
    total_exchanges: int = 0
    poll_count: int = 0
    imported_from: Optional[str] = None
    imported_at: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "lastPollTime": self.last_poll_time,
            "totalExchanges": self.total_exchanges,
            "pollCount": self.poll_count,
        }
        if self.imported_from:
            d["importedFrom"] = self.imported_from
            d["importedAt"] = self.imported_at
        return d

    @classmethod
    def from_dict(cls, d: dict) -> AgentMeta:
        return cls(
            last_poll_time=d.get("lastPollTime"),
            total_exchanges=d.get("totalExchanges", 0) or 0,
            poll_count=d.get("pollCount", 0) or 0,
            imported_from=d.get("importedFrom"),
            imported_at=d.get("importedAt"),
        )


# ── Persistence Class ────────────────────────────────────────────────────────


class _NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


class StatePersistence:
    """
    Export/import of the full manifold.

    1. Serialization - live objects to JSON-safe dicts (to_document)
    2. Storage       - atomic write with last-known-good backup (save)
    3. Restoration   - schema check, default-filling, rebuild (load)
    """

    # ── Public API ───────────────────────────────────────────────────────

    @classmethod
    def to_document(
        cls,
        system: DAESystem,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        conversation_buffer: Optional[List[List[str]]] = None,
    ) -> dict:
        return {
            "version": STATE_VERSION,
            "timestamp": datetime.now().isoformat(),
            "system": cls._system_to_dict(system),
            "conversationHistory": list(conversation_history or []),
            "conversationBuffer": [list(pair) for pair in (conversation_buffer or [])],
        }

    @classmethod
    def from_document(cls, document: Any) -> LoadedState:
        """
        Rebuild state from a parsed document.

        Raises:
            StateCorruptionError: Missing or malformed structural fields.
        """
        if not isinstance(document, dict):
            raise StateCorruptionError("State document must be a JSON object")

        version = str(document.get("version") or STATE_VERSION)
        if version.split(".")[0] not in SUPPORTED_MAJOR_VERSIONS:
            raise StateCorruptionError(f"Unsupported version: {version}")

        system_dict = cls._require(document, "system", "document")
        system = cls._dict_to_system(system_dict)

        return LoadedState(
            system=system,
            conversation_history=list(document.get("conversationHistory") or []),
            conversation_buffer=[list(p) for p in (document.get("conversationBuffer") or [])],
            version=version,
            timestamp=document.get("timestamp"),
        )

    @classmethod
    def save(
        cls,
        system: DAESystem,
        path: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        conversation_buffer: Optional[List[List[str]]] = None,
    ) -> SaveResult:
        """Write atomically, keeping the previous file as a backup."""
        document = cls.to_document(system, conversation_history, conversation_buffer)

        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        backed_up = False
        if file_path.exists():
            shutil.copy2(file_path, cls.backup_path(file_path))
            backed_up = True

        tmp_path = file_path.with_name(file_path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(document, f, cls=_NumpyEncoder)
        os.replace(tmp_path, file_path)

        return SaveResult(
            path=str(file_path),
            timestamp=document["timestamp"],
            size_bytes=file_path.stat().st_size,
            n_occurrences=document["system"]["N"],
            backed_up=backed_up,
        )

    @classmethod
    def load(cls, path: str, fallback: bool = True) -> LoadedState:
        """
        Load state, falling back to the last-known-good backup.

        Raises:
            FileNotFoundError: Neither the file nor its backup exists.
            StateCorruptionError: The file (and backup, if tried) is invalid.
        """
        file_path = Path(path)
        try:
            return cls._load_file(file_path)
        except (StateCorruptionError, FileNotFoundError) as primary_error:
            backup = cls.backup_path(file_path)
            if not fallback or not backup.exists():
                raise
            logger.warning(f"State file {file_path} unusable ({primary_error}), trying {backup}")
            return cls._load_file(backup)

    @classmethod
    def verify_file(cls, path: str) -> VerificationResult:
        """Check a state file without raising."""
        try:
            state = cls._load_file(Path(path))
        except (PersistenceError, OSError) as e:
            return VerificationResult(valid=False, error=str(e))
        return VerificationResult(
            valid=True,
            version=state.version,
            n_occurrences=state.system.N,
            n_episodes=len(state.system.episodes),
        )

    @staticmethod
    def backup_path(path: Path) -> Path:
        return path.with_name(path.name + BACKUP_SUFFIX)

    # ── Agent meta ───────────────────────────────────────────────────────

    @classmethod
    def save_meta(cls, meta: AgentMeta, path: str) -> None:
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w") as f:
            json.dump(meta.to_dict(), f)

    @classmethod
    def load_meta(cls, path: str) -> AgentMeta:
        """Missing or unreadable meta is not fatal: counters restart."""
        file_path = Path(path)
        if not file_path.exists():
            return AgentMeta()
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return AgentMeta.from_dict(json.load(f))
        except (json.JSONDecodeError, UnicodeDecodeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable meta file {file_path}: {e}")
            return AgentMeta()

    # ── Internal ─────────────────────────────────────────────────────────

    @classmethod
    def _load_file(cls, path: Path) -> LoadedState:
        with open(path, "r", encoding="utf-8") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise StateCorruptionError(f"Invalid JSON in {path}: {e}") from e
            except UnicodeDecodeError as e:
                raise StateCorruptionError(f"State file {path} is not UTF-8: {e}") from e
        state = cls.from_document(document)
        state.source_path = str(path)
        return state

    @staticmethod
    def _require(d: Any, key: str, where: str) -> Any:
        if not isinstance(d, dict) or d.get(key) is None:
            raise StateCorruptionError(f"Missing required field '{key}' in {where}")
        return d[key]

    @classmethod
    def _quaternion(cls, value: Any, where: str) -> Quaternion:
        if not isinstance(value, (list, tuple)) or len(value) != 4:
            raise StateCorruptionError(f"Expected [w, x, y, z] in {where}, got {value!r}")
        try:
            return Quaternion.from_array(value)
        except (TypeError, ValueError) as e:
            raise StateCorruptionError(f"Non-numeric quaternion in {where}: {value!r}") from e

    # ── Serialization Helpers ────────────────────────────────────────────

    @classmethod
    def _system_to_dict(cls, system: DAESystem) -> dict:
        return {
            "episodes": [cls._episode_to_dict(e) for e in system.episodes],
            "consciousEpisode": cls._episode_to_dict(system.conscious_episode),
            "N": system.N,
            "totalActivation": system.total_activation,
            "agentName": system.agent_name,
        }

    @classmethod
    def _episode_to_dict(cls, episode: Episode) -> dict:
        return {
            "name": episode.name,
            "isConscious": episode.is_conscious,
            "id": episode.id,
            "timestamp": episode.timestamp,
            "neighborhoods": [cls._neighborhood_to_dict(n) for n in episode.neighborhoods],
        }

    @classmethod
    def _neighborhood_to_dict(cls, neighborhood: Neighborhood) -> dict:
        return {
            "seed": neighborhood.seed.to_list(),
            "id": neighborhood.id,
            "sourceText": neighborhood.text,
            "occurrences": [
                cls._occurrence_to_dict(o, neighborhood.id) for o in neighborhood.occurrences
            ],
        }

    @classmethod
    def _occurrence_to_dict(cls, occ: Occurrence, neighborhood_id: str) -> dict:
        return {
            "word": occ.word,
            "position": occ.position.to_list(),
            "phasor": float(occ.phasor.theta),
            "activationCount": occ.activation_count,
            "neighborhoodId": neighborhood_id,
        }

    @classmethod
    def _dict_to_system(cls, d: dict) -> DAESystem:
        episodes = cls._require(d, "episodes", "system")
        conscious = cls._require(d, "consciousEpisode", "system")
        if not isinstance(episodes, list):
            raise StateCorruptionError("system.episodes must be a list")

        system = DAESystem(agent_name=d.get("agentName") or "DAE")
        for i, e in enumerate(episodes):
            system.episodes.append(cls._dict_to_episode(e, f"episodes[{i}]"))
        system.conscious_episode = cls._dict_to_episode(conscious, "consciousEpisode")
        system.conscious_episode.is_conscious = True
        system.index.invalidate()
        return system

    @classmethod
    def _dict_to_episode(cls, d: dict, where: str) -> Episode:
        if not isinstance(d, dict):
            raise StateCorruptionError(f"{where} must be an object")
        kwargs = {
            "name": d.get("name") or "Untitled",
            "is_conscious": bool(d.get("isConscious", False)),
        }
        if d.get("id"):
            kwargs["id"] = d["id"]
        if d.get("timestamp"):
            kwargs["timestamp"] = d["timestamp"]
        episode = Episode(**kwargs)
        for i, n in enumerate(d.get("neighborhoods") or []):
            episode.neighborhoods.append(cls._dict_to_neighborhood(n, f"{where}.neighborhoods[{i}]"))
        return episode

    @classmethod
    def _dict_to_neighborhood(cls, d: dict, where: str) -> Neighborhood:
        seed = cls._quaternion(cls._require(d, "seed", where), f"{where}.seed")
        kwargs = {"seed": seed, "text": d.get("sourceText") or ""}
        if d.get("id"):
            kwargs["id"] = d["id"]
        neighborhood = Neighborhood(**kwargs)
        for i, o in enumerate(d.get("occurrences") or []):
            neighborhood.occurrences.append(
                cls._dict_to_occurrence(o, neighborhood.id, f"{where}.occurrences[{i}]")
            )
        return neighborhood

    @classmethod
    def _dict_to_occurrence(cls, d: dict, neighborhood_id: str, where: str) -> Occurrence:
        word = cls._require(d, "word", where)
        position = cls._quaternion(cls._require(d, "position", where), f"{where}.position")
        # "theta" is the pre-0.7 name of the phase field. neighborhoodId always
        # follows the owning neighborhood; the tree is authoritative.
        theta = d.get("phasor")
        if theta is None:
            theta = d.get("theta", 0.0)
        try:
            phase = float(theta)
            count = int(d.get("activationCount") or 0)
        except (TypeError, ValueError) as e:
            raise StateCorruptionError(f"Non-numeric phasor or activationCount in {where}") from e
        return Occurrence(
            word=str(word),
            position=position,
            phasor=Phasor(phase),
            activation_count=count,
            neighborhood_id=neighborhood_id,
        )
