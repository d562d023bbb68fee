#!/usr/bin/env python3
"""
Import a DAE state export into the agent's state directory.

Usage:
    python import_state.py <path-to-dae-export.json>

    # Custom state directory:
    DAE_STATE_DIR=/var/lib/dae python import_state.py export.json
"""

import argparse
import json
import os
import sys
from datetime import datetime

from dae.core.persistence import (
    META_FILENAME,
    STATE_FILENAME,
    AgentMeta,
    StateCorruptionError,
    StatePersistence,
)


def import_state(input_path: str, state_dir: str) -> int:
    """Validate and install an export. Returns a process exit code."""
    if not os.path.exists(input_path):
        print(f"File not found: {input_path}")
        return 1

    try:
        with open(input_path, "r") as f:
            data = json.load(f)
        state = StatePersistence.from_document(data)
    except (json.JSONDecodeError, StateCorruptionError) as e:
        print(f"Not a valid DAE state export: {e}")
        return 1

    system = state.system
    print("Import validated:")
    print(f"  Version: {data.get('version') or 'unknown'}")
    print(f"  Exported: {data.get('timestamp') or 'unknown'}")
    print(f"  N: {system.N}")
    print(f"  Episodes: {len(system.episodes)}")
    print(f"  Conscious neighborhoods: {len(system.conscious_episode.neighborhoods)}")
    print(f"  Agent name: {system.agent_name}")

    StatePersistence.save(
        system,
        os.path.join(state_dir, STATE_FILENAME),
        state.conversation_history,
        state.conversation_buffer,
    )
    StatePersistence.save_meta(
        AgentMeta(imported_from=input_path, imported_at=datetime.now().isoformat()),
        os.path.join(state_dir, META_FILENAME),
    )

    print(f"\nState written to {state_dir}/")
    print("Ready to run: python agent.py")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Import a DAE state export")
    parser.add_argument("input", help="Path to the exported state JSON")
    parser.add_argument(
        "--state-dir",
        default=os.environ.get("DAE_STATE_DIR", ".dae-state"),
        help="Target state directory (default: $DAE_STATE_DIR or .dae-state)",
    )
    args = parser.parse_args()
    sys.exit(import_state(args.input, args.state_dir))


if __name__ == "__main__":
    main()
