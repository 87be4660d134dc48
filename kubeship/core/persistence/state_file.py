"""
State file persistence — atomic read/write for DeployState.

State is stored as JSON in .kubeship/state.json. Writes go to a temp
file in the same directory and are renamed into place, so a crash
mid-write never leaves a truncated file.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from kubeship.core.models.state import DeployState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".kubeship"
DEFAULT_STATE_FILE = "state.json"


def default_state_path(project_root: Path) -> Path:
    """Get the default state file path for a project."""
    return project_root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> DeployState:
    """Load deploy state from a JSON file.

    Returns a fresh DeployState when the file is missing or unreadable.
    """
    if not path.is_file():
        logger.debug("No state file at %s — starting fresh", path)
        return DeployState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = DeployState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return DeployState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return DeployState()


def save_state(state: DeployState, path: Path) -> None:
    """Save deploy state to a JSON file (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s", path)
        raise
