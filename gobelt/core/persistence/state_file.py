"""
Update-check state on disk — ``state.json`` under the per-user data dir.

Layout::

    {
      "last_check": 1739648400,
      "update_info": {
        "glow": {"name": "glow", "installed_version": "v1.5.1",
                 "latest_version": "v2.0.0", "has_update": true}
      }
    }

Reading is forgiving: a missing, unreadable or malformed file counts as
"never checked".  Writing goes through a temp file in the same directory
and an ``os.replace``, so readers never see a half-written document.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError

from gobelt.core.models.update import CheckState

logger = logging.getLogger(__name__)


def load_state(path: Path) -> CheckState:
    """Persisted check state, or an empty one if there is nothing usable."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No state file at %s — never checked", path)
        return CheckState()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot read state file %s: %s", path, e)
        return CheckState()

    try:
        state = CheckState.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.warning("Ignoring malformed state file %s: %s", path, e)
        return CheckState()

    logger.debug(
        "Loaded state from %s (last_check=%d, %d entries)",
        path, state.last_check, len(state.update_info),
    )
    return state


def save_state(state: CheckState, path: Path) -> None:
    """Atomically replace ``path`` with ``state``.

    Raises:
        OSError: The directory cannot be created or the file written.
    """
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, content)
    except OSError as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with open(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
