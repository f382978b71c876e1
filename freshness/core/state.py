"""Persistence helpers for fan-out run state."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from freshness.core.config import Config

DEFAULT_STATE_PATH = Path("data/system/last_fanout.json")


def state_path() -> Path:
    return Path(Config.get("fanout", "state_path", default=str(DEFAULT_STATE_PATH)))


def load_last_run(path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Return the most recent recorded fan-out run state, if available."""

    path = path or state_path()
    if not path.exists():
        return None

    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except (json.JSONDecodeError, OSError):
        return None


def write_last_run(payload: Dict[str, Any], path: Optional[Path] = None) -> Dict[str, Any]:
    """Atomically persist fan-out run metadata and return the stored payload."""

    path = path or state_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    stored = {
        **payload,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    fd, tmp_path = tempfile.mkstemp(prefix="fanout_state_", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
            json.dump(stored, tmp_file, indent=2, sort_keys=True, default=str)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)

    return stored


__all__ = ["load_last_run", "write_last_run", "state_path", "DEFAULT_STATE_PATH"]
