"""Filesystem and date helpers shared across wabot."""

import os
import re
from datetime import datetime
from pathlib import Path

PRIMARY_DATA_DIR = ".wabot"
DATA_DIR_ENV = "WABOT_DATA_DIR"


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """
    Resolve the active data directory.

    `WABOT_DATA_DIR` overrides the default `~/.wabot`. Relative overrides are
    resolved against the home directory so separate profiles stay side by side.
    """
    raw = (os.environ.get(DATA_DIR_ENV) or "").strip()
    if raw:
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = Path.home() / candidate
    else:
        candidate = Path.home() / PRIMARY_DATA_DIR
    return ensure_dir(candidate)


def get_workspace_path(workspace: str | None = None) -> Path:
    """Expand and create the workspace directory."""
    path = Path(workspace).expanduser() if workspace else get_data_path() / "workspace"
    return ensure_dir(path)


def today_date(now: datetime | None = None) -> str:
    """Local calendar day as YYYY-MM-DD."""
    return (now or datetime.now()).strftime("%Y-%m-%d")


def safe_filename(name: str) -> str:
    """Replace characters that are unsafe in file names."""
    cleaned = re.sub(r"[^\w.@+-]+", "_", (name or "").strip())
    return cleaned.strip("._") or "unknown"
