import json
import os
from datetime import datetime

from loguru import logger

from kaisheng.settings import settings

_last_written_state: dict | None = None


def write_state(active_downtime: dict | None = None):
    """Writes the watcher state to a file for the 'status' command."""
    global _last_written_state
    state = {
        "pid": os.getpid(),
        "last_update": datetime.now().isoformat(timespec="seconds"),
        "active_downtime": active_downtime,
    }

    if state == _last_written_state:
        return

    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        with open(settings.state_file, "w") as f:
            json.dump(state, f, indent=4)
        _last_written_state = state
    except OSError as e:
        logger.error(f"Failed to write state file: {e}")


def read_state() -> dict | None:
    """Returns the last written watcher state, or None if there is none."""
    if not settings.state_file.exists():
        return None
    try:
        with open(settings.state_file) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Ignoring unreadable state file: {e}")
        return None


def is_watcher_running() -> bool:
    """Checks if a watcher is running via state file and PID."""
    state = read_state()
    pid = state.get("pid") if state else None
    if not pid:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def cleanup_state():
    """Removes the state file when the watcher stops."""
    global _last_written_state
    _last_written_state = None
    if settings.state_file.exists():
        try:
            settings.state_file.unlink()
        except OSError as e:
            logger.error(f"Failed to remove state file: {e}")
