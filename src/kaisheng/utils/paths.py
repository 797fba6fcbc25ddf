from pathlib import Path

from platformdirs import PlatformDirs

APP_DIRS = PlatformDirs(appname="kaisheng", appauthor=False)


def get_default_data_dir() -> Path:
    """Per-user data directory (schedules, limits, usage, state)."""
    return APP_DIRS.user_data_path


def get_default_log_dir() -> Path:
    return APP_DIRS.user_log_path
