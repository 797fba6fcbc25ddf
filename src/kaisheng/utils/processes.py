import subprocess
from typing import Iterable

import psutil
from loguru import logger

from kaisheng.engine import is_app_blocked
from kaisheng.schema import DowntimePolicy


def kill_blocked_processes(
    policy: DowntimePolicy, critical_apps: Iterable[str] = ()
) -> set[str]:
    """Kills running processes whose name is blocked by a partial downtime."""
    killed: set[str] = set()
    if not policy.in_downtime or policy.block_entire_device:
        return killed

    critical = list(critical_apps)
    for proc in psutil.process_iter(["name"]):
        try:
            name = proc.info["name"]
            if name and is_app_blocked(policy, name, critical):
                logger.info(f"Killing {name} (PID: {proc.pid})")
                proc.kill()
                killed.add(name)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return killed


def is_screen_locked() -> bool:
    """Checks the logind LockedHint for the current session."""
    try:
        result = subprocess.run(
            ["loginctl", "show-session", "self", "-p", "LockedHint", "--value"],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False
    return result.stdout.strip() == "yes"


_screen_lock_command_cache: list[str] | None = None

LOCK_COMMANDS = (
    ["loginctl", "lock-session"],
    ["xdg-screensaver", "lock"],
)


def lock_screen() -> bool:
    """Locks the screen with the first available command. Returns False if none exists."""
    global _screen_lock_command_cache
    logger.debug("Attempting to lock screen...")

    commands = list(LOCK_COMMANDS)
    if _screen_lock_command_cache:
        commands.insert(0, _screen_lock_command_cache)

    for command in commands:
        try:
            subprocess.run(command, check=False)
        except FileNotFoundError:
            if command == _screen_lock_command_cache:
                _screen_lock_command_cache = None
            continue
        _screen_lock_command_cache = command
        return True

    logger.warning("No screen lock command available.")
    return False


def enforce_policy(policy: DowntimePolicy, critical_apps: Iterable[str] = ()):
    """Applies a downtime policy: device-wide locks the screen, partial kills apps."""
    if not policy.in_downtime:
        return
    if policy.block_entire_device:
        if not is_screen_locked():
            lock_screen()
    else:
        kill_blocked_processes(policy, critical_apps)
