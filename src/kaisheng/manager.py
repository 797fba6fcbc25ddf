import json
import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from loguru import logger
from pydantic import ValidationError

from kaisheng import engine
from kaisheng.schema import DowntimePolicy, DowntimeSchedule
from kaisheng.settings import settings

TransitionCallback = Callable[[DowntimeSchedule | None, DowntimeSchedule | None], None]
Enforcer = Callable[[DowntimePolicy], None]


class ScheduleManager:
    """Manages persistence and retrieval of downtime schedules."""

    def __init__(self):
        self.schedules_file = settings.data_dir / "schedules.json"
        self.schedules: list[DowntimeSchedule] = []
        self._last_schedules_mtime: float | None = None
        self.reload()

    def reload(self):
        """Re-reads schedules.json if it changed since the last load."""
        if not self.schedules_file.exists():
            self._last_schedules_mtime = None
            self.schedules = []
            return

        current_mtime = self.schedules_file.stat().st_mtime
        if self._last_schedules_mtime == current_mtime:
            return

        try:
            with open(self.schedules_file) as f:
                data = json.load(f)
            self.schedules = [DowntimeSchedule(**s) for s in data]
            self._last_schedules_mtime = current_mtime
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Failed to load schedules: {e}")

    def save_schedules(self):
        """Saves current schedules to JSON."""
        try:
            settings.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.schedules_file, "w") as f:
                json.dump(
                    [s.model_dump(mode="json") for s in self.schedules],
                    f,
                    indent=4,
                )
            self._last_schedules_mtime = self.schedules_file.stat().st_mtime
        except OSError as e:
            logger.error(f"Failed to save schedules: {e}")

    def add_schedule(
        self,
        name: str,
        start_time: str,
        end_time: str,
        recurring_days: list[str] | None = None,
        blocked_apps: list[str] | None = None,
        block_entire_device: bool = False,
    ) -> DowntimeSchedule:
        """Adds a new schedule and saves it. Listing weekdays makes it recurring."""
        if not block_entire_device and not blocked_apps:
            raise ValueError("A schedule must block the device or at least one app")

        schedule = DowntimeSchedule(
            name=name,
            start_time=start_time,
            end_time=end_time,
            is_recurring=bool(recurring_days),
            recurring_days=recurring_days or [],
            blocked_apps=blocked_apps or [],
            block_entire_device=block_entire_device,
        )
        if schedule.start_time == schedule.end_time:
            raise ValueError("Start and end time must differ")

        self.schedules.append(schedule)
        self.save_schedules()
        logger.info(f"Added downtime schedule '{schedule.name}' ({schedule.id})")
        return schedule

    def get_schedule(self, schedule_id: str | UUID) -> DowntimeSchedule:
        for s in self.schedules:
            if str(s.id) == str(schedule_id):
                return s
        raise LookupError(f"No schedule with id {schedule_id}")

    def remove_schedule(self, schedule_id: str | UUID):
        """Removes a schedule by ID."""
        schedule = self.get_schedule(schedule_id)
        self.schedules = [s for s in self.schedules if s.id != schedule.id]
        self.save_schedules()
        logger.info(f"Removed downtime schedule '{schedule.name}'")

    def update_schedule(self, schedule: DowntimeSchedule):
        """Updates an existing schedule."""
        for i, s in enumerate(self.schedules):
            if s.id == schedule.id:
                self.schedules[i] = schedule
                self.save_schedules()
                return
        raise LookupError(f"No schedule with id {schedule.id}")

    def set_enabled(self, schedule_id: str | UUID, enabled: bool) -> DowntimeSchedule:
        schedule = self.get_schedule(schedule_id)
        updated = schedule.model_copy(update={"enabled": enabled})
        self.update_schedule(updated)
        return updated

    def resolve_policy(self, at: datetime | None = None) -> DowntimePolicy:
        return engine.resolve_policy(self.schedules, at)

    def next_start(
        self, at: datetime | None = None
    ) -> tuple[DowntimeSchedule, datetime] | None:
        return engine.next_start(self.schedules, at)


class DowntimeMonitor:
    """Re-evaluates the downtime policy periodically and reports transitions."""

    def __init__(
        self,
        schedule_manager: ScheduleManager,
        check_interval_seconds: int | None = None,
        on_transition: TransitionCallback | None = None,
        enforcer: Enforcer | None = None,
    ):
        self.schedule_manager = schedule_manager
        self.check_interval_seconds = (
            check_interval_seconds or settings.check_interval_seconds
        )
        self.on_transition = on_transition
        self.enforcer = enforcer
        self.policy: DowntimePolicy | None = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

    @property
    def in_downtime(self) -> bool:
        return self.policy is not None and self.policy.in_downtime

    @property
    def active_schedule(self) -> DowntimeSchedule | None:
        return self.policy.schedule if self.policy else None

    def get_status(self):
        """Returns the current status of the monitor."""
        if not self._running:
            state = "IDLE"
        elif self.in_downtime:
            state = "DOWNTIME"
        else:
            state = "MONITORING"

        schedule = self.active_schedule
        return {
            "state": state,
            "active_schedule": schedule.name if schedule else None,
            "time_remaining": self.policy.seconds_remaining if self.policy else 0,
        }

    def check(self, now: datetime | None = None) -> DowntimePolicy:
        """Evaluates the policy once, firing transition and enforcement hooks."""
        with self._lock:
            self.schedule_manager.reload()
            policy = self.schedule_manager.resolve_policy(now)
            previous = self.active_schedule
            current = policy.schedule
            self.policy = policy

        previous_id = previous.id if previous else None
        current_id = current.id if current else None
        if previous_id != current_id:
            self._log_transition(previous, current, policy)
            if self.on_transition:
                self.on_transition(previous, current)

        if policy.in_downtime and self.enforcer:
            self.enforcer(policy)
        return policy

    def _log_transition(
        self,
        previous: DowntimeSchedule | None,
        current: DowntimeSchedule | None,
        policy: DowntimePolicy,
    ):
        if current is None:
            logger.info("Downtime ended. Apps are now available.")
            return

        blocked = (
            "all non-essential apps"
            if current.block_entire_device
            else ", ".join(current.blocked_apps)
        )
        verb = "started" if previous is None else "switched to"
        logger.info(
            f"Downtime {verb} '{current.name}' until "
            f"{policy.ends_at:%H:%M}. Blocked: {blocked}"
        )

    def start(self):
        """Starts monitoring in a background thread."""
        if self._running:
            logger.warning("DowntimeMonitor is already running.")
            return

        logger.info(f"Starting DowntimeMonitor: Interval={self.check_interval_seconds}s")
        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Stops monitoring."""
        if not self._running:
            return

        logger.info("Stopping DowntimeMonitor...")
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self._running = False
        logger.info("DowntimeMonitor stopped.")

    def _run(self):
        """Main loop running in the thread."""
        try:
            while not self._stop_event.is_set():
                try:
                    self.check()
                except Exception as e:
                    logger.exception(f"Error while checking downtime: {e}")
                if self._stop_event.wait(timeout=self.check_interval_seconds):
                    return
        finally:
            self._running = False
