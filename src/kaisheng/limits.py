import json
from datetime import date, datetime, timedelta

from loguru import logger
from pydantic import ValidationError

from kaisheng.schema import AppCategory, AppLimit, AppUsage, LimitControl, UsageStats
from kaisheng.settings import settings


def _same_app(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


class LimitManager:
    """Manages per-app daily limits and the usage counted against them."""

    def __init__(
        self,
        max_app_limit_hours: int | None = None,
        warning_thresholds: list[int] | None = None,
    ):
        self.limits_file = settings.data_dir / "limits.json"
        self.usage_file = settings.data_dir / "usage.json"
        self.history_file = settings.data_dir / "history.json"
        self.control_file = settings.data_dir / "limit_control.json"
        self.max_app_limit_hours = max_app_limit_hours or settings.max_app_limit_hours
        self.warning_thresholds = sorted(
            warning_thresholds
            if warning_thresholds is not None
            else settings.limit_warning_thresholds
        )
        self.limits: list[AppLimit] = []
        self.usage: list[AppUsage] = []
        self.usage_date: date = date.today()
        self.control = LimitControl()
        self._load()
        # Usage left over from an earlier day never counts against today
        self.rollover()

    @property
    def max_limit_seconds(self) -> int:
        return self.max_app_limit_hours * 3600

    def _load(self):
        try:
            self.limits = [AppLimit(**item) for item in self._read_json(self.limits_file, [])]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load limits, starting without any: {e}")
            self.limits = []

        stored = self._read_json(self.usage_file, {})
        if stored:
            try:
                usage_date = date.fromisoformat(stored["date"])
                usage = [AppUsage(**item) for item in stored.get("usage", [])]
            except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
                logger.error(f"Failed to load usage, starting a fresh day: {e}")
            else:
                self.usage_date = usage_date
                self.usage = usage

        stored = self._read_json(self.control_file, {})
        if stored:
            try:
                self.control = LimitControl(**stored)
            except (TypeError, ValidationError) as e:
                logger.error(f"Failed to load limit controls: {e}")

    def _read_json(self, path, default):
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load {path.name}: {e}")
            return default

    def _write_json(self, path, data):
        try:
            settings.data_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(data, f, indent=4)
        except OSError as e:
            logger.error(f"Failed to save {path.name}: {e}")

    def save_limits(self):
        self._write_json(self.limits_file, [limit.model_dump(mode="json") for limit in self.limits])

    def save_usage(self):
        self._write_json(
            self.usage_file,
            {
                "date": self.usage_date.isoformat(),
                "usage": [u.model_dump(mode="json") for u in self.usage],
            },
        )

    def save_control(self):
        self._write_json(self.control_file, self.control.model_dump(mode="json"))

    # Limits

    def get_limit(self, app_name: str) -> AppLimit | None:
        return next((limit for limit in self.limits if _same_app(limit.app_name, app_name)), None)

    def category_for(self, app_name: str) -> AppCategory:
        limit = self.get_limit(app_name)
        return limit.category if limit else AppCategory.for_app(app_name)

    def add_limit(
        self,
        app_name: str,
        daily_limit: int,
        category: AppCategory | None = None,
    ) -> AppLimit:
        """
        Adds a limit, or replaces the ceiling of an existing one for the same app.

        Without an explicit category, well-known apps are categorised by name.
        """
        if daily_limit <= 0:
            raise ValueError("Daily limit must be greater than zero")
        if daily_limit > self.max_limit_seconds:
            raise ValueError(
                f"Daily limit exceeds the maximum of {self.max_app_limit_hours}h"
            )
        if category is None:
            category = AppCategory.for_app(app_name)

        existing = self.get_limit(app_name)
        if existing:
            existing.daily_limit = daily_limit
            existing.category = category
            limit = existing
            logger.info(f"Updated limit for {app_name}: {daily_limit}s")
        else:
            limit = AppLimit(app_name=app_name, daily_limit=daily_limit, category=category)
            self.limits.append(limit)
            logger.info(f"Added limit for {app_name}: {daily_limit}s")
        self.save_limits()
        return limit

    def remove_limit(self, app_name: str):
        if self.get_limit(app_name) is None:
            raise LookupError(f"No limit set for {app_name}")
        self.limits = [limit for limit in self.limits if not _same_app(limit.app_name, app_name)]
        self.save_limits()
        logger.info(f"Removed limit for {app_name}")

    # Usage

    def _usage_record(self, app_name: str) -> AppUsage | None:
        return next((u for u in self.usage if _same_app(u.app_name, app_name)), None)

    def usage_for(self, app_name: str) -> int:
        record = self._usage_record(app_name)
        return record.usage_seconds if record else 0

    def record_usage(
        self, app_name: str, seconds: int, category: AppCategory | None = None
    ) -> AppUsage:
        """Adds ``seconds`` of foreground time to today's usage of ``app_name``."""
        if seconds < 0:
            raise ValueError("Usage seconds cannot be negative")
        self.rollover()

        record = self._usage_record(app_name)
        if record is None:
            record = AppUsage(
                app_name=app_name,
                date=self.usage_date,
                category=category or self.category_for(app_name),
            )
            self.usage.append(record)
        record.usage_seconds += seconds
        self.save_usage()

        logger.debug(f"{app_name}: +{seconds}s (total {record.usage_seconds}s)")
        return record

    def check_limit(self, app_name: str) -> bool:
        """True while the app is still within its limit. Apps without a limit always pass."""
        limit = self.get_limit(app_name)
        if limit is None:
            return True
        return self.usage_for(app_name) < limit.daily_limit

    def should_block(self, app_name: str, now: datetime | None = None) -> bool:
        if self.enforcement_suspended(now):
            return False
        return not self.check_limit(app_name)

    def remaining_time(self, app_name: str) -> int:
        limit = self.get_limit(app_name)
        if limit is None:
            return self.max_limit_seconds
        return max(0, limit.daily_limit - self.usage_for(app_name))

    def usage_percentage(self, app_name: str) -> float | None:
        limit = self.get_limit(app_name)
        if limit is None:
            return None
        return self.usage_for(app_name) / limit.daily_limit * 100

    def warning_level(self, app_name: str) -> int | None:
        """Returns the highest warning threshold (in percent) usage has reached."""
        percentage = self.usage_percentage(app_name)
        if percentage is None:
            return None
        reached = [t for t in self.warning_thresholds if percentage >= t]
        return reached[-1] if reached else None

    def usage_stats(self) -> UsageStats:
        by_category: dict[AppCategory, int] = {}
        for u in self.usage:
            by_category[u.category] = by_category.get(u.category, 0) + u.usage_seconds

        most_used = max(self.usage, key=lambda u: u.usage_seconds, default=None)
        return UsageStats(
            date=self.usage_date,
            total_seconds=sum(by_category.values()),
            by_category=by_category,
            most_used=most_used.app_name if most_used and most_used.usage_seconds else None,
        )

    # Pause and emergency override

    def override_active(self, now: datetime | None = None) -> bool:
        until = self.control.override_until
        return until is not None and (now or datetime.now()) < until

    def enforcement_suspended(self, now: datetime | None = None) -> bool:
        return self.control.paused or self.override_active(now)

    def set_paused(self, paused: bool):
        self.control.paused = paused
        self.save_control()
        logger.info(f"All limits {'paused' if paused else 'resumed'}")

    def toggle_pause(self) -> bool:
        self.set_paused(not self.control.paused)
        return self.control.paused

    def emergency_override(
        self, minutes: int | None = None, now: datetime | None = None
    ) -> datetime:
        """Unblocks every app for a few minutes. Returns when the override expires."""
        if minutes is None:
            minutes = settings.emergency_override_minutes
        if minutes <= 0:
            raise ValueError("Override duration must be greater than zero")
        until = (now or datetime.now()) + timedelta(minutes=minutes)
        self.control.override_until = until
        self.save_control()
        logger.info(f"Emergency override active until {until:%H:%M}")
        return until

    # Day boundaries

    def rollover(self, today: date | None = None) -> bool:
        """Archives usage from an earlier day and starts a fresh one. Returns True if it did."""
        today = today or date.today()
        if self.usage_date >= today:
            return False

        if self.usage:
            history = self._read_json(self.history_file, [])
            if not isinstance(history, list):
                logger.error("history.json is not a list, starting a new history")
                history = []
            history.extend(u.model_dump(mode="json") for u in self.usage)
            self._write_json(self.history_file, history)
            logger.info(f"Archived usage for {self.usage_date.isoformat()}")

        self.usage = []
        self.usage_date = today
        self.save_usage()
        return True

    def reset_day(self):
        """Clears today's usage without archiving it."""
        self.usage = []
        self.usage_date = date.today()
        self.save_usage()
        logger.info("Reset today's usage.")

    def history_for(self, app_name: str) -> list[AppUsage]:
        records = []
        for item in self._read_json(self.history_file, []):
            try:
                usage = AppUsage(**item)
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping malformed history entry: {e}")
                continue
            if _same_app(usage.app_name, app_name):
                records.append(usage)
        return records
