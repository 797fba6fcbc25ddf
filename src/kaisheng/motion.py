import math
from datetime import datetime
from typing import Callable

from loguru import logger

from kaisheng.schema import AppCategory
from kaisheng.settings import settings

WalkListener = Callable[[bool, datetime], None]


class MotionDetector:
    """
    Tracks whether the user is walking from accelerometer, activity and pedometer input.

    Samples carry their own timestamps, so the debounce windows are measured
    between samples rather than with timers:
    1. Acceleration above the threshold must persist for start_debounce_seconds to start a walk.
    2. Acceleration at or below it must persist for stop_debounce_seconds to end one.
    3. Activity classifier results take effect immediately.
    """

    def __init__(
        self,
        acceleration_threshold: float | None = None,
        step_threshold: int | None = None,
        start_debounce_seconds: float | None = None,
        stop_debounce_seconds: float | None = None,
    ):
        self.acceleration_threshold = (
            acceleration_threshold
            if acceleration_threshold is not None
            else settings.walking_acceleration_threshold
        )
        self.step_threshold = (
            step_threshold if step_threshold is not None else settings.walking_step_threshold
        )
        self.start_debounce_seconds = (
            start_debounce_seconds
            if start_debounce_seconds is not None
            else settings.start_debounce_seconds
        )
        self.stop_debounce_seconds = (
            stop_debounce_seconds
            if stop_debounce_seconds is not None
            else settings.stop_debounce_seconds
        )

        self.is_walking = False
        self.walk_start_time: datetime | None = None
        self.step_count = 0
        self._above_since: datetime | None = None
        self._below_since: datetime | None = None
        self._listeners: list[WalkListener] = []

    def add_listener(self, listener: WalkListener):
        self._listeners.append(listener)

    def process_acceleration(self, x: float, y: float, z: float, at: datetime) -> bool:
        """Feeds one accelerometer sample (in g) and returns the walking state."""
        magnitude = math.sqrt(x * x + y * y + z * z)

        if magnitude > self.acceleration_threshold:
            self._below_since = None
            if not self.is_walking:
                if self._above_since is None:
                    self._above_since = at
                if (at - self._above_since).total_seconds() >= self.start_debounce_seconds:
                    self._set_walking(True, at)
        else:
            self._above_since = None
            if self.is_walking:
                if self._below_since is None:
                    self._below_since = at
                if (at - self._below_since).total_seconds() >= self.stop_debounce_seconds:
                    self._set_walking(False, at)

        return self.is_walking

    def process_activity(self, walking: bool, automotive: bool, at: datetime) -> bool:
        """Feeds one activity classification and returns the walking state."""
        if automotive or not walking:
            self._set_walking(False, at)
        else:
            self._set_walking(True, at)
        return self.is_walking

    def record_steps(self, count: int):
        """Sets the cumulative step count reported since the walk started."""
        if count < 0:
            raise ValueError("Step count cannot be negative")
        if self.is_walking:
            self.step_count = count

    def walking_duration(self, at: datetime | None = None) -> float:
        if self.walk_start_time is None:
            return 0.0
        at = at or datetime.now()
        return max(0.0, (at - self.walk_start_time).total_seconds())

    def should_restrict_scrolling(self) -> bool:
        return self.is_walking and self.step_count >= self.step_threshold

    def restricts(self, category: AppCategory) -> bool:
        """Scrolling restrictions only apply to social media apps."""
        return category == AppCategory.SOCIAL and self.should_restrict_scrolling()

    def _set_walking(self, walking: bool, at: datetime):
        self._above_since = None
        self._below_since = None
        if walking == self.is_walking:
            return

        self.is_walking = walking
        self.step_count = 0
        if walking:
            self.walk_start_time = at
            logger.info("Walking detected.")
        else:
            logger.info(f"Walking stopped after {self.walking_duration(at):.0f}s.")
            self.walk_start_time = None

        for listener in self._listeners:
            listener(walking, at)
