from datetime import date, datetime, time
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from kaisheng.utils.time import WEEKDAYS, normalize_weekday, parse_time_string


class DowntimeSchedule(BaseModel):
    """A named, optionally recurring time window during which apps are blocked."""

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(min_length=1)
    start_time: time
    end_time: time
    is_recurring: bool = False
    recurring_days: list[str] = Field(default_factory=list)
    blocked_apps: list[str] = Field(default_factory=list)
    block_entire_device: bool = False
    enabled: bool = True

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_clock(cls, value):
        if isinstance(value, str):
            return parse_time_string(value)
        return value

    @field_validator("recurring_days", mode="before")
    @classmethod
    def _normalize_days(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        days = {normalize_weekday(str(day)) for day in value}
        return [day for day in WEEKDAYS if day in days]

    @model_validator(mode="after")
    def _check_recurrence(self):
        if self.is_recurring and not self.recurring_days:
            raise ValueError("A recurring schedule needs at least one weekday")
        return self

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time < self.start_time


class AppCategory(str, Enum):
    SOCIAL = "Social Media"
    ENTERTAINMENT = "Entertainment"
    PRODUCTIVITY = "Productivity"
    GAMES = "Games"
    UTILITIES = "Utilities"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: str) -> "AppCategory":
        """Maps loose names like 'social' or 'Games' to a category, defaulting to OTHER."""
        key = value.strip().lower()
        for category in cls:
            if key in (category.name.lower(), category.value.lower()):
                return category
        return cls.OTHER

    @classmethod
    def for_app(cls, app_name: str) -> "AppCategory":
        """Guesses the category of a well-known app, defaulting to OTHER."""
        return KNOWN_APP_CATEGORIES.get(app_name.strip().casefold(), cls.OTHER)


KNOWN_APP_CATEGORIES = {
    **{
        name.casefold(): AppCategory.SOCIAL
        for name in (
            "Instagram",
            "TikTok",
            "Facebook",
            "Twitter",
            "Snapchat",
            "Reddit",
            "WhatsApp",
        )
    },
    **{
        name.casefold(): AppCategory.ENTERTAINMENT
        for name in ("YouTube", "Netflix", "Spotify")
    },
}


class AppLimit(BaseModel):
    """Daily usage ceiling for one app, in seconds."""

    id: UUID = Field(default_factory=uuid4)
    app_name: str = Field(min_length=1)
    daily_limit: int = Field(gt=0)
    category: AppCategory = AppCategory.OTHER


class AppUsage(BaseModel):
    app_name: str
    date: date
    usage_seconds: int = Field(default=0, ge=0)
    category: AppCategory = AppCategory.OTHER


class LimitControl(BaseModel):
    """Switches that suspend limit enforcement without touching the limits."""

    paused: bool = False
    override_until: datetime | None = None


class UsageStats(BaseModel):
    date: date
    total_seconds: int = 0
    by_category: dict[AppCategory, int] = Field(default_factory=dict)
    most_used: str | None = None


class DowntimePolicy(BaseModel):
    """The enforced downtime state at one instant."""

    at: datetime
    active_schedules: list[DowntimeSchedule] = Field(default_factory=list)
    schedule: DowntimeSchedule | None = None
    ends_at: datetime | None = None

    @property
    def in_downtime(self) -> bool:
        return self.schedule is not None

    @property
    def block_entire_device(self) -> bool:
        return self.schedule is not None and self.schedule.block_entire_device

    @property
    def blocked_apps(self) -> list[str]:
        if self.schedule is None or self.schedule.block_entire_device:
            return []
        return list(self.schedule.blocked_apps)

    @property
    def seconds_remaining(self) -> int:
        if self.ends_at is None:
            return 0
        return max(0, int((self.ends_at - self.at).total_seconds()))
