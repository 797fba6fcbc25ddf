import json
from pathlib import Path

from loguru import logger
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from kaisheng.utils.paths import get_default_data_dir, get_default_log_dir


class Settings(BaseSettings):
    """Application-wide settings managed via .env and config.json."""

    app_name: str = "kaisheng"
    debug: bool = Field(default=False, description="Master toggle for verbose logging")

    # Paths
    data_dir: Path = Field(default_factory=get_default_data_dir)
    log_dir: Path = Field(default_factory=get_default_log_dir)

    def model_post_init(self, __context):
        self.data_dir = self.data_dir.resolve()
        self.log_dir = self.log_dir.resolve()

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def config_file(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def log_file(self) -> Path:
        return self.log_dir / "kaisheng.log"

    # Downtime
    check_interval_seconds: int = Field(default=60, ge=1)
    critical_apps: list[str] = [
        "Phone",
        "Messages",
        "Emergency",
        "Health",
        "SOS",
        "Emergency Call",
        "Medical ID",
        "Settings",
    ]

    # App limits
    max_app_limit_hours: int = Field(default=24, ge=1)
    limit_warning_thresholds: list[int] = [80, 95]
    emergency_override_minutes: int = Field(default=5, ge=1)

    # Motion
    walking_acceleration_threshold: float = 1.1
    walking_step_threshold: int = 5
    start_debounce_seconds: float = 3.0
    stop_debounce_seconds: float = 2.0

    model_config = SettingsConfigDict(
        env_prefix="KAISHENG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def save(self):
        """Saves current settings to config.json in data_dir."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json", exclude={"data_dir", "log_dir"})
        with open(self.config_file, "w") as f:
            json.dump(data, f, indent=4)


_last_settings_mtime: float | None = None
_cached_settings: Settings | None = None


def load_settings(data_dir: Path | None = None) -> Settings:
    """Loads settings, merging with config.json if it exists."""
    global _last_settings_mtime, _cached_settings

    initial = Settings() if data_dir is None else Settings(data_dir=data_dir)
    config_path = initial.config_file

    if not config_path.exists():
        _last_settings_mtime = None
        _cached_settings = initial
        return initial

    current_mtime = config_path.stat().st_mtime
    if (
        _last_settings_mtime == current_mtime
        and _cached_settings is not None
        and _cached_settings.data_dir == initial.data_dir
    ):
        return _cached_settings

    try:
        with open(config_path) as f:
            config_data = json.load(f)
        _cached_settings = Settings(**{**initial.model_dump(), **config_data})
        _last_settings_mtime = current_mtime
        return _cached_settings
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring invalid config file {config_path}: {e}")
        _cached_settings = initial
        return initial


# The single source of truth for the app
settings = load_settings()
