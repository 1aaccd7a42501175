"""Configuration management for watchbudget.

Loads settings from a YAML configuration file with environment variable
overrides for deployment values (database URL). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/watchbudget.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    api_prefix: str = Field(default="/api/sessions")


class DatabaseConfig(BaseModel):
    url: str = Field(default="sqlite:///watchbudget.db")
    echo: bool = Field(default=False)
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    busy_timeout: float = Field(default=30.0, gt=0, description="SQLite lock wait in seconds")


class BudgetConfig(BaseModel):
    position_tolerance_seconds: int = Field(default=10, ge=0)
    default_timezone: str = Field(default="UTC")
    default_daily_limit_minutes: int | None = Field(default=60, ge=0)

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {value}") from e
        return value


class HeartbeatConfig(BaseModel):
    base_interval: float = Field(default=60.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    ceiling: float = Field(default=300.0, gt=0)
    max_attempts: int | None = Field(default=None, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _ceiling_not_below_base(self) -> HeartbeatConfig:
        if self.ceiling < self.base_interval:
            raise ValueError("heartbeat.ceiling must be >= heartbeat.base_interval")
        return self


class ClientConfig(BaseModel):
    base_url: str = Field(default="http://localhost:8080")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the watchbudget system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "WATCHBUDGET_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; prefixed env vars must still win.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: WATCHBUDGET_* env vars > .env file > DATABASE_URL > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    database_url = os.environ.get("DATABASE_URL", "")
    if database_url:
        yaml_data.setdefault("database", {})
        yaml_data["database"]["url"] = database_url
