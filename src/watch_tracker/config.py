"""Configuration management using Pydantic models."""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_SESSION_FILE, DEFAULT_STATE_FILE, METADATA_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


# Placeholder values that indicate unconfigured credentials
INVALID_PLACEHOLDERS = {
    "YOUR_PROJECT_URL_HERE",
    "YOUR_ANON_KEY_HERE",
    "YOUR_TMDB_API_KEY_HERE",
    "",
}

CONFIG_ENV_VAR = "WATCH_TRACKER_CONFIG"


class RemoteConfig(BaseModel):
    """Remote progress store configuration."""
    url: Optional[str] = None
    anon_key: Optional[str] = None


class TMDBConfig(BaseModel):
    """Metadata service configuration."""
    api_key: Optional[str] = None
    base_url: str = "https://api.themoviedb.org/3"
    cache_ttl_seconds: int = METADATA_CACHE_TTL_SECONDS


class StorageConfig(BaseModel):
    """Local file locations."""
    state_file: str = DEFAULT_STATE_FILE
    session_file: str = DEFAULT_SESSION_FILE


class SyncConfig(BaseModel):
    """Synchronization settings."""
    log_level: str = "INFO"
    probe_connectivity: bool = True

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()


class Config(BaseModel):
    """Root configuration model."""
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    tmdb: TMDBConfig = Field(default_factory=TMDBConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("remote", "tmdb", "storage", "sync", mode="before")
    @classmethod
    def ensure_section(cls, v):
        """Treat an empty YAML section as defaults."""
        return v if v is not None else {}


class Settings:
    """Application settings loaded from config.yaml."""

    def __init__(self, config_path: Optional[Path] = None):
        """Load and validate configuration."""
        self.config_path = Path(config_path) if config_path else self._get_config_path()

        if not self.config_path.exists():
            self._create_config_template()

        self._load_config()

    def _get_config_path(self) -> Path:
        """Get config file path based on environment."""
        if os.environ.get(CONFIG_ENV_VAR):
            return Path(os.environ[CONFIG_ENV_VAR])
        if os.path.exists("/.dockerenv"):
            return Path("/app/data/config.yaml")
        return Path("data/config.yaml")

    def _create_config_template(self) -> None:
        """Create config template from example."""
        example_path = Path("config.example.yaml")
        if example_path.exists():
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(example_path, self.config_path)
            logger.info(f"Created config template: {self.config_path}")
            logger.info("Please edit the config file with your credentials")

    def _load_config(self) -> None:
        """Load configuration from YAML using Pydantic."""
        try:
            raw_config = {}
            if self.config_path.exists():
                with open(self.config_path, "r", encoding="utf-8") as f:
                    raw_config = yaml.safe_load(f) or {}
                logger.debug(f"Loaded configuration from {self.config_path}")
            else:
                logger.debug(f"No config file at {self.config_path}, using defaults")

            config = Config(**raw_config)

            self.remote_url = os.environ.get("WATCH_TRACKER_REMOTE_URL") or config.remote.url
            self.remote_anon_key = os.environ.get("WATCH_TRACKER_ANON_KEY") or config.remote.anon_key

            tmdb_api_key = os.environ.get("TMDB_API_KEY") or config.tmdb.api_key or ""
            self.tmdb_api_key = "" if tmdb_api_key in INVALID_PLACEHOLDERS else tmdb_api_key
            self.tmdb_base_url = config.tmdb.base_url
            self.tmdb_cache_ttl_seconds = config.tmdb.cache_ttl_seconds

            self.state_file = Path(config.storage.state_file)
            self.session_file = Path(config.storage.session_file)

            self.log_level = config.sync.log_level
            self.probe_connectivity = config.sync.probe_connectivity

        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise

    @property
    def remote_configured(self) -> bool:
        return validate_remote_config(self)[0]


def validate_remote_config(settings: Settings) -> tuple[bool, list[str]]:
    """
    Validate that remote store settings are present and not placeholders.
    Returns (is_valid, list_of_invalid_names).
    """
    missing_or_invalid = []
    for name, value in (("remote.url", settings.remote_url), ("remote.anon_key", settings.remote_anon_key)):
        if not value or value in INVALID_PLACEHOLDERS:
            missing_or_invalid.append(name)

    return len(missing_or_invalid) == 0, missing_or_invalid


# Singleton cache for settings
_SETTINGS_SINGLETON = None

def get_settings() -> Settings:
    """Get (cached) application settings singleton."""
    global _SETTINGS_SINGLETON
    if _SETTINGS_SINGLETON is None:
        _SETTINGS_SINGLETON = Settings()
    return _SETTINGS_SINGLETON

def reload_settings() -> Settings:
    """Force reload of application settings singleton."""
    global _SETTINGS_SINGLETON
    _SETTINGS_SINGLETON = Settings()
    return _SETTINGS_SINGLETON
