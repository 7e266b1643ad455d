# Configuration loader with environment variable support

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_FILES_URL = "http://feed.omgili.com/5Rh5AMTrc4Pv/mainstream/posts/"
DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class ListingConfig(BaseModel):
    """How the remote listing page is read and interpreted."""

    archive_ext: str = Field(default="zip")
    # Abort discovery on a non-integer id; when False such links are skipped
    strict_ids: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("archive_ext")
    @classmethod
    def _strip_dot(cls, value: str) -> str:
        value = value.strip().lstrip(".")
        if not value:
            raise ValueError("archive_ext cannot be empty")
        return value


class IngestionConfig(BaseModel):
    max_concurrency: int = Field(default=10, gt=0)
    scratch_root: Optional[str] = None  # None means the system temp dir
    scratch_prefix: str = "batchfeed-"
    chunk_size: int = Field(default=64 * 1024, gt=0)


class StoreConfig(BaseModel):
    watermark_key: str = "parser:lastParsedTimestamp"


class QueueConfig(BaseModel):
    name: str = "NEWS_XML"


class Config(BaseModel):
    """Main configuration model"""

    model_config = ConfigDict(extra="ignore")

    listing: ListingConfig = Field(default_factory=ListingConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    # Listing
    files_url: str = Field(default=DEFAULT_FILES_URL, alias="FILES_URL")

    # Redis
    redis_uri: str = Field(default="redis://localhost:6379/0", alias="REDIS_URI")
    redis_max_connections: int = Field(default=10, gt=0, alias="REDIS_MAX_CONNECTIONS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def _resolve_config_path(settings: Settings) -> tuple[Path, bool]:
    """Return the YAML path and whether it was explicitly requested."""
    if settings.config_path:
        return Path(settings.config_path).expanduser(), True
    return DEFAULT_CONFIG_DIR / f"{settings.env}.yaml", False


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If an explicit CONFIG_PATH does not exist
        ValueError: If configuration validation fails
    """
    settings = Settings()
    config_path, explicit = _resolve_config_path(settings)

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        logger.info(f"No configuration file at {config_path}, using defaults")
        return Config(), settings

    logger.info(f"Loading configuration from: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Could not parse {config_path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")

    try:
        config = Config(**config_dict)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    return config, settings


# Global config instances (loaded once at startup)
_config: Optional[Config] = None
_settings: Optional[Settings] = None


def get_config() -> Config:
    """Get the global Config instance"""
    global _config, _settings
    if _config is None:
        _config, _settings = load_config()
    return _config


def get_settings() -> Settings:
    """Get the global Settings instance"""
    global _config, _settings
    if _settings is None:
        _config, _settings = load_config()
    return _settings


def init_config() -> tuple[Config, Settings]:
    """Initialize and cache global config instances"""
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings


def reload_config() -> tuple[Config, Settings]:
    """Force reload of config/settings from disk and environment."""
    return init_config()
