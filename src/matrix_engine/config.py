"""Engine settings loaded from the environment and an optional TOML file."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .state import DEFAULT_SERVER_URL

HOME_CONFIG_PATH = Path.home() / ".config" / "matrix-engine" / "config.toml"


class ConfigError(RuntimeError):
    pass


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "matrix-engine"


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="MATRIX_ENGINE__",
        env_nested_delimiter="__",
        str_strip_whitespace=True,
    )

    server_url: str = DEFAULT_SERVER_URL
    client_api_prefix: str = "/_matrix/client/v3"
    media_api_prefix: str = "/_matrix/media/v3"
    cache_dir: Path = Field(default_factory=_default_cache_dir)
    device_name: str = "matrix-engine"

    # milliseconds the server may hold an incremental sync open
    sync_timeout_ms: int = Field(default=30000, ge=0)
    request_timeout: float = Field(default=120.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    page_size: int = Field(default=10, ge=1)
    min_messages: int = Field(default=10, ge=0)
    max_pages: int = Field(default=5, ge=1)
    directory_limit: int = Field(default=20, ge=1)
    thumbnail_size: int = Field(default=64, ge=1)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def _resolve_config_path(path: str | Path | None) -> Path:
    return Path(path).expanduser() if path else HOME_CONFIG_PATH


def load_settings(path: str | Path | None = None) -> tuple[EngineSettings, Path]:
    """Load settings from a TOML config file, with env overrides on top."""
    cfg_path = _resolve_config_path(path)
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.")
    if not cfg_path.exists():
        raise ConfigError(f"Missing config file {cfg_path}.")

    cfg = dict(EngineSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "EngineSettingsBound",
        (EngineSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound(), cfg_path
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
    except Exception as exc:
        raise ConfigError(f"Failed to load config {cfg_path}: {exc}") from exc
