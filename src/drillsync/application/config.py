from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from drillsync.domain.constants import (
    DEFAULT_SESSION_SIZE,
    INITIAL_PULL_DELAY,
    MIN_SESSION_SIZE,
    REQUEST_TIMEOUT,
    SYNC_DEBOUNCE_SECONDS,
    SYNCED_SLICES,
)


def config_files() -> list[Path]:
    return [
        Path.home() / ".config/drillsync/config.toml",
        Path.home() / ".drillsync.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration for drillsync.
    Supports loading from:
    1. Environment variables (DRILLSYNC_*)
    2. Config file (~/.config/drillsync/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="DRILLSYNC_",
        extra="ignore",
    )

    # Course
    course_slug: str = "go-course"
    storage_prefix: str | None = None
    catalog_path: Path | None = None

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/drillsync")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/drillsync/logs")

    # Sync
    sync_url: str | None = None
    auth_token: str | None = None
    user_id: str | None = None
    sync_collection: str = "sync_data"
    debounce_seconds: float = SYNC_DEBOUNCE_SECONDS
    initial_pull_delay: float = INITIAL_PULL_DELAY
    request_timeout: float = REQUEST_TIMEOUT
    plugin_slices: list[str] = Field(default_factory=list)

    # Sessions
    session_size: int = DEFAULT_SESSION_SIZE
    min_session_size: int = MIN_SESSION_SIZE

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        toml_file = next((f for f in config_files() if f.exists()), None)

        # Highest priority first: CLI overrides, then env, then the file
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("data_dir", "log_dir", mode="before")
    @classmethod
    def expand_dir(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("catalog_path", mode="before")
    @classmethod
    def resolve_catalog(cls, v: Any) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser().resolve()

    @property
    def prefix(self) -> str:
        return self.storage_prefix or self.course_slug

    @property
    def state_file(self) -> Path:
        return self.data_dir / f"{self.prefix}.json"

    @property
    def sync_enabled(self) -> bool:
        return bool(self.sync_url)

    @property
    def tracked_slices(self) -> list[str]:
        return [*SYNCED_SLICES, *(s for s in self.plugin_slices if s not in SYNCED_SLICES)]


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/drillsync/config.toml (if exists)
    3. Environment variables (DRILLSYNC_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
