"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. The handshake token lives in .env
as ``HANDSHAKE_TOKEN``. Environment variables override both using ``__`` as
the nested delimiter (e.g. ``RUNTIME__IMAGE``).

Priority (highest wins): init args > env vars > .env > config.toml

Settings are built once at startup by :func:`load_settings` and handed to
every component explicitly::

    settings = load_settings()
    orchestrator = LifecycleOrchestrator(settings, runtime, volumes)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Rejects unknown keys."""

    model_config = {"extra": "forbid"}


class ServerConfig(_StrictModel):
    host: str = "0.0.0.0"
    port: int = 25575


class RuntimeConfig(_StrictModel):
    cli: str | None = None  # "docker" | "podman" | None → auto-detect
    image: str = "itzg/minecraft-server"
    game_port: int = 25565  # fixed port inside the container
    default_host_port: int = 25565
    data_path: str = "/data"  # where the volume is mounted in the container
    env: dict[str, str] = {"EULA": "TRUE"}
    console_command: list[str] = ["rcon-cli"]  # prefix for in-container commands
    command_timeout: float = 60.0  # seconds
    log_tail: int = 100  # backlog lines sent when a console attaches

    @field_validator("console_command")
    @classmethod
    def require_console_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("console_command must name at least one executable")
        return v

    @field_validator("command_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("command_timeout must be positive")
        return v


class VolumesConfig(_StrictModel):
    root: str = "./volume"


class LifecycleConfig(_StrictModel):
    # Serialize create/start/stop/restart per container identity.
    serialize_per_identity: bool = True


class LoggingConfig(_StrictModel):
    level: str = "INFO"
    format: Literal["console", "json"] = "console"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    handshake_token: SecretStr | None = None
    server: ServerConfig = ServerConfig()
    runtime: RuntimeConfig = RuntimeConfig()
    volumes: VolumesConfig = VolumesConfig()
    lifecycle: LifecycleConfig = LifecycleConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def volume_root(self) -> Path:
        return Path(self.volumes.root).expanduser().resolve()

    def require_token(self) -> str:
        """Return the handshake token, or raise if it was never configured."""
        if self.handshake_token is None or not self.handshake_token.get_secret_value():
            raise ValueError("HANDSHAKE_TOKEN missing (set it in .env or the environment)")
        return self.handshake_token.get_secret_value()


def load_settings(**overrides: object) -> Settings:
    """Build Settings from all sources. Called once at startup."""
    return Settings(**overrides)  # type: ignore[arg-type]
