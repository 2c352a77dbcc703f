"""PromptWatch — Daemon configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. Environment variables prefixed with PROMPTWATCH_
    3. System config: /etc/promptwatch/config.yaml
    4. User config:   ~/.promptwatch/config.yaml
    5. An explicit ``--config`` file

File values are passed to the constructor, so pydantic-settings ranks them
above the environment.

Call ``Settings.load()`` once at daemon startup and inject the instance
into the components that need it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class StorageConfig(BaseModel):
    """Where watches, results, transcripts and trigger executables live."""

    db_path: Path = Path("~/.promptwatch/watches.db")
    results_dir: Path = Path("~/.promptwatch/results")
    archive_dir: Path = Path("~/.promptwatch/results/archive")
    logs_dir: Path = Path("~/.promptwatch/logs")
    triggers_dir: Path = Path("~/.promptwatch/triggers")

    @field_validator("*", mode="after")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return v.expanduser()


class SchedulerConfig(BaseModel):
    tick_seconds: Annotated[float, Field(ge=0.01, le=60.0)] = Field(
        default=2.0,
        description="Global tick period. Must be finer-grained than any watch interval.",
    )
    shutdown_timeout_seconds: Annotated[float, Field(ge=0.0, le=3600.0)] = Field(
        default=30.0,
        description="How long stop() waits for in-flight polls before cancelling them.",
    )
    retention_hours: Annotated[int, Field(ge=1, le=8760)] = Field(
        default=168,
        description="Hours to keep fired/expired/cancelled watches before auto-purge (default 7 days).",
    )
    retention_sweep_seconds: Annotated[float, Field(ge=1.0, le=86400.0)] = 3600.0
    error_alert_threshold: int | None = Field(
        default=None,
        description=(
            "Consecutive transient trigger errors after which an error-level alert is logged. "
            "The watch stays active either way. None = never escalate."
        ),
    )

    @field_validator("error_alert_threshold")
    @classmethod
    def positive_threshold(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("error_alert_threshold must be >= 1 or null")
        return v


class TriggerConfig(BaseModel):
    timeout_seconds: Annotated[float, Field(gt=0.0, le=3600.0)] = 30.0
    default_interval: str = "30s"
    default_ttl: str = "48h"


class ActionConfig(BaseModel):
    command: list[str] = Field(
        default_factory=lambda: ["claude", "-p", "{prompt}", "--permission-mode=dontAsk"],
        min_length=1,
        description=(
            "Argv template for the action process. '{prompt}' and '{watch_id}' are "
            "substituted inside each argument; no shell is involved."
        ),
    )
    login_shell: bool = Field(
        default=False,
        description="Run the command through '$SHELL -l -c' to get the user's login environment.",
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=86400.0)] = 1800.0


class ResultsConfig(BaseModel):
    summary_max_chars: Annotated[int, Field(ge=0, le=100_000)] = 500


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=40100, ge=1024, le=65535)


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PROMPTWATCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    actions: ActionConfig = Field(default_factory=ActionConfig)
    results: ResultsConfig = Field(default_factory=ResultsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from file + environment variables."""
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/promptwatch/config.yaml"),
            Path.home() / ".promptwatch" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton, replaced by ``Settings.load()`` at daemon startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
