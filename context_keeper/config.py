"""Pydantic models for context-keeper settings and config file loading."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from rich.console import Console

from context_keeper import constants
from context_keeper.tokens import EstimateMethod  # noqa: TC001

console = Console(stderr=True)

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "context-keeper" / "config.toml"
CONFIG_PATH_2 = Path("context-keeper.toml")
DEFAULT_HISTORY_DIR = Path.home() / ".config" / "context-keeper" / "conversations"


def _replace_dashed_keys(cfg: dict[str, Any]) -> dict[str, Any]:
    """Replace dashed keys with underscores in the config options."""
    return {k.replace("-", "_"): v for k, v in cfg.items()}


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file, one table per command plus ``[defaults]``."""
    if config_path_str:
        config_path = Path(config_path_str).expanduser()
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                cfg = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            console.print(f"[bold red]Error parsing config file {config_path}: {e}[/bold red]")
            return {}
        return {k: _replace_dashed_keys(v) for k, v in cfg.items() if isinstance(v, dict)}

    console.print(f"[bold red]Config file not found at {config_path_str}[/bold red]")
    return {}


# --- Pydantic Models for Configuration ---


def _expand(v: str | Path | None) -> Path | None:
    if v:
        return Path(v).expanduser()
    return None


class AssistantSettings(BaseModel):
    """Connection to the remote assistant."""

    api_key: str | None = None
    assistant_id: str | None = None
    base_url: str = constants.DEFAULT_BASE_URL
    timeout: float = Field(constants.DEFAULT_TIMEOUT, gt=0)
    max_attempts: int = Field(constants.MAX_ATTEMPTS, ge=1)


class BudgetSettings(BaseModel):
    """Token budget and compaction policy."""

    token_limit: int = Field(constants.TOKEN_LIMIT, gt=0)
    compact_at: float = Field(constants.COMPACT_AT, gt=0, le=1)
    warn_at: float = Field(constants.WARN_AT, gt=0, le=1)
    preserve_recent: int = Field(constants.PRESERVE_RECENT, ge=0)
    auto_compact: bool = True
    estimate_method: EstimateMethod = "fast"
    safety_factor: float = Field(constants.SAFETY_FACTOR, gt=0)

    @model_validator(mode="after")
    def _check_thresholds(self) -> BudgetSettings:
        if self.warn_at > self.compact_at:
            msg = "warn_at must not exceed compact_at"
            raise ValueError(msg)
        return self


class StorageSettings(BaseModel):
    """Where conversation records live."""

    history_dir: Path = DEFAULT_HISTORY_DIR

    @field_validator("history_dir", mode="before")
    @classmethod
    def _expand_user_path(cls, v: str | Path | None) -> Path:
        return _expand(v) or DEFAULT_HISTORY_DIR


class ContextSettings(BaseModel):
    """Where context sections are read from."""

    project_root: Path = Path()
    recursive_memory: bool = False
    include_user_memory: bool = True
    git_commits: int = Field(constants.GIT_HISTORY_COMMITS, ge=1)
    data_dir: Path | None = None
    skills_dir: Path | None = None

    @field_validator("project_root", mode="before")
    @classmethod
    def _expand_root(cls, v: str | Path | None) -> Path:
        return _expand(v) or Path()

    @field_validator("data_dir", "skills_dir", mode="before")
    @classmethod
    def _expand_user_path(cls, v: str | Path | None) -> Path | None:
        return _expand(v)


class General(BaseModel):
    """General configuration parameters for logging and I/O."""

    log_level: str = "WARNING"
    log_file: str | None = None
    quiet: bool = False
