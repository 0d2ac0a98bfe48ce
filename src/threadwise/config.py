"""Reviewer configuration.

Loads ``.threadwise.toml`` from the project root (walking up to ``.git``),
validates with Pydantic, and provides defaults so zero-config still works.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from threadwise.identity import BotIdentity
from threadwise.models import Side

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".threadwise.toml"
DEFAULT_MARKER = "<!-- threadwise -->"

ENV_REPO = "THREADWISE_REPO"
ENV_PR = "THREADWISE_PR"


class IdentityConfig(BaseModel):
    """How this reviewer recognises its own comments."""

    model_config = ConfigDict(extra="ignore")

    login: str | None = Field(default=None, description="GitHub login the reviewer posts as (e.g. 'my-app[bot]')")
    marker: str = Field(default=DEFAULT_MARKER, min_length=1, description="Invisible marker appended to every body")


class ReviewConfig(BaseModel):
    """Write-routing settings."""

    model_config = ConfigDict(extra="ignore")

    default_side: Side = Field(default=Side.RIGHT, description="Side for new threads when a line is addressable on both")
    suggestions: bool = Field(default=True, description="Whether the suggest tool may post suggestion blocks")

    @field_validator("default_side", mode="before")
    @classmethod
    def _upper_side(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class FetchConfig(BaseModel):
    """What is read from GitHub at session start."""

    model_config = ConfigDict(extra="ignore")

    review_threads: bool = Field(
        default=True,
        description="Query classified review threads over GraphQL; false relies on flat comments only",
    )


class Config(BaseModel):
    """Top-level threadwise configuration."""

    model_config = ConfigDict(extra="ignore")

    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)

    def bot_identity(self) -> BotIdentity:
        return BotIdentity(login=self.identity.login or None, marker=self.identity.marker)


def _collect_unknown_keys(data: dict[str, Any], model_cls: type[BaseModel], prefix: str = "") -> list[str]:
    """Recursively find keys in *data* that don't match any field in *model_cls*.

    Returns dotted key paths like ``review.default_sde``.
    """
    known = set(model_cls.model_fields)
    unknown: list[str] = []

    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in known:
            unknown.append(dotted)
            continue
        annotation = model_cls.model_fields[key].annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
            unknown.extend(_collect_unknown_keys(value, annotation, prefix=f"{dotted}."))

    return unknown


def _find_config_file(start: Path) -> Path | None:
    """Walk up from *start* looking for ``.threadwise.toml``, stopping at ``.git`` root."""
    current = start.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        if (current / ".git").exists():
            return None
        current = current.parent


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Load configuration from ``.threadwise.toml``.

    Returns:
        (config, config_path): the parsed config and the file it came from, or
        ``None`` when no file was found and defaults are used.

    Raises ``ValueError`` on invalid TOML or validation errors so the server
    can refuse to start with a broken config.
    """
    start = Path(cwd) if cwd else Path.cwd()
    config_path = _find_config_file(start)

    if config_path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
        return Config(), None

    logger.info("Loading config from %s", config_path)
    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_path}: {exc}"
        raise ValueError(msg) from exc

    try:
        config = Config.model_validate(data)
    except Exception as exc:
        msg = f"Invalid config in {config_path}: {exc}"
        raise ValueError(msg) from exc

    for key in _collect_unknown_keys(data, Config):
        logger.warning("Unknown config key '%s' in %s (ignored)", key, config_path)

    return config, config_path


# -- Active config -------------------------------------------------------------


class _ConfigState:
    __slots__ = ("config", "path")

    def __init__(self) -> None:
        self.config: Config = Config()
        self.path: Path | None = None


_state = _ConfigState()


def get_config() -> Config:
    """Return the active configuration."""
    return _state.config


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Set the active configuration (called during server startup)."""
    _state.config = config
    _state.path = config_path


def get_config_path() -> Path | None:
    """Return the path to the active config file, or None if using defaults."""
    return _state.path


# -- Environment ---------------------------------------------------------------


def env_repo() -> str | None:
    """``owner/repo`` from ``THREADWISE_REPO``, if set."""
    return os.environ.get(ENV_REPO, "").strip() or None


def env_pr() -> int | None:
    """Pull request number from ``THREADWISE_PR``, if set.

    Raises:
        ValueError: If the variable is set but not a positive integer.
    """
    raw = os.environ.get(ENV_PR, "").strip()
    if not raw:
        return None
    if not raw.isdigit() or int(raw) <= 0:
        msg = f"{ENV_PR} must be a positive integer, got {raw!r}"
        raise ValueError(msg)
    return int(raw)
