"""User-level and repository-level configuration."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import toml
from pydantic import BaseModel, ValidationError

from buckify.errors import ConfigError

logger = logging.getLogger(__name__)

REPO_CONFIG_FILE = "buckify.toml"


def user_config_path() -> Path:
    override = os.environ.get("BUCKIFY_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".config" / "buckify" / "config.toml"


class UserConfig(BaseModel):
    """~/.config/buckify/config.toml"""
    buck2_binary: str = "buck2"


class RepoConfig(BaseModel):
    """buckify.toml at the workspace root."""
    inherit_workspace_deps: bool = False
    ignore_tests: bool = True
    third_party_dir: str = "third-party/rust"

    @property
    def crates_dir(self) -> str:
        return f"{self.third_party_dir.strip('/')}/crates"


def _load_toml_model(path: Path, model: type[BaseModel]) -> BaseModel:
    if not path.exists():
        return model()
    try:
        data = toml.loads(path.read_text(encoding="utf-8"))
        return model.model_validate(data)
    except (OSError, toml.TomlDecodeError, ValidationError) as e:
        logger.warning("Failed to load %s, using defaults: %s", path, e)
        return model()


def load_user_config(path: Path | None = None) -> UserConfig:
    return _load_toml_model(path or user_config_path(), UserConfig)  # type: ignore[return-value]


def load_repo_config(workspace_root: Path) -> RepoConfig:
    return _load_toml_model(workspace_root / REPO_CONFIG_FILE, RepoConfig)  # type: ignore[return-value]


def resolve_buck2_binary(config: UserConfig | None = None) -> Path:
    """Locate the buck2 executable.

    An explicit path in the user config must point at an executable file.
    A bare command name is looked up on PATH.
    """
    config = config or load_user_config()
    binary = config.buck2_binary
    if os.sep in binary or (os.altsep and os.altsep in binary):
        path = Path(binary).expanduser()
        if not path.is_file() or not os.access(path, os.X_OK):
            raise ConfigError(f"buck2_binary `{binary}` is not an executable file")
        return path

    found = shutil.which(binary)
    if found is None:
        raise ConfigError(
            f"`{binary}` was not found on PATH; set buck2_binary in {user_config_path()}"
        )
    return Path(found)
