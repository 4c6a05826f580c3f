from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .model import ALL_REPOSITORIES, Repository

CONFIG_FILE = "fleetci.json"

DEFAULT_WORKERS = int(os.environ.get("FLEETCI_WORKERS", "4"))
DEFAULT_CHANGESET_WORKERS = 2
DEFAULT_TIMEOUT = float(os.environ.get("FLEETCI_TIMEOUT", "1800"))
DEFAULT_MAX_ATTEMPTS = int(os.environ.get("FLEETCI_MAX_ATTEMPTS", "3"))
DEFAULT_HARNESS = os.environ.get("FLEETCI_HARNESS", "node node_modules/saby-units/cli.js")
DEFAULT_WORKSPACE = os.environ.get("FLEETCI_WORKSPACE", ".fleetci")


# -------------------- Schemas --------------------

class RepositoryConfig(BaseModel):
    path: Optional[str] = None
    baseline: Optional[str] = None
    modules_path: Optional[str] = None
    unit_in_browser: bool = False
    use_map_only: bool = False


class FleetConfig(BaseModel):
    repositories: Dict[str, RepositoryConfig] = Field(default_factory=dict)
    rc: Optional[str] = None  # release branch every diff is taken against

    def repository_list(self, store: Path) -> List[Repository]:
        """Resolve repository paths; a repository without a path lives under the store."""
        out: List[Repository] = []
        for name, cfg in self.repositories.items():
            path = Path(cfg.path) if cfg.path else store / name
            out.append(
                Repository(
                    name=name,
                    path=str(path.expanduser().resolve()),
                    baseline=cfg.baseline,
                    modules_path=cfg.modules_path,
                    unit_in_browser=cfg.unit_in_browser,
                    use_map_only=cfg.use_map_only,
                )
            )
        return out


class RunOptions(BaseModel):
    """Run-mode switches handed over by the CLI as plain data."""
    repos: List[str] = Field(default_factory=lambda: [ALL_REPOSITORIES])
    only: bool = False
    diff: bool = False
    entry: List[str] = Field(default_factory=list)

    headless_only: bool = False
    browser_only: bool = False
    server: bool = False

    coverage: bool = False
    coverage_format: str = "html"
    check_leaks: bool = False

    workers: int = DEFAULT_WORKERS
    changeset_workers: int = DEFAULT_CHANGESET_WORKERS
    timeout: float = DEFAULT_TIMEOUT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ports: List[int] = Field(default_factory=list)

    rebuild_map: bool = False
    regenerate_baseline: bool = False

    harness: str = DEFAULT_HARNESS
    workspace: str = DEFAULT_WORKSPACE
    store: str = "store"

    @field_validator("workers", "changeset_workers", "max_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("coverage_format")
    @classmethod
    def _known_format(cls, v: str) -> str:
        if v not in ("html", "json", "both"):
            raise ValueError("coverage format must be one of html, json, both")
        return v

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace).expanduser().resolve()

    @property
    def store_path(self) -> Path:
        return Path(self.store).expanduser().resolve()


def load_config(path: str | Path | None = None) -> FleetConfig:
    """
    Load the repository configuration.

    Falls back to ./fleetci.json; a missing default file yields an empty config.
    """
    cfg_path = Path(path or CONFIG_FILE).expanduser()
    if not cfg_path.exists():
        if path is not None:
            raise ConfigError("Config file not found", path=str(cfg_path))
        return FleetConfig()

    try:
        data = json.loads(cfg_path.read_text(encoding="utf-8"))
        return FleetConfig.model_validate(data)
    except json.JSONDecodeError as e:
        raise ConfigError("Config file is not valid JSON", path=str(cfg_path), error=str(e)) from e
    except ValidationError as e:
        raise ConfigError("Config file has invalid fields", path=str(cfg_path), error=str(e)) from e
