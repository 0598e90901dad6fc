"""Configuration defaults, env vars, and the on-disk config file for planstack."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from planstack import log
from planstack.io_utils import read_json, write_json_atomic

CONFIG_FILE_NAME = "config.json"

ENV_HOME = "PLANSTACK_HOME"
ENV_PLANS_DIR = "PLANSTACK_PLANS_DIR"
ENV_WORKER_COMMAND = "PLANSTACK_WORKER_COMMAND"

DEFAULT_WORKER = "claude"
DEFAULT_WORKER_COMMAND = "claude"

# Keys persisted in config.json; runtime-only fields are left out.
_PERSISTED_KEYS = (
    "plans_directory",
    "worker",
    "worker_command",
    "worker_timeout",
    "auto_resolve_dependencies",
)


def default_home() -> Path:
    """Return the planstack home, honoring ``PLANSTACK_HOME``."""
    env = os.environ.get(ENV_HOME)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".planstack"


def default_plans_directory() -> Path:
    return Path.home() / ".claude" / "plans"


@dataclass
class Config:
    """Runtime configuration: where things live and which worker runs tasks."""

    home: Path = field(default_factory=default_home)
    plans_directory: Path = field(default_factory=default_plans_directory)

    # Worker
    worker: str = DEFAULT_WORKER
    worker_command: str = DEFAULT_WORKER_COMMAND
    worker_timeout: int | None = None

    # Stack building
    auto_resolve_dependencies: bool = True

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        self.home = Path(self.home).expanduser()
        self.plans_directory = Path(self.plans_directory).expanduser()

    @property
    def config_file(self) -> Path:
        return self.home / CONFIG_FILE_NAME

    @property
    def stacks_dir(self) -> Path:
        return self.home / "stacks"

    @property
    def status_dir(self) -> Path:
        return self.home / "status"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        out = {key: data[key] for key in _PERSISTED_KEYS}
        out["plans_directory"] = str(self.plans_directory)
        return out


def ensure_home(cfg: Config) -> None:
    """Create the home directory layout (idempotent)."""
    for d in (cfg.home, cfg.stacks_dir, cfg.status_dir, cfg.logs_dir):
        d.mkdir(parents=True, exist_ok=True)


def is_initialized(cfg: Config) -> bool:
    return cfg.home.is_dir()


def load_config(home: Path | None = None) -> Config:
    """Build a :class:`Config` from defaults, ``config.json`` and env vars.

    Environment variables win over the file. A missing or unreadable config
    file falls back to defaults.
    """
    cfg = Config(home=home) if home is not None else Config()

    try:
        data = read_json(cfg.config_file)
    except FileNotFoundError:
        data = {}
    except (OSError, json.JSONDecodeError) as exc:
        log.warn(f"Ignoring unreadable config file {cfg.config_file}: {exc}")
        data = {}

    if isinstance(data, dict):
        for key in _PERSISTED_KEYS:
            if key in data and data[key] is not None:
                setattr(cfg, key, data[key])

    plans_env = os.environ.get(ENV_PLANS_DIR)
    if plans_env:
        cfg.plans_directory = plans_env
    worker_env = os.environ.get(ENV_WORKER_COMMAND)
    if worker_env:
        cfg.worker_command = worker_env

    cfg.__post_init__()
    return cfg


def save_config(cfg: Config) -> None:
    ensure_home(cfg)
    write_json_atomic(cfg.config_file, cfg.to_dict())
