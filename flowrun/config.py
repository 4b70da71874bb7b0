"""Shared flowrun configuration utilities.

Centralises reading of ~/.flowrun/configuration.json so that the CLI, the
worker pool and the API server share one implementation. Any field can be
overridden per process with a ``FLOWRUN_<FIELD>`` environment variable.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWRUN_CONFIG_FILE = Path.home() / ".flowrun" / "configuration.json"
DEFAULT_STORAGE_PATH = Path.home() / ".flowrun" / "runs"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _config_file() -> Path:
    override = os.environ.get("FLOWRUN_CONFIG")
    return Path(override) if override else FLOWRUN_CONFIG_FILE


def get_flowrun_config() -> dict[str, Any]:
    """Load flowrun configuration from ~/.flowrun/configuration.json."""
    path = _config_file()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_storage_path() -> Path:
    """Return the directory used by the file-backed run store."""
    env_path = os.environ.get("FLOWRUN_STORAGE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    configured = get_flowrun_config().get("storage_path")
    if configured:
        return Path(configured).expanduser()
    return DEFAULT_STORAGE_PATH


def _coerce(raw: str, current: Any) -> Any:
    if isinstance(current, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


class _EnvOverridable:
    """Mixin: build a dataclass from a config-file section plus FLOWRUN_* env vars."""

    _section: str = ""

    @classmethod
    def from_env(cls, section: dict[str, Any] | None = None):
        if section is None:
            section = get_flowrun_config().get(cls._section, {})
        instance = cls()
        for f in fields(cls):
            if f.name in section:
                setattr(instance, f.name, section[f.name])
            raw = os.environ.get(f"FLOWRUN_{f.name.upper()}")
            if raw is not None:
                setattr(instance, f.name, _coerce(raw, getattr(instance, f.name)))
        return instance


# ---------------------------------------------------------------------------
# Component configs
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig(_EnvOverridable):
    """Per-run behaviour of the workflow engine and its executors."""

    _section = "engine"

    # Abort the run when a node reports an error output (off: errors stay data)
    fail_on_node_error: bool = False
    # Artificial per-node pause for demos; 0 disables
    node_delay_ms: int = 0
    http_connect_timeout: float = 10.0
    http_timeout: float = 30.0
    notifier_timeout: float = 10.0
    http_max_redirects: int = 5
    timezone: str = "UTC"


@dataclass
class WorkerConfig(_EnvOverridable):
    """Worker pool limits."""

    _section = "worker"

    max_concurrent: int = 4
    job_timeout_seconds: float = 300.0
    result_retention_max: int = 1000


@dataclass
class ServerConfig(_EnvOverridable):
    """Bind address of the run submission API."""

    _section = "server"

    host: str = "127.0.0.1"
    port: int = 8080
