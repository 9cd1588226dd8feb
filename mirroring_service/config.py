"""
Service Configuration — Resolve settings from file, environment and flags.

Precedence (lowest to highest):
    1. Built-in defaults
    2. YAML config file (MIRRORING_CONFIG or --config)
    3. MIRRORING_* environment variables
    4. Explicit overrides (CLI flags)

Example config file:

    host: 127.0.0.1
    port: 9875
    storage_dir: ~/.mirroring-service
    namespace: bitspace-mirroring-service

## Environment Variables

- MIRRORING_HOST: Control endpoint bind address (default: 127.0.0.1)
- MIRRORING_PORT: Control endpoint port (default: 9875)
- MIRRORING_STORAGE: Directory for the persisted mirror registry
- MIRRORING_NAMESPACE: Chain store namespace for the service's own data
- MIRRORING_CONFIG: Path to a YAML config file
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9875
DEFAULT_NAMESPACE = "bitspace-mirroring-service"
DEFAULT_STORAGE_DIR = Path.home() / ".mirroring-service"

# Env var → settings field
_ENV_MAP = {
    "MIRRORING_HOST": "host",
    "MIRRORING_PORT": "port",
    "MIRRORING_STORAGE": "storage_dir",
    "MIRRORING_NAMESPACE": "namespace",
}


@dataclass(frozen=True)
class ServiceSettings:
    """Settings for one mirroring service instance."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    storage_dir: Path = DEFAULT_STORAGE_DIR
    namespace: str = DEFAULT_NAMESPACE

    # Seconds the startup probe waits for an existing server to answer
    probe_timeout: float = 1.0

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def registry_path(self) -> Path:
        return self.storage_dir / f"{self.namespace}.json"

    @classmethod
    def from_env(cls, base: Optional["ServiceSettings"] = None) -> "ServiceSettings":
        """Apply MIRRORING_* environment variables on top of base."""
        values: Dict[str, Any] = {}
        for env_name, field_name in _ENV_MAP.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field_name] = raw
        return (base or cls()).with_overrides(**values)

    @classmethod
    def from_file(cls, path: Path, base: Optional["ServiceSettings"] = None) -> "ServiceSettings":
        """Apply a YAML config file on top of base."""
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")

        logger.debug(f"Loaded config file {path}")
        return (base or cls()).with_overrides(
            **{k: v for k, v in data.items() if k in known}
        )

    @classmethod
    def load(cls, config_file: Optional[Path] = None, **overrides: Any) -> "ServiceSettings":
        """Resolve settings using the full precedence chain."""
        settings = cls()

        config_file = config_file or (
            Path(os.environ["MIRRORING_CONFIG"]) if os.environ.get("MIRRORING_CONFIG") else None
        )
        if config_file is not None:
            settings = cls.from_file(Path(config_file), base=settings)

        settings = cls.from_env(base=settings)
        return settings.with_overrides(
            **{k: v for k, v in overrides.items() if v is not None}
        )

    def with_overrides(self, **values: Any) -> "ServiceSettings":
        """Return a copy with coerced field overrides applied."""
        if "port" in values:
            values["port"] = int(values["port"])
        if "probe_timeout" in values:
            values["probe_timeout"] = float(values["probe_timeout"])
        if "storage_dir" in values:
            values["storage_dir"] = Path(values["storage_dir"]).expanduser()
        return replace(self, **values)
