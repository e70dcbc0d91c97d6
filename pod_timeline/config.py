"""Configuration management for pod-timeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from pod_timeline.store import DEFAULT_MAX_ATTEMPTS

CONFIG_FILENAME = ".pod-timeline.yaml"
DEFAULT_PATHS = [
    Path.cwd() / CONFIG_FILENAME,
    Path.home() / CONFIG_FILENAME,
    Path.home() / ".config" / "pod-timeline" / "config.yaml",
]
DEFAULT_DATABASE = "store.sqlite"


@dataclass
class Config:
    """Application configuration."""

    # Kubernetes
    kubeconfig: str = ""
    context: str = ""
    namespace: str = ""  # Empty = all namespaces
    watch_timeout: int = 300  # seconds before the watch is re-opened

    # Storage
    database: str = DEFAULT_DATABASE  # SQLAlchemy URL or SQLite file path
    max_attempts: int = DEFAULT_MAX_ATTEMPTS  # lost-update retries per merge

    # Reconciliation
    workers: int = 1

    @property
    def database_url(self) -> str:
        """The configured database as a SQLAlchemy URL."""
        if "://" in self.database:
            return self.database
        path = Path(self.database).expanduser()
        return f"sqlite+pysqlite:///{path}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create config from a dictionary (e.g., parsed YAML)."""
        return cls(
            kubeconfig=data.get("kubeconfig", "") or "",
            context=data.get("context", "") or "",
            namespace=data.get("namespace", "") or "",
            watch_timeout=int(data.get("watch_timeout", 300)),
            database=data.get("database", DEFAULT_DATABASE) or DEFAULT_DATABASE,
            max_attempts=int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            workers=int(data.get("workers", 1)),
        )

    @classmethod
    def load(cls, path: str | None = None) -> Config:
        """Load config from file, with env var overrides.

        Raises:
            ValueError: A setting has the wrong type or is out of range.
            yaml.YAMLError: The config file is not valid YAML.
        """
        config_data: dict[str, Any] = {}

        # Find config file
        if path:
            config_path = Path(path)
        else:
            config_path = None
            for p in DEFAULT_PATHS:
                if p.exists():
                    config_path = p
                    break

        if config_path and config_path.exists():
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}

        config = cls.from_dict(config_data)

        # Environment variable overrides
        if env_kubeconfig := os.environ.get("KUBECONFIG"):
            if not config.kubeconfig:
                config.kubeconfig = env_kubeconfig

        if env_db := os.environ.get("POD_TIMELINE_DATABASE"):
            config.database = env_db

        if env_ns := os.environ.get("POD_TIMELINE_NAMESPACE"):
            config.namespace = env_ns

        if env_workers := os.environ.get("POD_TIMELINE_WORKERS"):
            try:
                config.workers = int(env_workers)
            except ValueError:
                raise ValueError(
                    f"POD_TIMELINE_WORKERS must be an integer, got {env_workers!r}"
                ) from None

        if config.workers < 1:
            raise ValueError(f"workers must be at least 1, got {config.workers}")

        return config
