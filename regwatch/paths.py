"""Filesystem locations used by the discovery pipeline.

All roots can be overridden through environment variables so that tests and
deployments never write into the working tree by accident.
"""

from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_DATA_ROOT = Path("data")
_DEFAULT_CONFIG_FILE = Path("config") / "regwatch.json"


def get_data_root() -> Path:
    """Root directory for all persisted discovery state."""
    override = os.environ.get("REGWATCH_DATA_ROOT")
    return Path(override) if override else _DEFAULT_DATA_ROOT


def get_config_file() -> Path:
    """Path of the JSON project configuration file."""
    override = os.environ.get("REGWATCH_CONFIG")
    return Path(override) if override else _DEFAULT_CONFIG_FILE


def get_seed_file() -> Path:
    """Path of the endpoint seed file."""
    override = os.environ.get("REGWATCH_SEED")
    return Path(override) if override else get_data_root() / "seed.json"


def get_store_file(data_root: Path | None = None) -> Path:
    """Path of the JSON discovery store."""
    return (data_root or get_data_root()) / "discovery_store.json"


def get_content_root(data_root: Path | None = None) -> Path:
    """Directory for raw fetched bytes (content-addressed)."""
    return (data_root or get_data_root()) / "content"


def get_queue_root(data_root: Path | None = None) -> Path:
    """Directory for downstream handoff queue files."""
    return (data_root or get_data_root()) / "queues"


def get_audit_file(data_root: Path | None = None) -> Path:
    """Path of the append-only audit log."""
    return (data_root or get_data_root()) / "audit.jsonl"


def ensure_directory(path: Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path
