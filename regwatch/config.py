"""Project configuration management."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Optional

from regwatch import paths

if TYPE_CHECKING:
    from regwatch.discovery.config import DiscoveryConfig

logger = logging.getLogger(__name__)


class ProjectConfig:
    """Access to project configuration values.

    The configuration file is a JSON document. Every section is optional;
    missing keys fall back to the documented defaults of the discovery
    dataclasses. Example::

        {
          "data_root": "data",
          "rate_limit": {"request_delay_ms": 2000, "max_requests_per_minute": 20},
          "classifier": {"scanned_pdf_min_chars_per_page": 50},
          "politeness": {"max_workers": 8, "max_fetch_attempts": 3},
          "blocked_domains": ["heartbeat", "test", "synthetic", "debug"]
        }
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data) if data is not None else {}
        self._loaded = data is not None

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        config_path = paths.get_config_file()
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    self._data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                # A broken config file falls back to defaults
                logger.warning("Ignoring unreadable config %s: %s", config_path, exc)
                self._data = {}

        self._loaded = True

    @property
    def data_root(self) -> Optional[str]:
        """Configured data root, if any."""
        self._ensure_loaded()
        return self._data.get("data_root")

    @property
    def user_agent(self) -> Optional[str]:
        """User-Agent override for outbound requests."""
        self._ensure_loaded()
        return self._data.get("user_agent")

    def section(self, name: str) -> dict[str, Any]:
        """Get a configuration section as a dictionary (empty if missing)."""
        self._ensure_loaded()
        value = self._data.get(name) or {}
        if not isinstance(value, dict):
            raise ValueError(f"Config section '{name}' must be an object")
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw configuration value."""
        self._ensure_loaded()
        return self._data.get(key, default)

    def to_discovery_config(self) -> "DiscoveryConfig":
        """Build the typed discovery configuration from this file."""
        from regwatch.discovery.config import DiscoveryConfig

        self._ensure_loaded()
        return DiscoveryConfig.from_dict(self._data)


@lru_cache(maxsize=1)
def get_config() -> ProjectConfig:
    """Get the singleton configuration instance."""
    return ProjectConfig()
