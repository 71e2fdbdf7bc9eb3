"""
ConfigManager: hierarchical YAML configuration access for Nordics (2025).

Purpose
-------
- Provide dot-notation access to the data-driven configuration under
  ``Config.CONFIG_DIR`` (level curves, achievement catalogs, claim rules).
- Deep-merge every YAML file in the tree so catalogs can be split per kind.

Responsibilities
----------------
- Load and merge YAML files from the config directory.
- Serve reads from an in-memory snapshot.
- Support explicit reload and per-key overrides (used by tests and tooling).

Non-Responsibilities
--------------------
- Environment configuration (handled by Config)
- Database-backed definitions (handled by the Sql* sources, which fall back
  to the values served here)

Key Design Decisions
--------------------
- YAML is the single source for **defaults**; the database may hold the
  authoritative copy once seeded.
- Files are merged in sorted path order so the result is deterministic.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional

import yaml

from nordics.core.config.config import Config
from nordics.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class ConfigManagerError(RuntimeError):
    """Base error type for ConfigManager-related failures."""


class ConfigLoadError(ConfigManagerError):
    """Raised when a YAML file cannot be parsed."""


__all__ = ["ConfigManager", "ConfigManagerError", "ConfigLoadError"]


_MISSING = object()


# ============================================================================
# ConfigManager
# ============================================================================


class ConfigManager:
    """
    Hierarchical configuration access with dot notation.

    Features
    --------
    - ``ConfigManager.get("progression.claims.admin_role")``
    - Lazy load on first read
    - ``override()`` for targeted changes without touching files
    """

    _defaults: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _loaded: bool = False
    _config_dir: Optional[Path] = None

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)  # type: ignore[index]
            else:
                target[key] = value

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}

        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return merged

        files = sorted(config_dir.rglob("*.yaml"))
        for path in files:
            try:
                with path.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                logger.error(
                    "Failed to parse YAML config file",
                    extra={"path": str(path), "error": str(exc)},
                )
                raise ConfigLoadError(f"Invalid YAML in {path}: {exc}") from exc

            if not isinstance(data, dict):
                logger.warning(
                    "Ignoring YAML config file without a mapping at top level",
                    extra={"path": str(path)},
                )
                continue

            cls._deep_merge_dict(merged, data)

        logger.info(
            "YAML configuration loaded",
            extra={
                "config_dir": str(config_dir),
                "file_count": len(files),
                "top_level_keys": sorted(merged.keys()),
            },
        )
        return merged

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> None:
        """(Re)load every YAML file under ``config_dir`` (defaults to Config.CONFIG_DIR)."""
        directory = Path(config_dir) if config_dir is not None else Path(Config.CONFIG_DIR)
        cls._defaults = cls._load_yaml_configs(directory)
        cls._config_dir = directory
        cls._loaded = True

    @classmethod
    async def initialize(cls) -> None:
        if not cls._loaded:
            cls.load()

    @classmethod
    def reload(cls) -> None:
        cls.load(cls._config_dir)

    @classmethod
    def _ensure_loaded(cls) -> None:
        if not cls._loaded:
            cls.load()

    # =========================================================================
    # READS
    # =========================================================================

    @classmethod
    def _lookup(cls, source: Dict[str, Any], key: str) -> Any:
        node: Any = source
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-notation key.

        Overrides win over YAML defaults; ``default`` is returned when neither
        holds the key.
        """
        if key in cls._overrides:
            return cls._overrides[key]

        cls._ensure_loaded()
        value = cls._lookup(cls._defaults, key)
        if value is _MISSING:
            return default
        return value

    @classmethod
    def get_all_keys(cls) -> List[str]:
        cls._ensure_loaded()
        return sorted(cls._defaults.keys())

    # =========================================================================
    # OVERRIDES
    # =========================================================================

    @classmethod
    def override(cls, key: str, value: Any) -> None:
        cls._overrides[key] = value
        logger.info("Configuration override applied", extra={"config_key": key})

    @classmethod
    def clear_overrides(cls) -> None:
        cls._overrides.clear()
