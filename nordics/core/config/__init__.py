"""
Configuration subsystem.

- **config.py**: static configuration from environment variables (.env support)
- **manager.py**: YAML-backed catalogs and tunables with dot-notation access

Import from the submodules directly; the logger depends on ``config.py``
and ``manager.py`` depends on the logger.
"""
