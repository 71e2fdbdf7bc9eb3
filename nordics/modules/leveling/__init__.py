"""
Leveling: XP-to-level curves for players and towns.

- **curve.py**: ``LevelCurve``, ``LevelDefinition``, ``LevelInfo``
- **catalog.py**: level-definition sources and ``LevelCurveRegistry``
"""

from nordics.modules.leveling.curve import LevelCurve, LevelDefinition, LevelInfo

__all__ = ["LevelCurve", "LevelDefinition", "LevelInfo"]
