"""
Stats normalisation for achievement evaluation.

Raw player stats arrive as nested JSON as the server plugin reports them
(``{"mined": {"wheat": 12}, "custom": {"minecraft:play_time": 72000}}``).
Achievements name stats either by dot path (``mined.wheat``) or by a flat
underscore key (``custom_minecraft_play_time``). Both resolve after
``flatten_stats``.

Play time is reported in ticks and distances in centimetres; thresholds
are written in hours and blocks, so ``normalize_player_stats`` converts
those before evaluation.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Mapping, Optional

from nordics.core.logging.logger import get_logger

logger = get_logger(__name__)

Stats = Dict[str, float]

TICKS_PER_HOUR = 72_000
CM_PER_BLOCK = 100

TICK_STATS = ("play_time", "play_one_minute", "custom_minecraft_play_time")
CM_STATS = ("walk_one_cm", "sprint_one_cm", "ride_boat_one_cm")
CM_SUFFIX = "_one_cm"


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
    if math.isnan(number):
        return None
    return number


def _alias(path: str) -> str:
    return path.replace(":", "_").replace(".", "_")


def _decode(document: Any) -> Mapping[str, Any]:
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError:
            logger.warning("Discarding stats document that is not valid JSON")
            return {}
    if not isinstance(document, Mapping):
        return {}
    return document


def flatten_stats(nested: Any) -> Stats:
    """
    Flatten a nested stats document into ``{path: value}``.

    Every numeric leaf is stored under its dot path and under an underscore
    alias (``custom.minecraft:play_time`` -> ``custom_minecraft_play_time``).
    An alias never overwrites a key that is present verbatim. Booleans and
    other non-numeric leaves are dropped. A JSON string is decoded first.
    """
    flat: Stats = {}
    aliases: Stats = {}

    def walk(node: Mapping[str, Any], prefix: str) -> None:
        for key, value in node.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, Mapping):
                walk(value, path)
                continue
            number = _to_number(value)
            if number is None:
                continue
            flat[path] = number
            alias = _alias(path)
            if alias != path:
                aliases[alias] = number

    walk(_decode(nested), "")

    for alias, number in aliases.items():
        flat.setdefault(alias, number)
    return flat


def stat_value(stats: Optional[Mapping[str, Any]], key: str) -> float:
    """
    Read ``key`` from a stats mapping; 0 when absent or unusable.

    A direct key wins; otherwise ``key`` is walked as a dot path through
    nested mappings. Missing, ``None``, non-numeric, NaN and negative
    infinite values all read as 0.
    """
    if not stats or not key:
        return 0.0

    if key in stats:
        raw: Any = stats[key]
    else:
        raw = stats
        for part in key.split("."):
            if not isinstance(raw, Mapping) or part not in raw:
                return 0.0
            raw = raw[part]

    number = _to_number(raw)
    if number is None or number == -math.inf:
        return 0.0
    return number


def _matches(key: str, names: tuple[str, ...]) -> bool:
    return any(key == name or key.endswith(("_" + name, "." + name, ":" + name)) for name in names)


def normalize_player_stats(raw: Any) -> Stats:
    """
    Flatten player stats and convert units for threshold comparison.

    - ticks -> whole hours for play-time stats
    - centimetres -> whole blocks for distance stats, with an alias
      without the ``_one_cm`` suffix (``ride_boat_one_cm`` -> ``ride_boat``)
    """
    stats = raw if _is_flat(raw) else flatten_stats(raw)
    normalized: Stats = {}

    for key, value in stats.items():
        number = _to_number(value)
        if number is None:
            continue
        if _matches(key, TICK_STATS):
            number = _floor_div(number, TICKS_PER_HOUR)
        elif _matches(key, CM_STATS):
            number = _floor_div(number, CM_PER_BLOCK)
        normalized[key] = number

    for key, value in list(normalized.items()):
        if key.endswith(CM_SUFFIX) and _matches(key, CM_STATS):
            normalized.setdefault(key[: -len(CM_SUFFIX)], value)

    return normalized


def _is_flat(raw: Any) -> bool:
    return isinstance(raw, Mapping) and not any(isinstance(v, Mapping) for v in raw.values())


def _floor_div(value: float, divisor: int) -> float:
    if math.isinf(value):
        return value
    return float(math.floor(value / divisor))


def derive_town_stats(town: Any) -> Stats:
    """
    Achievement stats for a town, derived from its facts.

    ``town`` is any object with ``population``, ``nation_id``,
    ``is_independent``, ``type`` and ``balance`` attributes (the ORM row or
    a test double).
    """
    nation_id = getattr(town, "nation_id", None)
    is_independent = bool(getattr(town, "is_independent", nation_id is None))
    town_type = str(getattr(town, "type", "") or "")

    return {
        "population": _to_number(getattr(town, "population", 0)) or 0.0,
        "nation_member": 1.0 if nation_id and not is_independent else 0.0,
        "independent": 1.0 if not nation_id else 0.0,
        "capital": 1.0 if "capital" in town_type.lower() else 0.0,
        "balance": _to_number(getattr(town, "balance", 0)) or 0.0,
    }
