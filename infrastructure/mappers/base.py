"""Helpers shared by the mappers"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Type


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Storage may hand back naive datetimes; those are UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_exhaustive(
    table: Dict, source: Type[Enum], target: Optional[Type[Enum]] = None, onto: bool = True
) -> Dict:
    """Fail at import time when a translation table misses a member

    Every ``source`` member must be a key. With a ``target`` enum and
    ``onto`` every ``target`` member must also be reachable.
    """
    missing_keys = set(source) - set(table)
    missing_values = set(target) - set(table.values()) if target is not None and onto else set()
    if missing_keys or missing_values:
        target_name = target.__name__ if target is not None else "values"
        raise RuntimeError(
            f"Translation {source.__name__} -> {target_name} is incomplete: "
            f"unmapped {sorted(m.name for m in missing_keys)}, "
            f"unreachable {sorted(m.name for m in missing_values)}"
        )
    return table
