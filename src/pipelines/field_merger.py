"""Fold raw scalar submission fields into the task-built analyte map."""

from typing import Any

from src.models import is_scalar, stringify_value


def merge_raw_fields(
    analytes: dict[str, dict[str, Any]],
    raw: dict[str, Any],
    analyte_map: dict[str, str],
) -> dict[str, dict[str, Any]]:
    """Return a new map with raw scalars added under their canonical alias.

    A canonical key already produced by a task is never overwritten, so
    extracted values take precedence over manually entered duplicates.
    Nested objects and lists in ``raw`` are ignored.
    """
    merged = dict(analytes)
    for key, value in raw.items():
        if not is_scalar(value):
            continue
        canonical = analyte_map.get(key, key)
        if canonical not in merged:
            merged[canonical] = {"value": stringify_value(value), "unit": ""}
    return merged
