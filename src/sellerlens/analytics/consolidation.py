"""Small-value consolidation for fee breakdown groups."""
from __future__ import annotations

from typing import Dict, Mapping

MISCELLANEOUS = "Miscellaneous"
DEFAULT_MISC_THRESHOLD = 10.0


def sort_groups(groups: Mapping[str, Mapping[str, float]]) -> Dict[str, Dict[str, float]]:
    """Order by descending |total| with Miscellaneous always last; ties sort by key."""
    items = sorted(
        groups.items(),
        key=lambda kv: (kv[0] == MISCELLANEOUS, -abs(kv[1]["total"]), kv[0]),
    )
    return {k: dict(v) for k, v in items}


def consolidate_groups(
    groups: Mapping[str, Mapping[str, float]],
    threshold: float = DEFAULT_MISC_THRESHOLD,
) -> Dict[str, Dict[str, float]]:
    """Merge groups whose |total| is below ``threshold`` into ``Miscellaneous``.

    The input is not modified. Individual small groups cannot be recovered
    from the result; keep the unconsolidated mapping when detail is needed.
    """
    merged: Dict[str, Dict[str, float]] = {}
    misc = {"count": 0, "total": 0.0}
    for key, data in groups.items():
        if key == MISCELLANEOUS or abs(data["total"]) < threshold:
            misc["count"] += int(data["count"])
            misc["total"] += float(data["total"])
        else:
            merged[key] = {"count": int(data["count"]), "total": float(data["total"])}
    if misc["count"]:
        merged[MISCELLANEOUS] = misc
    return sort_groups(merged)
