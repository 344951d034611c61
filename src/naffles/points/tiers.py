"""Tier thresholds and progress computation.

A tier is a pure function of lifetime points earned. Lower bounds are
inclusive: 1000 earned is silver, 999 is bronze.
"""

from __future__ import annotations

from typing import Any

DEFAULT_TIERS: list[dict[str, Any]] = [
    {"name": "bronze", "threshold": 0, "color": "#CD7F32"},
    {"name": "silver", "threshold": 1000, "color": "#C0C0C0"},
    {"name": "gold", "threshold": 5000, "color": "#FFD700"},
    {"name": "platinum", "threshold": 15000, "color": "#E5E4E2"},
    {"name": "diamond", "threshold": 50000, "color": "#B9F2FF"},
]

TIER_NAMES = [t["name"] for t in DEFAULT_TIERS]


def compute_tier(total_earned: int, tiers: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Compute tier info from lifetime points earned.

    Returns dict with: tier, progress (0-100), next_tier, next_threshold,
    points_to_next.
    """
    table = sorted(tiers or DEFAULT_TIERS, key=lambda t: t["threshold"])

    index = 0
    for i in range(len(table) - 1, -1, -1):
        if total_earned >= table[i]["threshold"]:
            index = i
            break

    current = table[index]
    if index == len(table) - 1:
        return {
            "tier": current["name"],
            "progress": 100.0,
            "next_tier": None,
            "next_threshold": None,
            "points_to_next": 0,
        }

    nxt = table[index + 1]
    span = nxt["threshold"] - current["threshold"]
    progress = ((total_earned - current["threshold"]) / span) * 100 if span > 0 else 100.0
    return {
        "tier": current["name"],
        "progress": max(0.0, min(progress, 100.0)),
        "next_tier": nxt["name"],
        "next_threshold": nxt["threshold"],
        "points_to_next": nxt["threshold"] - total_earned,
    }


def apply_tier(balance: Any, tiers: list[dict[str, Any]] | None = None) -> None:  # noqa: ANN401
    """Recompute ``tier`` and ``tier_progress`` on a balance row in place."""
    info = compute_tier(balance.total_earned, tiers)
    balance.tier = info["tier"]
    balance.tier_progress = info["progress"]
