from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from cpa_health.data import Snapshot, finite_or_none
from cpa_health.definitions import HEALTH_METRICS, TOWN_COLORS, get_metric, town_color
from cpa_health.filters import DashboardFilters
from cpa_health.summary import summarize_health


def _town_legend(snapshot: Snapshot) -> List[Dict[str, Any]]:
    fallback = HEALTH_METRICS[0].color
    return [{"town": t, "color": town_color(t, fallback), "highlighted": t in TOWN_COLORS} for t in snapshot.towns]


def compute_overview(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    snapshot: Snapshot = ctx["selected"]

    health_cards: List[Dict[str, Any]] = []
    if len(snapshot):
        summaries = summarize_health(snapshot, filters.health_metrics)
        for key, s in summaries.items():
            m = get_metric(key)
            # lower prevalence is better for every tracked outcome
            health_cards.append(
                {
                    "key": key,
                    "label": m.label,
                    "full_label": m.full_label,
                    "description": m.description,
                    "unit": m.unit,
                    "color": m.color,
                    "icon": m.icon,
                    "average": finite_or_none(s.mean) if s else None,
                    "best": asdict(s.min) if s else None,
                    "worst": asdict(s.max) if s else None,
                    "towns_reporting": s.count if s else 0,
                }
            )

    return {
        "filters": asdict(filters),
        "source": ctx["snapshot"].source,
        "signature": ctx["snapshot"].signature,
        "town_count": len(snapshot),
        "unknown_towns": ctx.get("unknown_towns", []),
        "towns": _town_legend(snapshot),
        "health": health_cards,
    }
