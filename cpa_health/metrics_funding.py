from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from cpa_health.data import TOWN_COLUMN, Snapshot, finite_or_none
from cpa_health.definitions import FUNDING_METRICS, TOTAL_FUNDING, get_metric, per_capita_key
from cpa_health.filters import DashboardFilters
from cpa_health.summary import summarize_funding


def compute_funding(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    snapshot: Snapshot = ctx["selected"]
    funding_keys = list(filters.funding_metrics)
    pc_keys = [per_capita_key(k) for k in funding_keys]

    series = [
        {"key": per_capita_key(m.key), "label": m.label, "color": m.color, "icon": m.icon}
        for m in FUNDING_METRICS
        if m.key in funding_keys
    ]

    per_capita_rows: List[Dict[str, Any]] = []
    health_vs_funding: List[Dict[str, Any]] = []
    for r in snapshot:
        row: Dict[str, Any] = {TOWN_COLUMN: r.town}
        for k in pc_keys:
            row[k] = finite_or_none(r.per_capita.get(k))
        row[per_capita_key(TOTAL_FUNDING.key)] = finite_or_none(r.per_capita.get(per_capita_key(TOTAL_FUNDING.key)))
        per_capita_rows.append(row)

        combined = dict(row)
        for h in filters.health_metrics:
            combined[h] = finite_or_none(r.health.get(h))
        health_vs_funding.append(combined)

    summaries: List[Dict[str, Any]] = []
    if len(snapshot):
        for key, s in summarize_funding(snapshot, funding_keys, per_capita=True).items():
            summaries.append(
                {
                    "key": key,
                    "label": get_metric(key).label,
                    "average": finite_or_none(s.mean) if s else None,
                    "lowest": asdict(s.min) if s else None,
                    "highest": asdict(s.max) if s else None,
                    "towns_reporting": s.count if s else 0,
                }
            )

    return {
        "filters": asdict(filters),
        "series": series,
        "per_capita": per_capita_rows,
        "health_vs_funding": health_vs_funding,
        "summaries": summaries,
    }
